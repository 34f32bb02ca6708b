"""In-memory collaborator implementations for local development and tests.

These are used when ENVIRONMENT=local. They satisfy the protocol interfaces
but keep everything in dicts (no persistence across restarts). Failure
switches and call recording let tests script a collaborator's behaviour.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Sequence

from .deployments.ledger import InMemoryDeploymentLedger
from .deployments.template_renderer import RepoFile
from .providers.results import (
    BuildStatus,
    CreatedRepo,
    DeploymentInfo,
    HostingProject,
    NotFound,
    Ok,
    PermanentError,
    ProviderFailure,
    ProviderResult,
    SourceRepoRef,
)

__all__ = [
    "InMemoryDeploymentLedger",
    "InMemoryHostingProvisioner",
    "InMemoryIdentityResolver",
    "InMemoryRecipientDirectory",
    "InMemorySourceProvisioner",
    "RecordingNotifier",
]


class InMemorySourceProvisioner:
    """Repository host that enforces unique names, like GitHub does."""

    def __init__(
        self,
        *,
        owner: str = "local",
        create_failure: ProviderFailure | None = None,
        delete_failure: ProviderFailure | None = None,
    ) -> None:
        self._owner = owner
        self.create_failure = create_failure
        self.delete_failure = delete_failure
        self.repos: dict[str, list[RepoFile]] = {}
        self.calls: list[tuple[str, str]] = []

    @property
    def owner(self) -> str:
        return self._owner

    async def create_repo(
        self, name: str, files: Sequence[RepoFile], *, description: str = "",
    ) -> ProviderResult[CreatedRepo]:
        self.calls.append(("create_repo", name))
        await asyncio.sleep(0)
        if self.create_failure is not None:
            return self.create_failure
        if name in self.repos:
            return PermanentError(f"repository {name!r} already exists")
        self.repos[name] = list(files)
        return Ok(
            CreatedRepo(
                repo_url=f"https://github.com/{self._owner}/{name}",
                canonical_name=name,
            )
        )

    async def exists(self, name: str) -> ProviderResult[bool]:
        self.calls.append(("exists", name))
        return Ok(name in self.repos)

    async def delete(self, name: str) -> ProviderResult[None]:
        self.calls.append(("delete", name))
        if self.delete_failure is not None:
            return self.delete_failure
        if self.repos.pop(name, None) is None:
            return NotFound(f"repository {name!r} not found")
        return Ok(None)


class InMemoryHostingProvisioner:
    """Static hosting whose build statuses are scripted.

    ``build_statuses`` is consumed one entry per status read; the last
    entry repeats once the script runs out.
    """

    def __init__(
        self,
        *,
        build_statuses: Sequence[str] = ("success",),
        create_failure: ProviderFailure | None = None,
        status_failure: ProviderFailure | None = None,
        latest_failure: ProviderFailure | None = None,
        delete_failure: ProviderFailure | None = None,
        auto_deploy: bool = True,
    ) -> None:
        if not build_statuses:
            raise ValueError("build_statuses must not be empty")
        self.build_statuses = list(build_statuses)
        self.create_failure = create_failure
        self.status_failure = status_failure
        self.latest_failure = latest_failure
        self.delete_failure = delete_failure
        self.auto_deploy = auto_deploy
        self.projects: dict[str, HostingProject] = {}
        self.sources: dict[str, SourceRepoRef] = {}
        self.deployments: dict[str, list[DeploymentInfo]] = {}
        self.calls: list[tuple[str, str]] = []
        self._status_reads = 0

    def start_build(self, project_ref: str) -> DeploymentInfo:
        """Simulate the push-triggered build the real platform starts."""
        info = DeploymentInfo(
            deployment_id=f"dep_{uuid.uuid4().hex[:8]}",
            url=f"https://{uuid.uuid4().hex[:8]}.{project_ref}.pages.dev",
            stage="queued",
            status="idle",
        )
        self.deployments.setdefault(project_ref, []).insert(0, info)
        return info

    async def create_project(
        self, name: str, source: SourceRepoRef,
    ) -> ProviderResult[HostingProject]:
        self.calls.append(("create_project", name))
        await asyncio.sleep(0)
        if self.create_failure is not None:
            return self.create_failure
        if name in self.projects:
            return PermanentError(f"project {name!r} already exists")
        project = HostingProject(project_ref=name, public_subdomain=f"{name}.pages.dev")
        self.projects[name] = project
        self.sources[name] = source
        self.deployments[name] = []
        if self.auto_deploy:
            self.start_build(name)
        return Ok(project)

    async def get_project(self, project_ref: str) -> ProviderResult[HostingProject]:
        self.calls.append(("get_project", project_ref))
        project = self.projects.get(project_ref)
        if project is None:
            return NotFound(f"project {project_ref!r} not found")
        return Ok(project)

    async def latest_deployment(
        self, project_ref: str,
    ) -> ProviderResult[DeploymentInfo | None]:
        self.calls.append(("latest_deployment", project_ref))
        if self.latest_failure is not None:
            return self.latest_failure
        if project_ref not in self.projects:
            return NotFound(f"project {project_ref!r} not found")
        builds = self.deployments.get(project_ref) or []
        return Ok(builds[0] if builds else None)

    async def get_deployment_status(
        self, project_ref: str, deployment_id: str,
    ) -> ProviderResult[BuildStatus]:
        self.calls.append(("get_deployment_status", deployment_id))
        if self.status_failure is not None:
            return self.status_failure
        builds = {d.deployment_id: d for d in self.deployments.get(project_ref, [])}
        info = builds.get(deployment_id)
        if info is None:
            return NotFound(f"deployment {deployment_id!r} not found")
        index = min(self._status_reads, len(self.build_statuses) - 1)
        self._status_reads += 1
        status = self.build_statuses[index]
        stage = "deploy" if status == "success" else "build"
        return Ok(BuildStatus(stage=stage, status=status, url=info.url))

    async def delete_project(self, project_ref: str) -> ProviderResult[None]:
        self.calls.append(("delete_project", project_ref))
        if self.delete_failure is not None:
            return self.delete_failure
        if self.projects.pop(project_ref, None) is None:
            return NotFound(f"project {project_ref!r} not found")
        self.deployments.pop(project_ref, None)
        self.sources.pop(project_ref, None)
        return Ok(None)


class RecordingNotifier:
    """Notifier that records every call instead of sending anything."""

    def __init__(self, *, deliver: bool = True, error: Exception | None = None) -> None:
        self.deliver = deliver
        self.error = error
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    @property
    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]

    async def notify(self, recipient: str, kind: str, context: dict[str, Any]) -> bool:
        self.sent.append((recipient, kind, dict(context)))
        if self.error is not None:
            raise self.error
        return self.deliver


class InMemoryRecipientDirectory:
    def __init__(self, emails: dict[str, str] | None = None) -> None:
        self.emails = dict(emails or {})

    async def email_for(self, owner: str) -> str | None:
        return self.emails.get(owner)


class InMemoryIdentityResolver:
    """Maps credentials to principals.

    With no token table the credential itself is the principal id, which
    is convenient for local development.
    """

    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self._tokens = tokens

    async def principal_id(self, credential: str) -> str | None:
        if not credential:
            return None
        if self._tokens is None:
            return credential
        return self._tokens.get(credential)
