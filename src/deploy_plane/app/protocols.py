"""Collaborator protocol interfaces for dependency injection.

These protocols define the contracts the orchestrator consumes. Concrete
implementations (in-memory for local dev and tests; GitHub, Cloudflare,
Resend and Supabase for non-local) are assembled by ``create_app()`` or by
whoever builds the workflow.
"""

from __future__ import annotations

from typing import Any, Literal, Protocol, Sequence, runtime_checkable

from .deployments.records import Deployment, DeploymentLogEntry
from .deployments.template_renderer import RepoFile
from .providers.results import (
    BuildStatus,
    CreatedRepo,
    DeploymentInfo,
    HostingProject,
    ProviderResult,
    SourceRepoRef,
)

NotificationKind = Literal['started', 'success', 'failed']


@runtime_checkable
class SourceProvisioner(Protocol):
    """Versioned source repository hosting (e.g. GitHub)."""

    @property
    def owner(self) -> str: ...

    async def create_repo(
        self, name: str, files: Sequence[RepoFile], *, description: str = '',
    ) -> ProviderResult[CreatedRepo]: ...
    async def exists(self, name: str) -> ProviderResult[bool]: ...
    async def delete(self, name: str) -> ProviderResult[None]: ...


@runtime_checkable
class HostingProvisioner(Protocol):
    """Static-site hosting bound to a source repository (e.g. Cloudflare Pages)."""

    async def create_project(
        self, name: str, source: SourceRepoRef,
    ) -> ProviderResult[HostingProject]: ...
    async def get_project(self, project_ref: str) -> ProviderResult[HostingProject]: ...
    async def latest_deployment(
        self, project_ref: str,
    ) -> ProviderResult[DeploymentInfo | None]: ...
    async def get_deployment_status(
        self, project_ref: str, deployment_id: str,
    ) -> ProviderResult[BuildStatus]: ...
    async def delete_project(self, project_ref: str) -> ProviderResult[None]: ...


@runtime_checkable
class Notifier(Protocol):
    """Status-change notifications. Must not raise on delivery failure."""

    async def notify(
        self,
        recipient: str,
        kind: NotificationKind,
        context: dict[str, Any],
    ) -> bool: ...


@runtime_checkable
class RecipientResolver(Protocol):
    """Look up where a deployment owner's notifications go."""

    async def email_for(self, owner: str) -> str | None: ...


@runtime_checkable
class DeploymentLedger(Protocol):
    """Durable deployment record plus append-only event log."""

    async def get(self, deployment_id: str) -> Deployment: ...
    async def update(
        self,
        deployment_id: str,
        patch: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> Deployment: ...
    async def append_log(
        self,
        deployment_id: str,
        level: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> DeploymentLogEntry: ...
    async def list_logs(self, deployment_id: str) -> list[DeploymentLogEntry]: ...
    async def list_by_status(
        self, status: str, *, limit: int = 100, after: str | None = None,
    ) -> list[Deployment]: ...


@runtime_checkable
class IdentityResolver(Protocol):
    """Resolve the calling principal from request credentials (auth is external)."""

    async def principal_id(self, credential: str) -> str | None: ...
