"""Out-of-band cleanup of resources a deployment left behind.

Deletes the hosting project and the source repository a terminal
deployment created, including ones whose creating call failed. This is an
admin operation, not part of the workflow: it appends ledger log entries
for what it did but never changes the deployment's status and never
deletes the record itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..deployments.naming import hosting_project_name, repo_name_from_url
from ..deployments.records import Deployment
from ..deployments.state_machine import is_terminal
from ..protocols import DeploymentLedger, HostingProvisioner, SourceProvisioner
from ..providers.results import ProviderResult

logger = logging.getLogger(__name__)

# Per-resource outcomes.
DELETED = "deleted"
ABSENT = "absent"
NOT_RECORDED = "not_recorded"


class CleanupNotAllowed(ValueError):
    """Raised when cleanup is requested for a deployment still in progress."""

    def __init__(self, deployment_id: str, status: str) -> None:
        self.deployment_id = deployment_id
        self.status = status
        super().__init__(
            f"deployment {deployment_id!r} is {status!r}; only terminal "
            f"deployments can be cleaned up"
        )


@dataclass(frozen=True, slots=True)
class CleanupReport:
    deployment_id: str
    hosting: str
    source: str

    @property
    def complete(self) -> bool:
        return all(
            outcome in (DELETED, ABSENT, NOT_RECORDED)
            for outcome in (self.hosting, self.source)
        )


async def _delete(
    ledger: DeploymentLedger,
    deployment_id: str,
    resource: str,
    name: str,
    result: ProviderResult[None],
) -> str:
    if result.ok:
        outcome = DELETED
        await ledger.append_log(
            deployment_id, "info", f"Cleanup: deleted {resource} {name}",
            {"resource": resource, "name": name},
        )
    elif result.kind == "not_found":
        outcome = ABSENT
        await ledger.append_log(
            deployment_id, "info", f"Cleanup: {resource} {name} already absent",
            {"resource": resource, "name": name},
        )
    else:
        outcome = f"error: {result.describe()}"
        await ledger.append_log(
            deployment_id, "warning",
            f"Cleanup: could not delete {resource} {name}: {result.message}",
            {"resource": resource, "name": name, "kind": result.kind},
        )
    logger.info("Cleanup of %s %s for deployment %s: %s", resource, name, deployment_id, outcome)
    return outcome


async def _logged_names(ledger: DeploymentLedger, deployment_id: str) -> dict[str, str]:
    """Latest ``repo_name`` / ``project_ref`` the workflow wrote to the log."""
    names: dict[str, str] = {}
    for entry in await ledger.list_logs(deployment_id):
        for key in ("repo_name", "project_ref"):
            value = (entry.metadata or {}).get(key)
            if value:
                names[key] = value
    return names


async def cleanup_deployment_resources(
    deployment: Deployment,
    *,
    source: SourceProvisioner,
    hosting: HostingProvisioner,
    ledger: DeploymentLedger,
) -> CleanupReport:
    """Delete the hosting project, then the source repository, of a terminal deployment.

    Names come from the record when its step committed. Otherwise they come
    from the step's log entries, which name a resource before the call that
    creates it, and finally from the repository URL for the project.
    """
    if not is_terminal(deployment.status):
        raise CleanupNotAllowed(deployment.id, deployment.status)

    logged = await _logged_names(ledger, deployment.id)
    repo = (
        repo_name_from_url(deployment.source_repo_url)
        if deployment.source_repo_url else logged.get("repo_name")
    )
    ref = deployment.hosting_project_ref or logged.get("project_ref")
    if not ref and deployment.source_repo_url:
        ref = hosting_project_name(repo_name_from_url(deployment.source_repo_url))

    hosting_outcome = NOT_RECORDED
    if ref:
        await ledger.append_log(
            deployment.id, "info", f"Cleanup: deleting hosting project {ref}",
            {"resource": "hosting_project", "name": ref},
        )
        hosting_outcome = await _delete(
            ledger, deployment.id, "hosting_project", ref,
            await hosting.delete_project(ref),
        )

    source_outcome = NOT_RECORDED
    if repo:
        await ledger.append_log(
            deployment.id, "info", f"Cleanup: deleting source repository {repo}",
            {"resource": "source_repo", "name": repo},
        )
        source_outcome = await _delete(
            ledger, deployment.id, "source_repo", repo,
            await source.delete(repo),
        )

    return CleanupReport(
        deployment_id=deployment.id,
        hosting=hosting_outcome,
        source=source_outcome,
    )
