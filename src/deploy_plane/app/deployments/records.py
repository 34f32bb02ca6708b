"""Deployment and deployment-log records.

Row-level representations aligned with the ``deployments`` and
``deployment_logs`` tables. Records are immutable snapshots; the ledger
hands out a fresh snapshot after every write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

LogLevel = Literal['info', 'warning', 'error']

LOG_LEVELS: frozenset[str] = frozenset({'info', 'warning', 'error'})

# Fields the orchestrator may write. Input fields captured at intake
# (owner, organization/signer data) are never part of a patch.
MUTABLE_FIELDS: frozenset[str] = frozenset(
    {
        'status',
        'source_repo_url',
        'hosting_project_ref',
        'hosting_url',
        'hosting_deployment_id',
        'error_message',
    }
)

# Set once, never rewritten with a different value.
WRITE_ONCE_FIELDS: frozenset[str] = frozenset(
    {
        'source_repo_url',
        'hosting_project_ref',
        'error_message',
    }
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Deployment:
    """One landing-page deployment request and its provisioning progress."""

    id: str
    owner: str
    organization_name: str
    signer_name: str
    signer_email: str
    status: str = 'queued'
    source_repo_url: str | None = None
    hosting_project_ref: str | None = None
    hosting_url: str | None = None
    hosting_deployment_id: str | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class DeploymentLogEntry:
    """Append-only audit entry for a deployment."""

    deployment_id: str
    level: str
    message: str
    metadata: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: str | None = None


def validate_patch(patch: dict[str, Any]) -> None:
    """Reject patches that touch intake fields or carry unknown keys."""
    unknown = set(patch) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(
            f'deployment patch contains immutable or unknown fields: '
            f'{sorted(unknown)}'
        )


def validate_level(level: str) -> None:
    if level not in LOG_LEVELS:
        raise ValueError(f'invalid log level: {level!r}')
