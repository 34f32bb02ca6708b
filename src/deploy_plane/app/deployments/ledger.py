"""Deployment ledger errors and in-memory implementation.

The ledger is the only shared mutable resource between workflow runs.
Its conditional update (``expected_status``) is the concurrency-control
primitive: the check and the set happen as one step, so two concurrent
triggers can never both move a deployment out of the same state.

Terminal records (``live`` / ``failed``) reject every further update.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any

from .records import (
    WRITE_ONCE_FIELDS,
    Deployment,
    DeploymentLogEntry,
    utcnow,
    validate_level,
    validate_patch,
)
from .state_machine import TERMINAL_STATES, require_transition

# ── Error types ──────────────────────────────────────────────────────


class DeploymentNotFound(LookupError):
    """Raised when no deployment exists for the given id."""

    def __init__(self, deployment_id: str) -> None:
        self.deployment_id = deployment_id
        super().__init__(f'deployment {deployment_id!r} not found')


class LedgerConflict(Exception):
    """Raised when a conditional update loses against the stored status."""

    def __init__(
        self,
        deployment_id: str,
        *,
        expected_status: str | None,
        actual_status: str | None,
    ) -> None:
        self.deployment_id = deployment_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f'deployment {deployment_id!r} update conflict: '
            f'expected status {expected_status!r}, found {actual_status!r}'
        )


def check_write_once(current: Deployment, patch: dict[str, Any]) -> None:
    for name in WRITE_ONCE_FIELDS & set(patch):
        existing = getattr(current, name)
        if existing is not None and existing != patch[name]:
            raise ValueError(
                f'{name} is already set on deployment {current.id!r}'
            )


# ── In-memory implementation ────────────────────────────────────────


class InMemoryDeploymentLedger:
    """In-memory ledger for local development and tests.

    Mirrors the Supabase ledger: conditional updates, absorbing terminal
    states, write-once provisioning references, ordered append-only logs.
    No ``await`` happens between the status check and the write, so the
    conditional update is atomic with respect to other coroutines.
    """

    def __init__(self) -> None:
        self._deployments: dict[str, Deployment] = {}
        self._logs: dict[str, list[DeploymentLogEntry]] = {}
        self.history: dict[str, list[tuple[datetime, str]]] = {}

    async def create(
        self,
        *,
        owner: str,
        organization_name: str,
        signer_name: str,
        signer_email: str,
        deployment_id: str | None = None,
    ) -> Deployment:
        """Seed a ``queued`` deployment (request intake lives elsewhere)."""
        now = utcnow()
        deployment = Deployment(
            id=deployment_id or str(uuid.uuid4()),
            owner=owner,
            organization_name=organization_name,
            signer_name=signer_name,
            signer_email=signer_email,
            status='queued',
            created_at=now,
            updated_at=now,
        )
        self._deployments[deployment.id] = deployment
        self._logs[deployment.id] = []
        self.history[deployment.id] = [(now, 'queued')]
        return deployment

    async def get(self, deployment_id: str) -> Deployment:
        deployment = self._deployments.get(deployment_id)
        if deployment is None:
            raise DeploymentNotFound(deployment_id)
        return deployment

    async def update(
        self,
        deployment_id: str,
        patch: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> Deployment:
        validate_patch(patch)
        current = self._deployments.get(deployment_id)
        if current is None:
            raise DeploymentNotFound(deployment_id)
        if current.status in TERMINAL_STATES:
            raise LedgerConflict(
                deployment_id,
                expected_status=expected_status,
                actual_status=current.status,
            )
        if expected_status is not None and current.status != expected_status:
            raise LedgerConflict(
                deployment_id,
                expected_status=expected_status,
                actual_status=current.status,
            )
        new_status = patch.get('status', current.status)
        if new_status != current.status:
            require_transition(current.status, new_status)
        check_write_once(current, patch)

        now = utcnow()
        updated = replace(current, **patch, updated_at=now)
        self._deployments[deployment_id] = updated
        if new_status != current.status:
            self.history[deployment_id].append((now, new_status))
        return updated

    async def append_log(
        self,
        deployment_id: str,
        level: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> DeploymentLogEntry:
        validate_level(level)
        if deployment_id not in self._deployments:
            raise DeploymentNotFound(deployment_id)
        entry = DeploymentLogEntry(
            id=f'log_{uuid.uuid4().hex[:12]}',
            deployment_id=deployment_id,
            level=level,
            message=message,
            metadata=dict(metadata) if metadata else None,
            created_at=utcnow(),
        )
        self._logs[deployment_id].append(entry)
        return entry

    async def list_logs(self, deployment_id: str) -> list[DeploymentLogEntry]:
        if deployment_id not in self._deployments:
            raise DeploymentNotFound(deployment_id)
        return list(self._logs[deployment_id])

    async def list_by_status(
        self, status: str, *, limit: int = 100, after: str | None = None,
    ) -> list[Deployment]:
        matches = [
            d for d in self._deployments.values()
            if d.status == status and (after is None or d.id > after)
        ]
        matches.sort(key=lambda d: d.id)
        return matches[:limit]
