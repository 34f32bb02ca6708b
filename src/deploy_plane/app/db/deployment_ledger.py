"""Supabase-backed deployment ledger.

Implements the DeploymentLedger protocol over PostgREST against the
``deployments`` and ``deployment_logs`` tables.

Conditional updates are a single ``PATCH ...?id=eq.X&status=eq.Y``: the
filter and the write run as one statement, so concurrent triggers for the
same deployment cannot both pass the status check. An empty PATCH result
is disambiguated with a follow-up read into LedgerConflict or
DeploymentNotFound.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ..deployments.ledger import DeploymentNotFound, LedgerConflict, check_write_once
from ..deployments.records import (
    Deployment,
    DeploymentLogEntry,
    utcnow,
    validate_level,
    validate_patch,
)
from ..deployments.state_machine import ACTIVE_STATES, require_transition
from .supabase_client import SupabaseClient

DEPLOYMENTS_TABLE = "deployments"
LOGS_TABLE = "deployment_logs"

# Record field -> column name (columns predate this service).
_COLUMN_FOR_FIELD: dict[str, str] = {
    "id": "id",
    "owner": "user_id",
    "organization_name": "organization_name",
    "signer_name": "signer_name",
    "signer_email": "signer_email",
    "status": "status",
    "source_repo_url": "github_repo_url",
    "hosting_project_ref": "pages_project_name",
    "hosting_url": "pages_url",
    "hosting_deployment_id": "pages_deployment_id",
    "error_message": "error_message",
    "created_at": "created_at",
    "updated_at": "updated_at",
}


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return utcnow()
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def deployment_from_row(row: dict[str, Any]) -> Deployment:
    values: dict[str, Any] = {}
    for field_name, column in _COLUMN_FOR_FIELD.items():
        if column in row:
            values[field_name] = row[column]
    values["id"] = str(values["id"])
    values["created_at"] = _parse_ts(values.get("created_at"))
    values["updated_at"] = _parse_ts(values.get("updated_at"))
    return Deployment(**values)


def patch_to_row(patch: dict[str, Any]) -> dict[str, Any]:
    return {_COLUMN_FOR_FIELD[name]: value for name, value in patch.items()}


def log_entry_from_row(row: dict[str, Any]) -> DeploymentLogEntry:
    return DeploymentLogEntry(
        id=str(row["id"]) if row.get("id") is not None else None,
        deployment_id=str(row["deployment_id"]),
        level=row["level"],
        message=row["message"],
        metadata=row.get("metadata"),
        created_at=_parse_ts(row.get("created_at")),
    )


class SupabaseDeploymentLedger:
    """Deployment ledger backed by Supabase PostgREST."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def get(self, deployment_id: str) -> Deployment:
        rows = await self._client.select(
            DEPLOYMENTS_TABLE,
            filters={"id": ("eq", deployment_id)},
            limit=1,
        )
        if not rows:
            raise DeploymentNotFound(deployment_id)
        return deployment_from_row(rows[0])

    async def update(
        self,
        deployment_id: str,
        patch: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> Deployment:
        validate_patch(patch)
        new_status = patch.get("status")
        if expected_status is not None and expected_status not in ACTIVE_STATES:
            current = await self.get(deployment_id)
            raise LedgerConflict(
                deployment_id,
                expected_status=expected_status,
                actual_status=current.status,
            )
        if expected_status is not None:
            if new_status is not None and new_status != expected_status:
                require_transition(expected_status, new_status)
            status_filter: tuple[str, Any] = ("eq", expected_status)
        else:
            # Terminal records are absorbing: only active rows are writable.
            status_filter = ("in", sorted(ACTIVE_STATES))

        if set(patch) & {"source_repo_url", "hosting_project_ref", "error_message"}:
            check_write_once(await self.get(deployment_id), patch)

        row = patch_to_row(patch)
        row["updated_at"] = utcnow().isoformat()
        rows = await self._client.update(
            DEPLOYMENTS_TABLE,
            filters={
                "id": ("eq", deployment_id),
                "status": status_filter,
            },
            data=row,
        )
        if rows:
            return deployment_from_row(rows[0])

        current = await self.get(deployment_id)
        raise LedgerConflict(
            deployment_id,
            expected_status=expected_status,
            actual_status=current.status,
        )

    async def append_log(
        self,
        deployment_id: str,
        level: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> DeploymentLogEntry:
        validate_level(level)
        row: dict[str, Any] = {
            "deployment_id": deployment_id,
            "level": level,
            "message": message,
            "created_at": utcnow().isoformat(),
        }
        if metadata:
            row["metadata"] = metadata
        rows = await self._client.insert(LOGS_TABLE, row)
        return log_entry_from_row(rows[0] if rows else row)

    async def list_logs(self, deployment_id: str) -> list[DeploymentLogEntry]:
        rows = await self._client.select(
            LOGS_TABLE,
            filters={"deployment_id": ("eq", deployment_id)},
            order="created_at.asc",
        )
        return [log_entry_from_row(r) for r in rows]

    async def list_by_status(
        self, status: str, *, limit: int = 100, after: str | None = None,
    ) -> list[Deployment]:
        filters: dict[str, Any] = {"status": ("eq", status)}
        if after is not None:
            filters["id"] = ("gt", after)
        rows = await self._client.select(
            DEPLOYMENTS_TABLE,
            filters=filters,
            order="id.asc",
            limit=limit,
        )
        return [deployment_from_row(r) for r in rows]


class SupabaseProfileDirectory:
    """RecipientResolver reading ``profiles.email`` by owner id."""

    TABLE = "profiles"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def email_for(self, owner: str) -> str | None:
        rows = await self._client.select(
            self.TABLE,
            filters={"id": ("eq", owner)},
            columns="email",
            limit=1,
        )
        if not rows:
            return None
        return rows[0].get("email") or None
