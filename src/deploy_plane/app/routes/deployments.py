"""Deployment run, status and log API.

Thin HTTP surface over the orchestrator:
  POST /api/v1/deployments/{deployment_id}/run     -> run the workflow
  GET  /api/v1/deployments/{deployment_id}/status  -> re-check and report
  GET  /api/v1/deployments/{deployment_id}/logs    -> ordered audit log

Every endpoint resolves the caller through the injected IdentityResolver
and answers 404 for deployments the caller does not own, so foreign ids
are indistinguishable from unknown ones.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..deployments.ledger import DeploymentNotFound
from ..deployments.orchestrator import DeploymentOrchestrator, OrchestrationResult
from ..deployments.records import Deployment, DeploymentLogEntry
from ..protocols import DeploymentLedger, IdentityResolver


# ── Response schemas ──────────────────────────────────────────────────


class DeploymentView(BaseModel):
    id: str
    status: str
    organization_name: str
    source_repo_url: str | None = None
    hosting_project_ref: str | None = None
    hosting_url: str | None = None
    hosting_deployment_id: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, deployment: Deployment) -> DeploymentView:
        return cls(
            id=deployment.id,
            status=deployment.status,
            organization_name=deployment.organization_name,
            source_repo_url=deployment.source_repo_url,
            hosting_project_ref=deployment.hosting_project_ref,
            hosting_url=deployment.hosting_url,
            hosting_deployment_id=deployment.hosting_deployment_id,
            error_message=deployment.error_message,
            created_at=deployment.created_at,
            updated_at=deployment.updated_at,
        )


class OrchestrationView(BaseModel):
    deployment: DeploymentView
    executed: bool
    in_progress: bool
    failed_step: str | None = None


class LogEntryView(BaseModel):
    id: str | None = None
    level: str
    message: str
    metadata: dict[str, Any] | None = None
    created_at: datetime


class LogListView(BaseModel):
    deployment_id: str
    logs: list[LogEntryView]


def _orchestration_view(result: OrchestrationResult) -> OrchestrationView:
    return OrchestrationView(
        deployment=DeploymentView.from_record(result.deployment),
        executed=result.executed,
        in_progress=result.in_progress,
        failed_step=result.failed_step,
    )


def _log_view(entry: DeploymentLogEntry) -> LogEntryView:
    return LogEntryView(
        id=entry.id,
        level=entry.level,
        message=entry.message,
        metadata=entry.metadata,
        created_at=entry.created_at,
    )


def _not_found(deployment_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            'error': 'deployment_not_found',
            'detail': f'Deployment {deployment_id!r} not found.',
        },
    )


def extract_credential(request: Request) -> str:
    """Bearer token first, then the session cookie."""
    auth_header = request.headers.get('authorization', '')
    if auth_header.lower().startswith('bearer '):
        return auth_header[len('bearer '):].strip()
    return request.cookies.get('sb-access-token', '')


# ── Route factory ─────────────────────────────────────────────────────


def create_deployments_router(
    orchestrator: DeploymentOrchestrator,
    ledger: DeploymentLedger,
    identity: IdentityResolver,
) -> APIRouter:
    """Create the deployments router.

    Args:
        orchestrator: Runs and re-checks deployments.
        ledger: Source of deployment records and logs.
        identity: Resolves the request credential to an owner id.
    """
    router = APIRouter(prefix='/api/v1/deployments', tags=['deployments'])

    async def get_principal(request: Request) -> str | None:
        credential = extract_credential(request)
        if not credential:
            return None
        return await identity.principal_id(credential)

    async def load_owned(deployment_id: str, principal: str | None) -> Deployment | None:
        if principal is None:
            return None
        try:
            deployment = await ledger.get(deployment_id)
        except DeploymentNotFound:
            return None
        if deployment.owner != principal:
            return None
        return deployment

    def _unauthorized() -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={'error': 'unauthorized', 'detail': 'Invalid credential.'},
            headers={'WWW-Authenticate': 'Bearer'},
        )

    @router.post('/{deployment_id}/run', response_model=OrchestrationView)
    async def run_deployment(
        deployment_id: str,
        principal: str | None = Depends(get_principal),
    ):
        """Run the provisioning workflow for a queued deployment.

        Not queued: returns the current status without side effects.
        A step failure is recorded first, then reported as 502.
        """
        if principal is None:
            return _unauthorized()
        if await load_owned(deployment_id, principal) is None:
            return _not_found(deployment_id)

        result = await orchestrator.run(deployment_id)
        view = _orchestration_view(result)
        if result.executed and result.failed:
            return JSONResponse(
                status_code=502,
                content={
                    'error': 'deployment_failed',
                    'detail': result.error_message,
                    'failed_step': result.failed_step,
                    'deployment': view.deployment.model_dump(mode='json'),
                },
            )
        return view

    @router.get('/{deployment_id}/status', response_model=OrchestrationView)
    async def deployment_status(
        deployment_id: str,
        principal: str | None = Depends(get_principal),
    ):
        """Report status, polling the hosting build once if still deploying."""
        if principal is None:
            return _unauthorized()
        if await load_owned(deployment_id, principal) is None:
            return _not_found(deployment_id)
        return _orchestration_view(await orchestrator.check_status(deployment_id))

    @router.get('/{deployment_id}/logs', response_model=LogListView)
    async def deployment_logs(
        deployment_id: str,
        principal: str | None = Depends(get_principal),
    ):
        if principal is None:
            return _unauthorized()
        if await load_owned(deployment_id, principal) is None:
            return _not_found(deployment_id)
        entries = await ledger.list_logs(deployment_id)
        return LogListView(
            deployment_id=deployment_id,
            logs=[_log_view(e) for e in entries],
        )

    return router
