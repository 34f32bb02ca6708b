"""Deploy plane FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, auth guard, CORS), the
deployment routes and the re-check scheduler, and injects the ledger and
provider implementations via dependency injection.

Usage:
    # Local development (in-memory collaborators)
    from deploy_plane.app import create_app, DeployPlaneSettings
    app = create_app(DeployPlaneSettings())

    # Non-local (Supabase / GitHub / Cloudflare / Resend built from settings)
    app = create_app(DeployPlaneSettings.from_env())

    # Testing (full DI control)
    app = create_app(settings, ledger=ledger, source=source, ...)
"""

from __future__ import annotations

import logging
import re
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .db.errors import SupabaseError
from .deployments.ledger import DeploymentNotFound, LedgerConflict
from .deployments.orchestrator import DeploymentOrchestrator
from .deployments.template_renderer import load_template
from .observability.logging import configure_logging, request_id_ctx
from .operations.recheck_scheduler import DeploymentRecheckScheduler
from .protocols import (
    DeploymentLedger,
    HostingProvisioner,
    IdentityResolver,
    Notifier,
    RecipientResolver,
    SourceProvisioner,
)
from .routes.deployments import create_deployments_router
from .settings import DeployPlaneSettings

logger = logging.getLogger(__name__)

# Auth-exempt paths: these never require a credential.
AUTH_ALLOWLIST_EXACT: frozenset[str] = frozenset({
    "/health",
    "/docs",
    "/openapi.json",
})

_VALID_REQUEST_ID = re.compile(r"^[a-zA-Z0-9\-]{8,128}$")


@dataclass(frozen=True)
class AppDependencies:
    """Container for injected collaborators.

    Stored on ``app.state.deps`` so route handlers and scripts can reach
    them. ``closers`` release HTTP clients the factory created itself.
    """

    ledger: DeploymentLedger
    source: SourceProvisioner
    hosting: HostingProvisioner
    notifier: Notifier
    identity: IdentityResolver
    recipients: RecipientResolver | None = None
    closers: tuple[Callable[[], Awaitable[None]], ...] = field(default=())


def build_inmemory_deps() -> AppDependencies:
    """Construct all-InMemory dependencies for local development."""
    from .inmemory import (
        InMemoryDeploymentLedger,
        InMemoryHostingProvisioner,
        InMemoryIdentityResolver,
        InMemorySourceProvisioner,
        RecordingNotifier,
    )

    return AppDependencies(
        ledger=InMemoryDeploymentLedger(),
        source=InMemorySourceProvisioner(),
        hosting=InMemoryHostingProvisioner(),
        notifier=RecordingNotifier(),
        identity=InMemoryIdentityResolver(),
    )


def build_remote_deps(settings: DeployPlaneSettings) -> AppDependencies:
    """Construct Supabase / GitHub / Cloudflare / Resend collaborators."""
    import httpx

    from .db.deployment_ledger import SupabaseDeploymentLedger, SupabaseProfileDirectory
    from .db.supabase_auth import SupabaseAuthIdentityResolver
    from .db.supabase_client import SupabaseClient
    from .providers.cloudflare_pages import CloudflarePagesClient, CloudflarePagesProvisioner
    from .providers.github_source import GitHubClient, GitHubSourceProvisioner
    from .providers.resend_notifier import NullNotifier, ResendClient, ResendNotifier

    timeout = settings.external_call_timeout_seconds
    http = httpx.AsyncClient()

    supabase = SupabaseClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        http_client=http,
        timeout_seconds=timeout,
    )
    github = GitHubClient(
        token=settings.github_token, http_client=http, timeout_seconds=timeout,
    )
    cloudflare = CloudflarePagesClient(
        api_token=settings.cloudflare_api_token,
        account_id=settings.cloudflare_account_id,
        http_client=http,
        timeout_seconds=timeout,
    )

    notifier: Notifier
    if settings.notifications_enabled:
        notifier = ResendNotifier(
            ResendClient(
                api_key=settings.resend_api_key, http_client=http, timeout_seconds=timeout,
            ),
            from_email=settings.from_email,
            public_app_url=settings.public_app_url,
        )
    else:
        logger.warning("RESEND_API_KEY not set; deployment emails will not be sent")
        notifier = NullNotifier()

    return AppDependencies(
        ledger=SupabaseDeploymentLedger(supabase),
        source=GitHubSourceProvisioner(github, owner=settings.github_owner),
        hosting=CloudflarePagesProvisioner(cloudflare),
        notifier=notifier,
        identity=SupabaseAuthIdentityResolver(
            supabase_url=settings.supabase_url,
            api_key=settings.supabase_service_role_key,
            http_client=http,
        ),
        recipients=SupabaseProfileDirectory(supabase),
        closers=(http.aclose,),
    )


def build_orchestrator(
    settings: DeployPlaneSettings, deps: AppDependencies,
) -> DeploymentOrchestrator:
    template = (
        load_template(settings.landing_template_path)
        if settings.landing_template_path
        else None
    )
    return DeploymentOrchestrator(
        ledger=deps.ledger,
        source=deps.source,
        hosting=deps.hosting,
        notifier=deps.notifier,
        recipients=deps.recipients,
        poll_max_attempts=settings.poll_max_attempts,
        poll_delay_seconds=settings.poll_delay_seconds,
        recheck_poll_attempts=settings.recheck_poll_attempts,
        call_timeout_seconds=settings.external_call_timeout_seconds,
        repo_name_prefix=settings.repo_name_prefix,
        repo_name_max_length=settings.repo_name_max_length,
        template=template,
    )


# ── Middleware ──────────────────────────────────────────────────────


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Generate or propagate X-Request-ID and expose it to logging."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        incoming = request.headers.get("x-request-id", "")
        request_id = incoming if _VALID_REQUEST_ID.match(incoming) else str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """Reject requests to protected routes that carry no credential.

    Only the presence of a Supabase session cookie or a Bearer token is
    enforced here; resolving it to a principal is the IdentityResolver's
    job in the route layer.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        if path in AUTH_ALLOWLIST_EXACT:
            return await call_next(request)

        has_cookie = bool(request.cookies.get("sb-access-token"))
        auth_header = request.headers.get("authorization", "")
        has_bearer = auth_header.lower().startswith("bearer ")

        if not has_cookie and not has_bearer:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.debug("[%s] Auth guard: no credential for %s", request_id, path)
            return JSONResponse(
                status_code=401,
                content={
                    "code": "AUTH_REQUIRED",
                    "message": "Authentication required",
                    "request_id": request_id,
                },
                headers={"WWW-Authenticate": 'Bearer realm="deploy-plane"'},
            )

        return await call_next(request)


def _register_error_handlers(app: FastAPI) -> None:
    def _body(request: Request, code: str, message: str) -> dict[str, Any]:
        return {
            "code": code,
            "message": message,
            "request_id": getattr(request.state, "request_id", None),
        }

    @app.exception_handler(DeploymentNotFound)
    async def deployment_not_found(request: Request, exc: DeploymentNotFound):
        return JSONResponse(
            status_code=404, content=_body(request, "DEPLOYMENT_NOT_FOUND", str(exc)),
        )

    @app.exception_handler(LedgerConflict)
    async def ledger_conflict(request: Request, exc: LedgerConflict):
        return JSONResponse(
            status_code=409, content=_body(request, "DEPLOYMENT_CONFLICT", str(exc)),
        )

    @app.exception_handler(SupabaseError)
    async def ledger_unavailable(request: Request, exc: SupabaseError):
        logger.error("Ledger error: %s", exc)
        return JSONResponse(
            status_code=503,
            content=_body(request, "LEDGER_UNAVAILABLE", "Deployment ledger unavailable"),
        )


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: DeployPlaneSettings | None = None,
    *,
    ledger: DeploymentLedger | None = None,
    source: SourceProvisioner | None = None,
    hosting: HostingProvisioner | None = None,
    notifier: Notifier | None = None,
    recipients: RecipientResolver | None = None,
    identity: IdentityResolver | None = None,
) -> FastAPI:
    """Create a configured deploy-plane FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        ledger..identity: Collaborator overrides. Gaps are filled with
            InMemory implementations in local mode and with the
            Supabase / GitHub / Cloudflare / Resend implementations
            otherwise.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = DeployPlaneSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Deploy plane settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    overrides = {
        "ledger": ledger,
        "source": source,
        "hosting": hosting,
        "notifier": notifier,
        "identity": identity,
    }
    if all(v is not None for v in overrides.values()):
        deps = AppDependencies(
            ledger=ledger,  # type: ignore[arg-type]
            source=source,  # type: ignore[arg-type]
            hosting=hosting,  # type: ignore[arg-type]
            notifier=notifier,  # type: ignore[arg-type]
            identity=identity,  # type: ignore[arg-type]
            recipients=recipients,
        )
    else:
        defaults = build_inmemory_deps() if settings.is_local else build_remote_deps(settings)
        deps = AppDependencies(
            ledger=ledger or defaults.ledger,
            source=source or defaults.source,
            hosting=hosting or defaults.hosting,
            notifier=notifier or defaults.notifier,
            identity=identity or defaults.identity,
            recipients=recipients or defaults.recipients,
            closers=defaults.closers,
        )

    orchestrator = build_orchestrator(settings, deps)
    scheduler = DeploymentRecheckScheduler(
        orchestrator, deps.ledger, concurrency=settings.recheck_concurrency,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(
            level=settings.log_level, json_output=settings.log_format == "json",
        )
        logger.info("Deploy plane startup (environment=%s)", settings.environment)
        if settings.recheck_interval_seconds > 0:
            scheduler.start(interval_seconds=settings.recheck_interval_seconds)
        try:
            yield
        finally:
            await scheduler.stop()
            for close in deps.closers:
                await close()
            logger.info("Deploy plane shutdown")

    app = FastAPI(
        title="Deploy Plane",
        description="Landing-page deployment orchestration API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestID -> AuthGuard -> CORS -> route handler
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AuthGuardMiddleware)
    app.add_middleware(RequestIDMiddleware)

    _register_error_handlers(app)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
        }

    app.include_router(
        create_deployments_router(orchestrator, deps.ledger, deps.identity)
    )

    return app


# For uvicorn, use --factory flag:
#   uvicorn deploy_plane.app.main:create_app --factory
# This avoids executing create_app() at import time.
