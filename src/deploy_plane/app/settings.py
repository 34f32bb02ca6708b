"""Deploy plane configuration settings.

DeployPlaneSettings is the single configuration object accepted by create_app().
It is a plain dataclass (not env-coupled) so tests can inject config without
touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .deployments.naming import DEFAULT_MAX_SLUG_LENGTH, DEFAULT_PREFIX

VALID_ENVIRONMENTS = frozenset({"local", "dev", "staging", "production"})

DEFAULT_CORS_ORIGINS = (
    "http://localhost:4321",
    "http://localhost:3000",
)
DEFAULT_FROM_EMAIL = "noreply@example.com"
DEFAULT_PUBLIC_APP_URL = "http://localhost:4321"


def _int(env: dict[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc


def _float(env: dict[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class DeployPlaneSettings:
    """Configuration for the deploy-plane FastAPI application.

    All fields have sensible defaults for local development.
    Non-local environments must supply Supabase, GitHub and Cloudflare
    credentials. A missing Resend key only disables notifications.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    """Service-role key for PostgREST calls. Never log this."""

    # ── GitHub ─────────────────────────────────────────────────────
    github_token: str = ""
    github_owner: str = ""
    """Account that owns the created repositories (GITHUB_TEMPLATE_OWNER)."""

    # ── Cloudflare Pages ───────────────────────────────────────────
    cloudflare_api_token: str = ""
    cloudflare_account_id: str = ""

    # ── Notifications (Resend) ─────────────────────────────────────
    resend_api_key: str = ""
    from_email: str = DEFAULT_FROM_EMAIL
    public_app_url: str = DEFAULT_PUBLIC_APP_URL
    """Base URL for dashboard links in notification emails."""

    # ── CORS ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS

    # ── Logging ────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    # ── Workflow tuning ────────────────────────────────────────────
    poll_max_attempts: int = 6
    poll_delay_seconds: float = 5.0
    recheck_poll_attempts: int = 1
    recheck_interval_seconds: float = 60.0
    """0 disables the in-process re-check scheduler."""
    recheck_concurrency: int = 8
    external_call_timeout_seconds: float = 30.0

    # ── Naming / content ───────────────────────────────────────────
    repo_name_prefix: str = DEFAULT_PREFIX
    repo_name_max_length: int = DEFAULT_MAX_SLUG_LENGTH
    landing_template_path: str = ""

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.resend_api_key)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.environment not in VALID_ENVIRONMENTS:
            errors.append(
                f"environment must be one of {sorted(VALID_ENVIRONMENTS)}, "
                f"got {self.environment!r}"
            )
        if not self.is_local:
            required = {
                "supabase_url": self.supabase_url,
                "supabase_service_role_key": self.supabase_service_role_key,
                "github_token": self.github_token,
                "github_owner": self.github_owner,
                "cloudflare_api_token": self.cloudflare_api_token,
                "cloudflare_account_id": self.cloudflare_account_id,
            }
            for name, value in required.items():
                if not value:
                    errors.append(f"{self.environment}: {name} is required")
        if self.poll_max_attempts < 1:
            errors.append("poll_max_attempts must be >= 1")
        if self.recheck_poll_attempts < 1:
            errors.append("recheck_poll_attempts must be >= 1")
        if self.poll_delay_seconds < 0:
            errors.append("poll_delay_seconds must be >= 0")
        if self.recheck_interval_seconds < 0:
            errors.append("recheck_interval_seconds must be >= 0")
        if self.recheck_concurrency < 1:
            errors.append("recheck_concurrency must be >= 1")
        if self.external_call_timeout_seconds <= 0:
            errors.append("external_call_timeout_seconds must be > 0")
        if self.repo_name_max_length < 1:
            errors.append("repo_name_max_length must be >= 1")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> DeployPlaneSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct DeployPlaneSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw
            else DEFAULT_CORS_ORIGINS
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            github_token=env.get("GITHUB_TOKEN", ""),
            github_owner=env.get("GITHUB_TEMPLATE_OWNER", ""),
            cloudflare_api_token=env.get("CLOUDFLARE_API_TOKEN", ""),
            cloudflare_account_id=env.get("CLOUDFLARE_ACCOUNT_ID", ""),
            resend_api_key=env.get("RESEND_API_KEY", ""),
            from_email=env.get("FROM_EMAIL") or DEFAULT_FROM_EMAIL,
            public_app_url=env.get("PUBLIC_APP_URL") or DEFAULT_PUBLIC_APP_URL,
            cors_origins=cors,
            log_level=env.get("LOG_LEVEL") or "INFO",
            log_format=env.get("LOG_FORMAT") or "json",
            poll_max_attempts=_int(env, "DEPLOY_POLL_MAX_ATTEMPTS", 6),
            poll_delay_seconds=_float(env, "DEPLOY_POLL_DELAY_SECONDS", 5.0),
            recheck_poll_attempts=_int(env, "DEPLOY_RECHECK_POLL_ATTEMPTS", 1),
            recheck_interval_seconds=_float(env, "DEPLOY_RECHECK_INTERVAL_SECONDS", 60.0),
            recheck_concurrency=_int(env, "DEPLOY_RECHECK_CONCURRENCY", 8),
            external_call_timeout_seconds=_float(env, "EXTERNAL_CALL_TIMEOUT_SECONDS", 30.0),
            repo_name_prefix=env.get("REPO_NAME_PREFIX") or DEFAULT_PREFIX,
            repo_name_max_length=_int(env, "REPO_NAME_MAX_LENGTH", DEFAULT_MAX_SLUG_LENGTH),
            landing_template_path=env.get("LANDING_TEMPLATE_PATH", ""),
        )
