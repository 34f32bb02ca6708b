"""Deployment notification emails via Resend.

Delivery failures never raise: ``notify`` returns ``False`` and logs, so a
broken mail provider cannot fail a provisioning step.
"""

from __future__ import annotations

import logging
from typing import Any

from ..deployments.template_renderer import escape_html
from .api_client import ProviderAPIError, RetryingAPIClient

logger = logging.getLogger(__name__)

RESEND_API_BASE = "https://api.resend.com"
DEFAULT_FROM_EMAIL = "noreply@example.com"

SUBJECT_PREFIX = {
    "started": "Deployment Started",
    "success": "Deployment Successful",
    "failed": "Deployment Failed",
}

_INTRO = {
    "started": "Your landing page deployment has been initiated and is now in progress.",
    "success": "Great news! Your landing page has been successfully deployed.",
    "failed": "Unfortunately, there was an issue deploying your landing page.",
}

_OUTRO = {
    "started": "We'll send you another email once the deployment is complete.",
    "success": "Your landing page is now live and ready to share!",
    "failed": (
        "Please check the deployment details in your dashboard "
        "or contact support if the issue persists."
    ),
}


class ResendClient(RetryingAPIClient):
    service_name = "resend"

    def __init__(self, *, api_key: str, base_url: str = RESEND_API_BASE, **kwargs) -> None:
        super().__init__(bearer_token=api_key, base_url=base_url, **kwargs)


def _detail_lines(kind: str, context: dict[str, Any]) -> list[tuple[str, str]]:
    lines = [
        ("Organization", str(context.get("organization_name", ""))),
        ("Deployment ID", str(context.get("deployment_id", ""))),
    ]
    if kind == "success":
        if context.get("hosting_url"):
            lines.append(("Live URL", str(context["hosting_url"])))
        if context.get("repo_url"):
            lines.append(("GitHub Repository", str(context["repo_url"])))
    if kind == "failed" and context.get("error_message"):
        lines.append(("Error", str(context["error_message"])))
    return lines


def build_subject(kind: str, context: dict[str, Any]) -> str:
    return f"{SUBJECT_PREFIX[kind]}: {context.get('organization_name', '')}"


def build_text(kind: str, context: dict[str, Any], *, dashboard_url: str | None) -> str:
    parts = [_INTRO[kind], ""]
    parts.extend(f"{label}: {value}" for label, value in _detail_lines(kind, context))
    parts.extend(["", _OUTRO[kind]])
    if dashboard_url:
        parts.extend(["", f"View deployment details: {dashboard_url}"])
    return "\n".join(parts)


def build_html(kind: str, context: dict[str, Any], *, dashboard_url: str | None) -> str:
    title = escape_html(SUBJECT_PREFIX[kind])
    details = "\n".join(
        f"<p><strong>{escape_html(label)}:</strong> {escape_html(value)}</p>"
        for label, value in _detail_lines(kind, context)
    )
    link = ""
    if dashboard_url:
        link = f'<p><a href="{escape_html(dashboard_url)}">View Deployment Details</a></p>'
    return (
        "<!DOCTYPE html>\n"
        '<html><head><meta charset="utf-8">'
        f"<title>{title}</title></head>\n"
        "<body>\n"
        f"<h2>{title}</h2>\n"
        f"<p>{escape_html(_INTRO[kind])}</p>\n"
        f"{details}\n"
        f"<p>{escape_html(_OUTRO[kind])}</p>\n"
        f"{link}\n"
        "</body></html>\n"
    )


class ResendNotifier:
    """Notifier that sends one email per status change."""

    def __init__(
        self,
        client: ResendClient,
        *,
        from_email: str = DEFAULT_FROM_EMAIL,
        public_app_url: str = "",
    ) -> None:
        self._client = client
        self._from_email = from_email
        self._public_app_url = public_app_url.rstrip("/")

    def dashboard_url(self, deployment_id: str) -> str | None:
        if not self._public_app_url or not deployment_id:
            return None
        return f"{self._public_app_url}/dashboard/deployments/{deployment_id}"

    async def notify(self, recipient: str, kind: str, context: dict[str, Any]) -> bool:
        if kind not in SUBJECT_PREFIX:
            logger.warning("Unknown notification kind %r; not sent", kind)
            return False
        if not recipient:
            logger.warning("No recipient for %s notification; not sent", kind)
            return False

        dashboard = self.dashboard_url(str(context.get("deployment_id", "")))
        body = {
            "from": self._from_email,
            "to": [recipient],
            "subject": build_subject(kind, context),
            "html": build_html(kind, context, dashboard_url=dashboard),
            "text": build_text(kind, context, dashboard_url=dashboard),
        }
        try:
            resp = await self._client.request("POST", "/emails", json=body)
        except ProviderAPIError as exc:
            logger.warning("Resend delivery failed for %s notification: %s", kind, exc)
            return False

        logger.info(
            "Deployment email sent",
            extra={"kind": kind, "email_id": resp.json().get("id")},
        )
        return True


class NullNotifier:
    """Used when no mail provider is configured: every notification is skipped."""

    async def notify(self, recipient: str, kind: str, context: dict[str, Any]) -> bool:
        logger.warning("Email provider not configured; skipping %s notification", kind)
        return False
