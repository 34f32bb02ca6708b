"""Cloudflare Pages-backed HostingProvisioner.

Every response uses the Cloudflare v4 envelope
(``{success, errors, messages, result}``); a 2xx with ``success: false``
is treated as an error, same as a 4xx.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..deployments.naming import hosting_project_name
from .api_client import ProviderAPIError, RetryingAPIClient, to_failure
from .results import (
    BuildStatus,
    DeploymentInfo,
    HostingProject,
    Ok,
    PermanentError,
    ProviderResult,
    SourceRepoRef,
)

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
COMPATIBILITY_DATE = "2024-01-01"


class CloudflarePagesClient(RetryingAPIClient):
    """Cloudflare v4 API client scoped to one account."""

    service_name = "cloudflare"

    def __init__(
        self,
        *,
        api_token: str,
        account_id: str,
        base_url: str = CLOUDFLARE_API_BASE,
        **kwargs,
    ) -> None:
        if not account_id:
            raise ValueError("account_id is required")
        super().__init__(bearer_token=api_token, base_url=base_url, **kwargs)
        self.account_id = account_id

    def projects_path(self, suffix: str = "") -> str:
        return f"/accounts/{self.account_id}/pages/projects{suffix}"

    def _error_message(self, resp: httpx.Response) -> str:
        try:
            payload = resp.json()
        except ValueError:
            return super()._error_message(resp)
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            return ", ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
            )
        return super()._error_message(resp)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        super()._raise_for_status(resp)
        try:
            payload = resp.json()
        except ValueError:
            return
        if isinstance(payload, dict) and payload.get("success") is False:
            raise ProviderAPIError(
                resp.status_code,
                self._error_message(resp) or "Unknown error",
                service=self.service_name,
                response_body=resp.text,
            )

    async def result(self, method: str, path: str, *, json: Any | None = None) -> Any:
        """Send a request and unwrap the envelope's ``result``."""
        resp = await self.request(method, path, json=json)
        payload = resp.json()
        return payload.get("result") if isinstance(payload, dict) else None


def _project_from_result(result: dict[str, Any], fallback_name: str) -> HostingProject:
    name = result.get("name") or fallback_name
    subdomain = result.get("subdomain") or f"{name}.pages.dev"
    return HostingProject(project_ref=name, public_subdomain=subdomain)


def _deployment_from_result(result: dict[str, Any]) -> DeploymentInfo:
    stage = result.get("latest_stage") or {}
    return DeploymentInfo(
        deployment_id=str(result["id"]),
        url=result.get("url"),
        stage=stage.get("name"),
        status=stage.get("status"),
    )


class CloudflarePagesProvisioner:
    """HostingProvisioner backed by Cloudflare Pages with GitHub integration."""

    def __init__(self, client: CloudflarePagesClient) -> None:
        self._client = client

    async def create_project(
        self, name: str, source: SourceRepoRef,
    ) -> ProviderResult[HostingProject]:
        project_name = hosting_project_name(name)
        body = {
            "name": project_name,
            "production_branch": source.production_branch,
            "source": {
                "type": "github",
                "config": {
                    "owner": source.owner,
                    "repo_name": source.name,
                    "production_branch": source.production_branch,
                    "deployments_enabled": True,
                    "pr_comments_enabled": False,
                },
            },
            "build_config": {
                "build_command": "",
                "destination_dir": "/",
                "root_dir": "/",
            },
            "deployment_configs": {
                "production": {"compatibility_date": COMPATIBILITY_DATE},
            },
        }
        try:
            result = await self._client.result("POST", self._client.projects_path(), json=body)
        except ProviderAPIError as exc:
            logger.warning("Pages project creation failed for %s: %s", project_name, exc)
            return to_failure(exc)
        if not isinstance(result, dict):
            return PermanentError(f"unexpected project payload for {project_name}")
        project = _project_from_result(result, project_name)
        logger.info("Pages project created: %s", project.project_ref)
        return Ok(project)

    async def get_project(self, project_ref: str) -> ProviderResult[HostingProject]:
        try:
            result = await self._client.result("GET", self._client.projects_path(f"/{project_ref}"))
        except ProviderAPIError as exc:
            return to_failure(exc)
        if not isinstance(result, dict):
            return PermanentError(f"unexpected project payload for {project_ref}")
        return Ok(_project_from_result(result, project_ref))

    async def latest_deployment(
        self, project_ref: str,
    ) -> ProviderResult[DeploymentInfo | None]:
        try:
            result = await self._client.result(
                "GET", self._client.projects_path(f"/{project_ref}/deployments"),
            )
        except ProviderAPIError as exc:
            return to_failure(exc)
        # The list endpoint returns either a bare list or {"deployments": [...]}.
        if isinstance(result, dict):
            result = result.get("deployments")
        if not result:
            return Ok(None)
        return Ok(_deployment_from_result(result[0]))

    async def get_deployment_status(
        self, project_ref: str, deployment_id: str,
    ) -> ProviderResult[BuildStatus]:
        try:
            result = await self._client.result(
                "GET",
                self._client.projects_path(f"/{project_ref}/deployments/{deployment_id}"),
            )
        except ProviderAPIError as exc:
            return to_failure(exc)
        if not isinstance(result, dict):
            return PermanentError(f"unexpected deployment payload for {deployment_id}")
        info = _deployment_from_result(result)
        return Ok(
            BuildStatus(
                stage=info.stage or "unknown",
                status=info.status or "unknown",
                url=info.url,
            )
        )

    async def delete_project(self, project_ref: str) -> ProviderResult[None]:
        try:
            await self._client.request("DELETE", self._client.projects_path(f"/{project_ref}"))
        except ProviderAPIError as exc:
            logger.warning("Pages project deletion failed for %s: %s", project_ref, exc)
            return to_failure(exc)
        logger.info("Pages project deleted: %s", project_ref)
        return Ok(None)
