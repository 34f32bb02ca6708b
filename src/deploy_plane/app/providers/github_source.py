"""GitHub-backed SourceProvisioner.

Creates a public repository for the token's user and commits the rendered
landing files as the root commit of ``main`` through the Git Data API
(blobs -> tree -> commit -> ref). The repository is created empty
(``auto_init=false``) so the landing content is the first commit.

A repository left behind by a failed commit step is not deleted here; the
orchestrator records the failure and cleanup is an out-of-band operation.
"""

from __future__ import annotations

import base64
import logging
from typing import Sequence

import httpx

from ..deployments.template_renderer import RepoFile
from .api_client import ProviderAPIError, ProviderNotFoundError, RetryingAPIClient, to_failure
from .results import CreatedRepo, Ok, PermanentError, ProviderResult

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
INITIAL_COMMIT_MESSAGE = "Initial commit: Add landing page"
DEFAULT_BRANCH = "main"


class GitHubClient(RetryingAPIClient):
    """Thin GitHub REST client."""

    service_name = "github"

    def __init__(self, *, token: str, base_url: str = GITHUB_API_BASE, **kwargs) -> None:
        super().__init__(
            bearer_token=token,
            base_url=base_url,
            extra_headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            **kwargs,
        )

    def _error_message(self, resp: httpx.Response) -> str:
        message = super()._error_message(resp)
        try:
            payload = resp.json()
        except ValueError:
            return message
        if isinstance(payload, dict) and isinstance(payload.get("errors"), list):
            details = [
                e.get("message") or e.get("code", "")
                for e in payload["errors"]
                if isinstance(e, dict)
            ]
            details = [d for d in details if d]
            if details:
                message = f"{message} ({'; '.join(details)})"
        return message


class GitHubSourceProvisioner:
    """SourceProvisioner backed by the GitHub REST API."""

    def __init__(
        self,
        client: GitHubClient,
        *,
        owner: str,
        branch: str = DEFAULT_BRANCH,
    ) -> None:
        if not owner:
            raise ValueError("owner is required")
        self._client = client
        self._owner = owner
        self._branch = branch

    @property
    def owner(self) -> str:
        return self._owner

    async def create_repo(
        self,
        name: str,
        files: Sequence[RepoFile],
        *,
        description: str = "",
    ) -> ProviderResult[CreatedRepo]:
        if not files:
            return PermanentError("at least one file is required for the initial commit")
        try:
            resp = await self._client.request(
                "POST",
                "/user/repos",
                json={
                    "name": name,
                    "description": description,
                    "private": False,
                    "auto_init": False,
                },
            )
            repo = resp.json()
            canonical_name = repo.get("name", name)
            logger.info(
                "GitHub repository created: %s/%s",
                self._owner,
                canonical_name,
                extra={"repo_name": canonical_name},
            )
            await self._commit_initial_files(canonical_name, files)
        except ProviderAPIError as exc:
            logger.warning("GitHub create_repo failed for %s: %s", name, exc)
            return to_failure(exc)

        return Ok(
            CreatedRepo(
                repo_url=repo.get("html_url") or f"https://github.com/{self._owner}/{canonical_name}",
                canonical_name=canonical_name,
            )
        )

    async def _commit_initial_files(self, repo: str, files: Sequence[RepoFile]) -> None:
        base = f"/repos/{self._owner}/{repo}/git"
        tree = []
        for f in files:
            blob = await self._client.request(
                "POST",
                f"{base}/blobs",
                json={
                    "content": base64.b64encode(f.content.encode("utf-8")).decode("ascii"),
                    "encoding": "base64",
                },
            )
            tree.append(
                {
                    "path": f.path,
                    "mode": "100644",
                    "type": "blob",
                    "sha": blob.json()["sha"],
                }
            )

        tree_resp = await self._client.request("POST", f"{base}/trees", json={"tree": tree})
        commit_resp = await self._client.request(
            "POST",
            f"{base}/commits",
            json={
                "message": INITIAL_COMMIT_MESSAGE,
                "tree": tree_resp.json()["sha"],
                "parents": [],
            },
        )
        await self._client.request(
            "POST",
            f"{base}/refs",
            json={
                "ref": f"refs/heads/{self._branch}",
                "sha": commit_resp.json()["sha"],
            },
        )

    async def exists(self, name: str) -> ProviderResult[bool]:
        try:
            await self._client.request("GET", f"/repos/{self._owner}/{name}")
        except ProviderNotFoundError:
            return Ok(False)
        except ProviderAPIError as exc:
            return to_failure(exc)
        return Ok(True)

    async def delete(self, name: str) -> ProviderResult[None]:
        try:
            await self._client.request("DELETE", f"/repos/{self._owner}/{name}")
        except ProviderAPIError as exc:
            logger.warning("GitHub delete failed for %s: %s", name, exc)
            return to_failure(exc)
        logger.info("GitHub repository deleted: %s/%s", self._owner, name)
        return Ok(None)
