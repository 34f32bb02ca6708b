"""IdentityResolver backed by Supabase Auth.

Resolves an access token (bearer header or ``sb-access-token`` cookie) to
the user id by asking Supabase Auth who the token belongs to. Token
validation itself stays with Supabase.
"""

from __future__ import annotations

import logging

import httpx

from .errors import SupabaseUnavailableError

logger = logging.getLogger(__name__)


class SupabaseAuthIdentityResolver:
    def __init__(
        self,
        *,
        supabase_url: str,
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        self._user_url = f"{supabase_url.rstrip('/')}/auth/v1/user"
        self._api_key = api_key
        self._client = http_client or httpx.AsyncClient()
        self._timeout = float(timeout_seconds)

    async def principal_id(self, credential: str) -> str | None:
        if not credential:
            return None
        try:
            resp = await self._client.get(
                self._user_url,
                headers={
                    "apikey": self._api_key,
                    "Authorization": f"Bearer {credential}",
                },
                timeout=self._timeout,
            )
        except httpx.TransportError as exc:
            raise SupabaseUnavailableError(
                status_code=0,
                message=f"{type(exc).__name__} talking to Supabase Auth",
            ) from exc

        if resp.status_code in (401, 403):
            return None
        if resp.status_code >= 400:
            raise SupabaseUnavailableError(
                status_code=resp.status_code,
                message="Supabase Auth user lookup failed",
            )
        user_id = resp.json().get("id")
        return str(user_id) if user_id else None
