"""Async PostgREST client wrapper for Supabase.

This is the single point of Supabase HTTP interaction for the ledger and
the profile directory. Requests use the service-role key, so callers must
scope every query themselves (owner checks live in the routes).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, Union

import httpx

from .errors import SupabaseError, SupabaseUnavailableError, error_class_for_status

_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


@dataclass(frozen=True, slots=True)
class PostgrestFilter:
    column: str
    op: str
    value: Any


Filters = Union[Sequence[PostgrestFilter], Mapping[str, Any], None]


def _encode_filter_value(op: str, value: Any) -> str:
    if op == "is":
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    if op == "in":
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("in operator requires an iterable of values")
        items = []
        for v in value:
            if isinstance(v, str):
                # PostgREST expects quoted strings inside `in.(...)`.
                items.append(json.dumps(v))
            elif v is None:
                items.append("null")
            else:
                items.append(str(v))
        return f"({','.join(items)})"

    if value is None:
        raise ValueError(f"{op} does not support None; use op='is' with value=None")

    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filters_to_params(filters: Filters) -> dict[str, str]:
    if not filters:
        return {}

    params: dict[str, str] = {}

    if isinstance(filters, Mapping):
        items: Iterable[tuple[str, tuple[str, Any] | Any]] = filters.items()
        for col, spec in items:
            if isinstance(spec, tuple) and len(spec) == 2:
                op, val = spec
            else:
                op, val = "eq", spec
            op_str = str(op)
            params[str(col)] = f"{op_str}.{_encode_filter_value(op_str, val)}"
        return params

    for f in filters:
        params[f.column] = f"{f.op}.{_encode_filter_value(f.op, f.value)}"
    return params


class SupabaseClient:
    """Minimal async PostgREST client (service role) for public-schema tables."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._supabase_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout_seconds = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()

    @property
    def base_rest_url(self) -> str:
        return f"{self._supabase_url}/rest/v1"

    def _auth_headers(self) -> dict[str, str]:
        # Never log these headers.
        return {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }

    def _raise_for_error(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        message = resp.text
        code = details = hint = None

        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get("message") or message
                code = payload.get("code")
                details = payload.get("details")
                hint = payload.get("hint")
        except ValueError:
            pass

        # Avoid including secrets in the exception string.
        raise error_class_for_status(resp.status_code)(
            status_code=resp.status_code,
            message=message,
            code=code,
            details=details,
            hint=hint,
        )

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any | None = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        headers = self._auth_headers()
        if prefer:
            headers["Prefer"] = prefer
        try:
            resp = await self._client.request(
                method,
                f"{self.base_rest_url}/{table}",
                params=params,
                json=json_body,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        except httpx.TransportError as exc:
            raise SupabaseUnavailableError(
                status_code=0,
                message=f"{type(exc).__name__} talking to Supabase",
            ) from exc
        self._raise_for_error(resp)
        payload = resp.json()
        if not isinstance(payload, list):
            raise SupabaseError(
                status_code=500,
                message=f"expected list response from {method} {table}",
            )
        return payload

    async def select(
        self,
        table: str,
        filters: Filters = None,
        *,
        columns: str = "*",
        limit: int | None = None,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        params = _filters_to_params(filters)
        params["select"] = columns
        if limit is not None:
            params["limit"] = str(int(limit))
        if order:
            params["order"] = order
        return await self._request("GET", table, params=params)

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        return await self._request(
            "POST",
            table,
            json_body=data,
            prefer="return=representation",
        )

    async def update(
        self,
        table: str,
        filters: Filters,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        """PATCH rows matching ``filters``; returns the rows actually changed.

        PostgREST applies the filter and the write in one statement, so a
        filter on the current value acts as a compare-and-set.
        """
        if not filters:
            raise ValueError("update requires at least one filter")
        return await self._request(
            "PATCH",
            table,
            params=_filters_to_params(filters),
            json_body=data,
            prefer="return=representation",
        )
