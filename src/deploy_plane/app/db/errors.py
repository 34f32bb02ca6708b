"""Supabase client error hierarchy.

Kept small and dependency-free so ledger code and routes can handle them
without touching httpx.Response objects (or the service-role key).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    """Base Supabase error for PostgREST requests."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    def __str__(self) -> str:
        bits: list[str] = [f"SupabaseError(status={self.status_code})", self.message]
        if self.code:
            bits.append(f"code={self.code}")
        if self.details:
            bits.append(f"details={self.details}")
        return " ".join(bits)


class SupabaseAuthError(SupabaseError):
    """401/403 auth errors (bad key, RLS, expired session, etc.)."""


class SupabaseNotFoundError(SupabaseError):
    """404 errors (missing table/view/route)."""


class SupabaseConflictError(SupabaseError):
    """409 conflicts (unique violations, etc.)."""


class SupabaseUnavailableError(SupabaseError):
    """429/5xx and transport failures: the ledger is temporarily unreachable."""


def error_class_for_status(status_code: int) -> type[SupabaseError]:
    if status_code in (401, 403):
        return SupabaseAuthError
    if status_code == 404:
        return SupabaseNotFoundError
    if status_code == 409:
        return SupabaseConflictError
    if status_code == 429 or status_code >= 500:
        return SupabaseUnavailableError
    return SupabaseError
