"""DB helpers for the deployment ledger (Supabase)."""

from .deployment_ledger import SupabaseDeploymentLedger, SupabaseProfileDirectory
from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
    SupabaseUnavailableError,
)
from .supabase_auth import SupabaseAuthIdentityResolver
from .supabase_client import PostgrestFilter, SupabaseClient

__all__ = [
    "PostgrestFilter",
    "SupabaseAuthError",
    "SupabaseAuthIdentityResolver",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseDeploymentLedger",
    "SupabaseError",
    "SupabaseNotFoundError",
    "SupabaseProfileDirectory",
    "SupabaseUnavailableError",
]
