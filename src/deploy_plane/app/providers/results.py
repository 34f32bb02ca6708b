"""Closed result variants for collaborator calls.

Every provisioner call returns exactly one of:

  Ok(value) | NotFound | RateLimited | TransientError | PermanentError

Failures carry a ``kind`` tag and a ``retryable`` flag so callers can
tell a flaky dependency from a request that will never succeed, without
inspecting HTTP status codes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Generic, TypeVar, Union

T = TypeVar('T')


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    ok: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    """Base for every failure variant."""

    message: str

    ok: ClassVar[bool] = False
    kind: ClassVar[str] = 'failure'
    retryable: ClassVar[bool] = False

    def describe(self) -> str:
        return f'{self.kind}: {self.message}'


@dataclass(frozen=True, slots=True)
class NotFound(ProviderFailure):
    kind: ClassVar[str] = 'not_found'


@dataclass(frozen=True, slots=True)
class RateLimited(ProviderFailure):
    retry_after_seconds: float | None = None

    kind: ClassVar[str] = 'rate_limited'
    retryable: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class TransientError(ProviderFailure):
    kind: ClassVar[str] = 'transient'
    retryable: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class PermanentError(ProviderFailure):
    kind: ClassVar[str] = 'permanent'


ProviderResult = Union[
    Ok[T], NotFound, RateLimited, TransientError, PermanentError,
]


# ── Payloads ─────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CreatedRepo:
    repo_url: str
    canonical_name: str


@dataclass(frozen=True, slots=True)
class SourceRepoRef:
    """Where the hosting platform pulls source from."""

    owner: str
    name: str
    production_branch: str = 'main'


@dataclass(frozen=True, slots=True)
class HostingProject:
    project_ref: str
    public_subdomain: str

    @property
    def public_url(self) -> str:
        if self.public_subdomain.startswith(('http://', 'https://')):
            return self.public_subdomain
        return f'https://{self.public_subdomain}'


@dataclass(frozen=True, slots=True)
class DeploymentInfo:
    deployment_id: str
    url: str | None = None
    stage: str | None = None
    status: str | None = None


# Hosting build statuses that end a build.
BUILD_SUCCESS = 'success'
BUILD_FAILURE_STATUSES = frozenset({'failure', 'canceled'})


@dataclass(frozen=True, slots=True)
class BuildStatus:
    stage: str
    status: str
    url: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status == BUILD_SUCCESS or self.status in BUILD_FAILURE_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == BUILD_SUCCESS
