"""Repository and hosting-project naming.

Names are derived once, at repo-creation time, from the free-form
organization name:

  landing-<slug>-<token>

``slug`` is the lower-cased organization name with every run of
non-alphanumeric characters collapsed to ``-``, trimmed and cut to a
bounded length. ``token`` is a millisecond timestamp so repeated requests
for the same organization never produce the same name. The hosting
project name is a pure function of the repo name, and the repo name is
recoverable from the repository URL, so no lookup is needed between the
two provisioning steps.
"""

from __future__ import annotations

import re
import time
from typing import Callable

DEFAULT_PREFIX = 'landing'
DEFAULT_MAX_SLUG_LENGTH = 50
EMPTY_SLUG = 'site'

NAME_PATTERN = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')

_NON_ALNUM_RE = re.compile(r'[^a-z0-9]+')
_PROJECT_INVALID_RE = re.compile(r'[^a-z0-9-]')


def millisecond_token() -> str:
    return str(time.time_ns() // 1_000_000)


def slugify_organization(
    organization_name: str,
    *,
    max_length: int = DEFAULT_MAX_SLUG_LENGTH,
) -> str:
    """Lower-case, hyphenate and bound an organization name."""
    if max_length < 1:
        raise ValueError('max_length must be >= 1')
    slug = _NON_ALNUM_RE.sub('-', organization_name.lower()).strip('-')
    slug = slug[:max_length].strip('-')
    return slug or EMPTY_SLUG


def derive_repo_name(
    organization_name: str,
    *,
    prefix: str = DEFAULT_PREFIX,
    max_length: int = DEFAULT_MAX_SLUG_LENGTH,
    token_factory: Callable[[], str] = millisecond_token,
) -> str:
    """Derive a unique, constrained-charset repository name."""
    slug = slugify_organization(organization_name, max_length=max_length)
    token = _NON_ALNUM_RE.sub('-', token_factory().lower()).strip('-')
    if not token:
        raise ValueError('uniqueness token must contain alphanumerics')
    parts = [p for p in (prefix.strip('-').lower(), slug, token) if p]
    return '-'.join(parts)


def hosting_project_name(repo_name: str) -> str:
    """Hosting project names are lower-case alphanumerics and hyphens."""
    return _PROJECT_INVALID_RE.sub('-', repo_name.lower())


def repo_name_from_url(repo_url: str) -> str:
    """Recover the repository name from its URL (last path segment)."""
    name = repo_url.rstrip('/').rsplit('/', 1)[-1]
    if name.endswith('.git'):
        name = name[: -len('.git')]
    if not name:
        raise ValueError(f'cannot derive repository name from {repo_url!r}')
    return name


def is_valid_name(name: str, *, max_total_length: int = 100) -> bool:
    return len(name) <= max_total_length and bool(NAME_PATTERN.match(name))
