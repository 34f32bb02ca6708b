"""Bounded build-status polling for the ``deploying`` step.

Reads the hosting build status a fixed number of times, separated by a
non-blocking sleep. Running out of attempts is not a failure: the outcome
is ``in_progress`` and a later re-check picks up from the same state.

Status mapping:
  success              -> live
  failure / canceled   -> failed
  anything else        -> still in progress
  transient / 429 read -> still in progress
  not found / other    -> failed
  no build listed yet  -> still in progress
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, TypeVar

from ..protocols import HostingProvisioner
from ..providers.results import (
    BuildStatus,
    PermanentError,
    ProviderResult,
    TransientError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

PollState = Literal['live', 'failed', 'in_progress']

Sleep = Callable[[float], Awaitable[None]]


async def call_with_deadline(
    operation: str,
    call: Awaitable[ProviderResult[T]],
    *,
    timeout_seconds: float | None,
) -> ProviderResult[T]:
    """Await a collaborator call under a deadline, folding errors into results.

    A deadline overrun becomes ``TransientError``. An unexpected exception
    from the collaborator becomes ``PermanentError`` so the caller records
    it like any other failed step.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning('%s timed out after %ss', operation, timeout_seconds)
        return TransientError(f'{operation} timed out after {timeout_seconds}s')
    except Exception as exc:
        logger.exception('%s raised unexpectedly', operation)
        return PermanentError(f'{operation} raised {type(exc).__name__}: {exc}')


@dataclass(frozen=True, slots=True)
class PollOutcome:
    state: PollState
    attempts: int
    build: BuildStatus | None = None
    error: str | None = None
    deployment_id: str | None = None

    @property
    def terminal(self) -> bool:
        return self.state != 'in_progress'


async def _latest_build_id(
    hosting: HostingProvisioner,
    project_ref: str,
    call_timeout_seconds: float | None,
) -> str | None:
    result = await call_with_deadline(
        'latest_deployment',
        hosting.latest_deployment(project_ref),
        timeout_seconds=call_timeout_seconds,
    )
    if not result.ok:
        logger.info(
            'Latest build lookup for %s failed (%s); treating as in progress',
            project_ref, result.describe(),
        )
        return None
    if result.value is None:
        logger.debug('No build listed yet for %s', project_ref)
        return None
    return result.value.deployment_id


async def poll_build(
    hosting: HostingProvisioner,
    project_ref: str,
    deployment_id: str | None,
    *,
    max_attempts: int,
    delay_seconds: float,
    call_timeout_seconds: float | None = None,
    sleep: Sleep = asyncio.sleep,
) -> PollOutcome:
    """Poll one hosting build until it is terminal or attempts run out.

    With no ``deployment_id`` each attempt first looks up the project's
    latest build; the id found is returned on the outcome so the caller
    can record it.
    """
    if max_attempts < 1:
        return PollOutcome(state='in_progress', attempts=0, deployment_id=deployment_id)

    last_build: BuildStatus | None = None
    for attempt in range(1, max_attempts + 1):
        if deployment_id is None:
            deployment_id = await _latest_build_id(
                hosting, project_ref, call_timeout_seconds,
            )

        if deployment_id is not None:
            result = await call_with_deadline(
                'get_deployment_status',
                hosting.get_deployment_status(project_ref, deployment_id),
                timeout_seconds=call_timeout_seconds,
            )

            if result.ok:
                build = result.value
                last_build = build
                if build.succeeded:
                    return PollOutcome(
                        state='live', attempts=attempt, build=build,
                        deployment_id=deployment_id,
                    )
                if build.terminal:
                    return PollOutcome(
                        state='failed',
                        attempts=attempt,
                        build=build,
                        error=f'build {build.status} at stage {build.stage}',
                        deployment_id=deployment_id,
                    )
                logger.debug(
                    'Build %s/%s still running (stage=%s status=%s, attempt %d/%d)',
                    project_ref, deployment_id, build.stage, build.status,
                    attempt, max_attempts,
                )
            elif result.retryable:
                logger.info(
                    'Build status read for %s/%s failed (%s); treating as in progress',
                    project_ref, deployment_id, result.describe(),
                )
            else:
                return PollOutcome(
                    state='failed',
                    attempts=attempt,
                    build=last_build,
                    error=result.describe(),
                    deployment_id=deployment_id,
                )

        if attempt < max_attempts:
            await sleep(delay_seconds)

    return PollOutcome(
        state='in_progress', attempts=max_attempts, build=last_build,
        deployment_id=deployment_id,
    )
