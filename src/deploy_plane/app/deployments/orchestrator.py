"""Deployment orchestrator: drives one deployment through its state machine.

Flow for ``run``:
  queued -> creating_repo -> creating_pages -> deploying -> live

At each step the orchestrator:
  1. Appends an intent entry to the ledger log.
  2. Calls the collaborator under a deadline.
  3. On success, logs the outcome, then commits the step's fields and
     the next status in one conditional update.
  4. On failure, logs the error, then moves the record to ``failed`` with
     ``error_message`` set, notifies and reports the failed step.

``run`` only acts on ``queued`` records. The ``queued -> creating_repo``
claim is a conditional update, so concurrent triggers for the same id
create external resources at most once. ``check_status`` never creates
anything: it performs at most a short poll of the hosting build.

A later step's failure leaves earlier resources in place. Each step's
intent entry names the repository or project it is about to create, and
the record keeps ``source_repo_url`` and the hosting reference, so cleanup
can find them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..observability.logging import bind_deployment
from ..protocols import (
    DeploymentLedger,
    HostingProvisioner,
    NotificationKind,
    Notifier,
    RecipientResolver,
    SourceProvisioner,
)
from ..providers.results import (
    HostingProject,
    ProviderFailure,
    ProviderResult,
    SourceRepoRef,
)
from .ledger import LedgerConflict
from .naming import (
    DEFAULT_MAX_SLUG_LENGTH,
    DEFAULT_PREFIX,
    derive_repo_name,
    hosting_project_name,
    millisecond_token,
    repo_name_from_url,
)
from .polling import PollOutcome, Sleep, call_with_deadline, poll_build
from .records import Deployment
from .state_machine import FAILED, is_terminal
from .template_renderer import render_landing_files

logger = logging.getLogger(__name__)

STEP_SOURCE = 'creating_repo'
STEP_HOSTING = 'creating_pages'
STEP_BUILD = 'deploying'


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class OrchestrationResult:
    """What a ``run`` or ``check_status`` call observed and did."""

    deployment: Deployment
    executed: bool
    failed_step: str | None = None

    @property
    def status(self) -> str:
        return self.deployment.status

    @property
    def error_message(self) -> str | None:
        return self.deployment.error_message

    @property
    def failed(self) -> bool:
        return self.deployment.status == FAILED

    @property
    def in_progress(self) -> bool:
        return not is_terminal(self.deployment.status)


class StepFailed(Exception):
    """A collaborator call failed; carries the step and the recorded message."""

    def __init__(
        self,
        step: str,
        message: str,
        failure: ProviderFailure,
        target: dict[str, str],
    ) -> None:
        self.step = step
        self.message = message
        self.failure = failure
        self.target = target
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class StepCommit:
    """Ledger effect of a successful step."""

    message: str
    patch: dict[str, Any]
    metadata: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Step:
    """One provisioning step, parameterized for the shared step helper."""

    name: str
    intent: str
    failure_prefix: str
    target_key: str
    target: Callable[[Deployment], str]
    action: Callable[[Deployment, str], Awaitable[ProviderResult[Any]]]
    commit: Callable[[Deployment, Any], StepCommit]


# ── Orchestrator ─────────────────────────────────────────────────────


class DeploymentOrchestrator:
    """Runs and re-checks landing-page deployments.

    Collaborators are injected; the orchestrator holds no state of its own
    between calls, so one instance can serve any number of concurrent
    deployments. The ledger is the only coordination point.
    """

    def __init__(
        self,
        *,
        ledger: DeploymentLedger,
        source: SourceProvisioner,
        hosting: HostingProvisioner,
        notifier: Notifier,
        recipients: RecipientResolver | None = None,
        poll_max_attempts: int = 6,
        poll_delay_seconds: float = 5.0,
        recheck_poll_attempts: int = 1,
        call_timeout_seconds: float | None = 30.0,
        repo_name_prefix: str = DEFAULT_PREFIX,
        repo_name_max_length: int = DEFAULT_MAX_SLUG_LENGTH,
        template: str | None = None,
        token_factory: Callable[[], str] = millisecond_token,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._source = source
        self._hosting = hosting
        self._notifier = notifier
        self._recipients = recipients
        self._poll_max_attempts = poll_max_attempts
        self._poll_delay_seconds = poll_delay_seconds
        self._recheck_poll_attempts = recheck_poll_attempts
        self._call_timeout = call_timeout_seconds
        self._repo_name_prefix = repo_name_prefix
        self._repo_name_max_length = repo_name_max_length
        self._template = template
        self._token_factory = token_factory
        self._sleep = sleep

        self._steps = (
            Step(
                name=STEP_SOURCE,
                intent='Creating source repository',
                failure_prefix='Source provisioning failed',
                target_key='repo_name',
                target=self._repo_name,
                action=self._create_source,
                commit=self._commit_source,
            ),
            Step(
                name=STEP_HOSTING,
                intent='Creating hosting project',
                failure_prefix='Hosting provisioning failed',
                target_key='project_ref',
                target=self._hosting_name,
                action=self._create_hosting,
                commit=self._commit_hosting,
            ),
        )

    # ── Public operations ────────────────────────────────────────────

    async def run(self, deployment_id: str) -> OrchestrationResult:
        """Provision a ``queued`` deployment; a no-op for any other status.

        Raises ``DeploymentNotFound`` for an unknown id. Ledger outages
        propagate; collaborator failures are recorded and reported in the
        result.
        """
        with bind_deployment(deployment_id):
            return await self._run(deployment_id)

    async def _run(self, deployment_id: str) -> OrchestrationResult:
        deployment = await self._ledger.get(deployment_id)
        if deployment.status != 'queued':
            logger.info(
                'Run ignored for deployment %s in status %s',
                deployment_id, deployment.status,
            )
            return OrchestrationResult(deployment=deployment, executed=False)

        await self._log(
            deployment_id, 'info', 'Deployment run started',
            {'step': STEP_SOURCE},
        )
        try:
            deployment = await self._ledger.update(
                deployment_id, {'status': STEP_SOURCE}, expected_status='queued',
            )
        except LedgerConflict:
            current = await self._ledger.get(deployment_id)
            logger.info(
                'Deployment %s already claimed (status %s)',
                deployment_id, current.status,
            )
            return OrchestrationResult(deployment=current, executed=False)

        try:
            for step in self._steps:
                deployment = await self._execute_step(deployment, step)
                if step.name == STEP_SOURCE:
                    await self._notify(deployment, 'started')
        except StepFailed as exc:
            return await self._fail(deployment, exc)

        return await self._poll_and_settle(
            deployment, max_attempts=self._poll_max_attempts,
        )

    async def check_status(self, deployment_id: str) -> OrchestrationResult:
        """Re-check a deployment without re-issuing any creation call.

        Terminal records and records not yet in ``deploying`` are returned
        as stored. A ``deploying`` record gets at most a short read-only
        poll; success and build failure are applied as transitions.
        """
        with bind_deployment(deployment_id):
            return await self._check_status(deployment_id)

    async def _check_status(self, deployment_id: str) -> OrchestrationResult:
        deployment = await self._ledger.get(deployment_id)
        if deployment.status != STEP_BUILD:
            return OrchestrationResult(deployment=deployment, executed=False)
        return await self._poll_and_settle(
            deployment, max_attempts=self._recheck_poll_attempts,
        )

    # ── Step helper ──────────────────────────────────────────────────

    async def _execute_step(self, deployment: Deployment, step: Step) -> Deployment:
        # The intent entry names the resource before it can exist.
        target = {step.target_key: step.target(deployment)}
        await self._log(
            deployment.id, 'info', step.intent, {'step': step.name, **target},
        )
        result = await call_with_deadline(
            step.name,
            step.action(deployment, target[step.target_key]),
            timeout_seconds=self._call_timeout,
        )
        if not result.ok:
            raise StepFailed(
                step.name, f'{step.failure_prefix}: {result.message}', result, target,
            )

        commit = step.commit(deployment, result.value)
        await self._log(
            deployment.id, 'info', commit.message,
            {'step': step.name, **commit.metadata},
        )
        return await self._ledger.update(
            deployment.id, commit.patch, expected_status=deployment.status,
        )

    async def _fail(self, deployment: Deployment, exc: StepFailed) -> OrchestrationResult:
        await self._log(
            deployment.id,
            'error',
            exc.message,
            {
                'step': exc.step,
                'kind': exc.failure.kind,
                'retryable': exc.failure.retryable,
                **exc.target,
            },
        )
        deployment = await self._ledger.update(
            deployment.id,
            {'status': FAILED, 'error_message': exc.message},
            expected_status=deployment.status,
        )
        logger.warning(
            'Deployment %s failed at %s: %s', deployment.id, exc.step, exc.message,
        )
        await self._notify(deployment, 'failed')
        return OrchestrationResult(
            deployment=deployment, executed=True, failed_step=exc.step,
        )

    # ── Source step ──────────────────────────────────────────────────

    def _repo_name(self, deployment: Deployment) -> str:
        return derive_repo_name(
            deployment.organization_name,
            prefix=self._repo_name_prefix,
            max_length=self._repo_name_max_length,
            token_factory=self._token_factory,
        )

    async def _create_source(
        self, deployment: Deployment, name: str,
    ) -> ProviderResult[Any]:
        files = render_landing_files(
            organization_name=deployment.organization_name,
            signer_name=deployment.signer_name,
            signer_email=deployment.signer_email,
            template=self._template,
        )
        return await self._source.create_repo(
            name, files, description=f'Landing page for {deployment.organization_name}',
        )

    def _commit_source(self, deployment: Deployment, repo: Any) -> StepCommit:
        return StepCommit(
            message=f'Source repository created: {repo.repo_url}',
            patch={'source_repo_url': repo.repo_url, 'status': STEP_HOSTING},
            metadata={'repo_name': repo.canonical_name},
        )

    # ── Hosting step ─────────────────────────────────────────────────

    def _hosting_name(self, deployment: Deployment) -> str:
        return hosting_project_name(repo_name_from_url(deployment.source_repo_url or ''))

    async def _create_hosting(
        self, deployment: Deployment, name: str,
    ) -> ProviderResult[Any]:
        repo_name = repo_name_from_url(deployment.source_repo_url or '')
        return await self._hosting.create_project(
            name, SourceRepoRef(owner=self._source.owner, name=repo_name),
        )

    def _commit_hosting(self, deployment: Deployment, project: HostingProject) -> StepCommit:
        return StepCommit(
            message=f'Hosting project created: {project.public_url}',
            patch={
                'hosting_project_ref': project.project_ref,
                'hosting_url': project.public_url,
                'status': STEP_BUILD,
            },
            metadata={'project_ref': project.project_ref},
        )

    # ── Build polling ────────────────────────────────────────────────

    def _project_ref(self, deployment: Deployment) -> str:
        return deployment.hosting_project_ref or self._hosting_name(deployment)

    async def _poll_and_settle(
        self, deployment: Deployment, *, max_attempts: int,
    ) -> OrchestrationResult:
        outcome = await poll_build(
            self._hosting,
            self._project_ref(deployment),
            deployment.hosting_deployment_id,
            max_attempts=max_attempts,
            delay_seconds=self._poll_delay_seconds,
            call_timeout_seconds=self._call_timeout,
            sleep=self._sleep,
        )
        return await self._settle(deployment, outcome)

    async def _settle(
        self, deployment: Deployment, outcome: PollOutcome,
    ) -> OrchestrationResult:
        """Record a poll outcome with one log entry and at most one update."""
        metadata = {
            'step': STEP_BUILD,
            'attempts': outcome.attempts,
            'hosting_deployment_id': outcome.deployment_id,
        }
        patch: dict[str, Any] = {}
        discovered = outcome.deployment_id
        if discovered and discovered != deployment.hosting_deployment_id:
            patch['hosting_deployment_id'] = discovered

        kind: NotificationKind | None = None
        if outcome.state == 'in_progress':
            await self._log(
                deployment.id, 'info', 'Hosting build still in progress', metadata,
            )
        elif outcome.state == 'failed':
            message = f'Hosting build failed: {outcome.error}'
            await self._log(deployment.id, 'error', message, metadata)
            patch.update({'status': FAILED, 'error_message': message})
            kind = 'failed'
        else:
            await self._log(deployment.id, 'info', 'Deployment is live', metadata)
            patch['status'] = 'live'
            kind = 'success'

        if patch:
            try:
                deployment = await self._ledger.update(
                    deployment.id, patch, expected_status=STEP_BUILD,
                )
            except LedgerConflict:
                # A concurrent check settled it first and sent the notification.
                current = await self._ledger.get(deployment.id)
                return OrchestrationResult(deployment=current, executed=False)

        if kind is None:
            return OrchestrationResult(deployment=deployment, executed=True)
        await self._notify(deployment, kind)
        return OrchestrationResult(
            deployment=deployment,
            executed=True,
            failed_step=STEP_BUILD if kind == 'failed' else None,
        )

    # ── Ledger log and notifications ─────────────────────────────────

    async def _log(
        self,
        deployment_id: str,
        level: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self._ledger.append_log(deployment_id, level, message, metadata)

    async def _recipient_for(self, deployment: Deployment) -> str | None:
        if self._recipients is not None:
            try:
                email = await self._recipients.email_for(deployment.owner)
            except Exception:
                logger.warning(
                    'Recipient lookup failed for owner of deployment %s',
                    deployment.id, exc_info=True,
                )
                email = None
            if email:
                return email
        return deployment.signer_email or None

    async def _notify(self, deployment: Deployment, kind: NotificationKind) -> None:
        """Send a notification; failures are logged as warnings and never raised."""
        context = {
            'organization_name': deployment.organization_name,
            'deployment_id': deployment.id,
            'hosting_url': deployment.hosting_url,
            'repo_url': deployment.source_repo_url,
            'error_message': deployment.error_message,
        }
        recipient = await self._recipient_for(deployment)
        delivered = False
        reason = 'no recipient'
        if recipient:
            try:
                delivered = await asyncio.wait_for(
                    self._notifier.notify(recipient, kind, context),
                    timeout=self._call_timeout,
                )
                reason = 'notifier reported failure'
            except Exception as exc:
                reason = f'{type(exc).__name__}: {exc}'

        if delivered:
            return
        logger.warning(
            'Notification %s for deployment %s not delivered: %s',
            kind, deployment.id, reason,
        )
        await self._log(
            deployment.id, 'warning', f'Notification "{kind}" not delivered',
            {'kind': kind, 'reason': reason},
        )
