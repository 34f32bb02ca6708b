"""Deployment orchestrator tests: provisioning flow, idempotency, polling, notifications."""

from __future__ import annotations

import asyncio
import itertools

import pytest

from deploy_plane.app.deployments.ledger import DeploymentNotFound
from deploy_plane.app.deployments.orchestrator import (
    STEP_BUILD,
    STEP_HOSTING,
    STEP_SOURCE,
    DeploymentOrchestrator,
)
from deploy_plane.app.deployments.state_machine import (
    DEPLOYMENT_SEQUENCE,
    is_monotonic,
)
from deploy_plane.app.inmemory import (
    InMemoryDeploymentLedger,
    InMemoryHostingProvisioner,
    InMemoryRecipientDirectory,
    InMemorySourceProvisioner,
    RecordingNotifier,
)
from deploy_plane.app.providers.results import (
    NotFound,
    PermanentError,
    TransientError,
)

DEPLOYMENT_ID = 'dep-1'


class _Sleeps:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _tokens():
    counter = itertools.count(1_700_000_000_000)
    return lambda: str(next(counter))


def _make_orchestrator(
    *,
    source: InMemorySourceProvisioner | None = None,
    hosting: InMemoryHostingProvisioner | None = None,
    notifier: RecordingNotifier | None = None,
    recipients: InMemoryRecipientDirectory | None = None,
    ledger: InMemoryDeploymentLedger | None = None,
    **kwargs,
):
    ledger = ledger or InMemoryDeploymentLedger()
    source = source or InMemorySourceProvisioner(owner='acme-bot')
    hosting = hosting or InMemoryHostingProvisioner()
    notifier = notifier or RecordingNotifier()
    kwargs.setdefault('poll_max_attempts', 3)
    kwargs.setdefault('poll_delay_seconds', 5.0)
    kwargs.setdefault('call_timeout_seconds', 1.0)
    kwargs.setdefault('template', '<h1>{{ORGANIZATION_NAME}}</h1>')
    kwargs.setdefault('token_factory', _tokens())
    kwargs.setdefault('sleep', _Sleeps())
    orchestrator = DeploymentOrchestrator(
        ledger=ledger,
        source=source,
        hosting=hosting,
        notifier=notifier,
        recipients=recipients,
        **kwargs,
    )
    return orchestrator, ledger, source, hosting, notifier


async def _seed(ledger: InMemoryDeploymentLedger, **overrides):
    fields = {
        'owner': 'user-1',
        'organization_name': 'Acme Corp',
        'signer_name': 'Jane Doe',
        'signer_email': 'jane@example.com',
        'deployment_id': DEPLOYMENT_ID,
    }
    fields.update(overrides)
    return await ledger.create(**fields)


def _statuses(ledger: InMemoryDeploymentLedger, deployment_id: str = DEPLOYMENT_ID):
    return [status for _, status in ledger.history[deployment_id]]


# ── Happy path ───────────────────────────────────────────────────────


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_runs_queued_deployment_to_live(self):
        orchestrator, ledger, source, hosting, notifier = _make_orchestrator()
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.executed is True
        assert result.status == 'live'
        assert result.failed_step is None
        assert result.error_message is None
        assert result.in_progress is False

        deployment = result.deployment
        assert deployment.source_repo_url == (
            'https://github.com/acme-bot/landing-acme-corp-1700000000000'
        )
        assert deployment.hosting_project_ref == 'landing-acme-corp-1700000000000'
        assert deployment.hosting_url == (
            'https://landing-acme-corp-1700000000000.pages.dev'
        )
        assert deployment.hosting_deployment_id is not None

    @pytest.mark.asyncio
    async def test_status_history_follows_success_path(self):
        orchestrator, ledger, *_ = _make_orchestrator()
        await _seed(ledger)

        await orchestrator.run(DEPLOYMENT_ID)

        assert tuple(_statuses(ledger)) == DEPLOYMENT_SEQUENCE
        assert is_monotonic(_statuses(ledger))

    @pytest.mark.asyncio
    async def test_commits_rendered_files_to_source(self):
        orchestrator, ledger, source, *_ = _make_orchestrator()
        await _seed(ledger, organization_name='<Acme & Sons>')

        await orchestrator.run(DEPLOYMENT_ID)

        (files,) = source.repos.values()
        by_path = {f.path: f.content for f in files}
        assert set(by_path) == {'index.html', 'README.md'}
        assert by_path['index.html'] == '<h1>&lt;Acme &amp; Sons&gt;</h1>'

    @pytest.mark.asyncio
    async def test_hosting_project_points_at_source_repo(self):
        orchestrator, ledger, source, hosting, _ = _make_orchestrator()
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        ref = result.deployment.hosting_project_ref
        assert hosting.sources[ref].owner == 'acme-bot'
        assert hosting.sources[ref].name == ref
        assert hosting.sources[ref].production_branch == 'main'

    @pytest.mark.asyncio
    async def test_sends_started_then_success(self):
        orchestrator, ledger, _, _, notifier = _make_orchestrator()
        await _seed(ledger)

        await orchestrator.run(DEPLOYMENT_ID)

        assert notifier.kinds == ['started', 'success']
        recipient, _, context = notifier.sent[-1]
        assert recipient == 'jane@example.com'
        assert context['organization_name'] == 'Acme Corp'
        assert context['deployment_id'] == DEPLOYMENT_ID
        assert context['hosting_url'].endswith('.pages.dev')

    @pytest.mark.asyncio
    async def test_recipient_directory_takes_precedence(self):
        orchestrator, ledger, _, _, notifier = _make_orchestrator(
            recipients=InMemoryRecipientDirectory({'user-1': 'owner@example.com'}),
        )
        await _seed(ledger)

        await orchestrator.run(DEPLOYMENT_ID)

        assert {recipient for recipient, _, _ in notifier.sent} == {'owner@example.com'}

    @pytest.mark.asyncio
    async def test_ledger_log_describes_each_step(self):
        orchestrator, ledger, *_ = _make_orchestrator()
        await _seed(ledger)

        await orchestrator.run(DEPLOYMENT_ID)

        logs = await ledger.list_logs(DEPLOYMENT_ID)
        messages = [entry.message for entry in logs]
        assert messages[0] == 'Deployment run started'
        assert 'Creating source repository' in messages
        assert 'Creating hosting project' in messages
        assert messages[-1] == 'Deployment is live'
        assert all(entry.level == 'info' for entry in logs)
        steps = {entry.metadata['step'] for entry in logs}
        assert steps == {STEP_SOURCE, STEP_HOSTING, STEP_BUILD}


# ── Log-before-state ordering ────────────────────────────────────────


class TestLogOrdering:
    @pytest.mark.asyncio
    async def test_every_transition_is_preceded_by_a_log_entry(self):
        orchestrator, ledger, *_ = _make_orchestrator()
        await _seed(ledger)

        await orchestrator.run(DEPLOYMENT_ID)

        logs = await ledger.list_logs(DEPLOYMENT_ID)
        history = ledger.history[DEPLOYMENT_ID]
        for (previous_at, _), (changed_at, status) in zip(history, history[1:]):
            preceding = [
                entry for entry in logs
                if previous_at <= entry.created_at <= changed_at
            ]
            assert preceding, f'no log entry before transition to {status}'

    @pytest.mark.asyncio
    async def test_failure_is_logged_before_failed_status(self):
        orchestrator, ledger, *_ = _make_orchestrator(
            hosting=InMemoryHostingProvisioner(
                create_failure=PermanentError('quota exceeded'),
            ),
        )
        await _seed(ledger)

        await orchestrator.run(DEPLOYMENT_ID)

        logs = await ledger.list_logs(DEPLOYMENT_ID)
        errors = [entry for entry in logs if entry.level == 'error']
        assert len(errors) == 1
        failed_at = ledger.history[DEPLOYMENT_ID][-1][0]
        assert errors[0].created_at <= failed_at


# ── Idempotency ──────────────────────────────────────────────────────


class TestIdempotentRun:
    @pytest.mark.asyncio
    async def test_second_run_is_a_noop(self):
        orchestrator, ledger, source, hosting, notifier = _make_orchestrator()
        await _seed(ledger)

        first = await orchestrator.run(DEPLOYMENT_ID)
        second = await orchestrator.run(DEPLOYMENT_ID)

        assert first.executed is True
        assert second.executed is False
        assert second.status == 'live'
        assert [c for c in source.calls if c[0] == 'create_repo'] == [
            ('create_repo', 'landing-acme-corp-1700000000000'),
        ]
        assert len([c for c in hosting.calls if c[0] == 'create_project']) == 1
        assert notifier.kinds == ['started', 'success']

    @pytest.mark.asyncio
    async def test_concurrent_runs_create_resources_once(self):
        orchestrator, ledger, source, hosting, notifier = _make_orchestrator()
        await _seed(ledger)

        results = await asyncio.gather(
            orchestrator.run(DEPLOYMENT_ID),
            orchestrator.run(DEPLOYMENT_ID),
            orchestrator.run(DEPLOYMENT_ID),
        )

        assert sum(1 for r in results if r.executed) == 1
        assert len([c for c in source.calls if c[0] == 'create_repo']) == 1
        assert len([c for c in hosting.calls if c[0] == 'create_project']) == 1
        assert len(source.repos) == 1
        assert notifier.kinds.count('success') == 1
        assert is_monotonic(_statuses(ledger))
        assert (await ledger.get(DEPLOYMENT_ID)).status == 'live'

    @pytest.mark.asyncio
    async def test_run_on_failed_deployment_does_nothing(self):
        orchestrator, ledger, source, _, notifier = _make_orchestrator(
            source=InMemorySourceProvisioner(create_failure=PermanentError('nope')),
        )
        await _seed(ledger)
        await orchestrator.run(DEPLOYMENT_ID)
        calls_before = list(source.calls)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.executed is False
        assert result.status == 'failed'
        assert source.calls == calls_before
        assert notifier.kinds == ['failed']

    @pytest.mark.asyncio
    async def test_unknown_deployment_raises(self):
        orchestrator, *_ = _make_orchestrator()

        with pytest.raises(DeploymentNotFound):
            await orchestrator.run('missing')


# ── Step failures ────────────────────────────────────────────────────


class _OrphaningSource(InMemorySourceProvisioner):
    """Creates the repository, then reports the commit as failed."""

    async def create_repo(self, name, files, *, description=''):
        await super().create_repo(name, files, description=description)
        return PermanentError('commit rejected')


class _OrphaningHosting(InMemoryHostingProvisioner):
    async def create_project(self, name, source):
        await super().create_project(name, source)
        return TransientError('gateway timeout')


class _HangingSource(InMemorySourceProvisioner):
    async def create_repo(self, name, files, *, description=''):
        self.calls.append(('create_repo', name))
        await asyncio.Event().wait()


class _ExplodingHosting(InMemoryHostingProvisioner):
    async def create_project(self, name, source):
        raise RuntimeError('connection reset')


class TestStepFailures:
    @pytest.mark.asyncio
    async def test_source_failure_marks_failed(self):
        orchestrator, ledger, _, hosting, notifier = _make_orchestrator(
            source=InMemorySourceProvisioner(
                create_failure=TransientError('502 from repository host'),
            ),
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.executed is True
        assert result.failed is True
        assert result.failed_step == STEP_SOURCE
        assert result.error_message == (
            'Source provisioning failed: 502 from repository host'
        )
        assert result.deployment.source_repo_url is None
        assert hosting.calls == []
        assert notifier.kinds == ['failed']
        assert _statuses(ledger) == ['queued', 'creating_repo', 'failed']

    @pytest.mark.asyncio
    async def test_failure_log_carries_kind_and_retryable(self):
        orchestrator, ledger, *_ = _make_orchestrator(
            source=InMemorySourceProvisioner(create_failure=TransientError('busy')),
        )
        await _seed(ledger)

        await orchestrator.run(DEPLOYMENT_ID)

        logs = await ledger.list_logs(DEPLOYMENT_ID)
        (error,) = [entry for entry in logs if entry.level == 'error']
        assert error.metadata == {
            'step': STEP_SOURCE,
            'kind': 'transient',
            'retryable': True,
            'repo_name': 'landing-acme-corp-1700000000000',
        }

    @pytest.mark.asyncio
    async def test_hosting_failure_keeps_source_reference(self):
        orchestrator, ledger, source, _, notifier = _make_orchestrator(
            hosting=InMemoryHostingProvisioner(
                create_failure=PermanentError('quota exceeded'),
            ),
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'failed'
        assert result.failed_step == STEP_HOSTING
        assert result.error_message.startswith('Hosting provisioning failed')
        assert 'quota exceeded' in result.error_message
        assert result.deployment.source_repo_url is not None
        assert len(source.repos) == 1
        assert notifier.kinds == ['started', 'failed']

    @pytest.mark.asyncio
    async def test_repo_created_by_failed_call_is_named_in_ledger(self):
        orchestrator, ledger, source, *_ = _make_orchestrator(
            source=_OrphaningSource(owner='acme-bot'),
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        name = 'landing-acme-corp-1700000000000'
        assert result.status == 'failed'
        assert result.deployment.source_repo_url is None
        assert name in source.repos
        logs = await ledger.list_logs(DEPLOYMENT_ID)
        intent = next(e for e in logs if e.message == 'Creating source repository')
        (error,) = [e for e in logs if e.level == 'error']
        assert intent.metadata['repo_name'] == name
        assert error.metadata['repo_name'] == name

    @pytest.mark.asyncio
    async def test_project_created_by_failed_call_is_named_in_ledger(self):
        orchestrator, ledger, _, hosting, _ = _make_orchestrator(
            hosting=_OrphaningHosting(),
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        name = 'landing-acme-corp-1700000000000'
        assert result.failed_step == STEP_HOSTING
        assert result.deployment.hosting_project_ref is None
        assert name in hosting.projects
        logs = await ledger.list_logs(DEPLOYMENT_ID)
        intent = next(e for e in logs if e.message == 'Creating hosting project')
        (error,) = [e for e in logs if e.level == 'error']
        assert intent.metadata['project_ref'] == name
        assert error.metadata['project_ref'] == name

    @pytest.mark.asyncio
    async def test_collaborator_timeout_is_recorded(self):
        orchestrator, ledger, *_ = _make_orchestrator(
            source=_HangingSource(),
            call_timeout_seconds=0.01,
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'failed'
        assert result.failed_step == STEP_SOURCE
        assert 'timed out' in result.error_message

    @pytest.mark.asyncio
    async def test_collaborator_exception_is_recorded(self):
        orchestrator, ledger, *_ = _make_orchestrator(hosting=_ExplodingHosting())
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'failed'
        assert result.failed_step == STEP_HOSTING
        assert 'RuntimeError' in result.error_message
        assert 'connection reset' in result.error_message

    @pytest.mark.asyncio
    async def test_terminal_build_failure_marks_failed(self):
        orchestrator, ledger, _, _, notifier = _make_orchestrator(
            hosting=InMemoryHostingProvisioner(build_statuses=('building', 'failure')),
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'failed'
        assert result.failed_step == STEP_BUILD
        assert result.error_message == (
            'Hosting build failed: build failure at stage build'
        )
        assert notifier.kinds == ['started', 'failed']
        assert _statuses(ledger)[-2:] == ['deploying', 'failed']

    @pytest.mark.asyncio
    async def test_missing_build_fails_deployment(self):
        hosting = InMemoryHostingProvisioner(status_failure=NotFound('gone'))
        orchestrator, ledger, *_ = _make_orchestrator(hosting=hosting)
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'failed'
        assert 'not_found' in result.error_message


# ── Polling ──────────────────────────────────────────────────────────


class _LateBuildHosting(InMemoryHostingProvisioner):
    """Lists the project's first build only on the ``listed_on``-th lookup."""

    def __init__(self, listed_on, **kwargs):
        super().__init__(auto_deploy=False, **kwargs)
        self._listed_on = listed_on
        self.lookups = 0

    async def latest_deployment(self, project_ref):
        self.lookups += 1
        if self.lookups == self._listed_on and project_ref in self.projects:
            self.start_build(project_ref)
        return await super().latest_deployment(project_ref)


class TestPolling:
    @pytest.mark.asyncio
    async def test_poll_exhaustion_is_not_fatal(self):
        sleeps = _Sleeps()
        orchestrator, ledger, _, _, notifier = _make_orchestrator(
            hosting=InMemoryHostingProvisioner(build_statuses=('building',)),
            poll_max_attempts=3,
            sleep=sleeps,
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.executed is True
        assert result.status == 'deploying'
        assert result.in_progress is True
        assert result.error_message is None
        assert result.failed_step is None
        assert sleeps.delays == [5.0, 5.0]
        assert notifier.kinds == ['started']

    @pytest.mark.asyncio
    async def test_transient_status_reads_keep_deploying(self):
        orchestrator, ledger, *_ = _make_orchestrator(
            hosting=InMemoryHostingProvisioner(
                status_failure=TransientError('503'),
            ),
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'deploying'
        assert result.error_message is None

    @pytest.mark.asyncio
    async def test_undiscovered_build_keeps_deploying(self):
        hosting = InMemoryHostingProvisioner(auto_deploy=False)
        orchestrator, ledger, *_ = _make_orchestrator(hosting=hosting)
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'deploying'
        assert result.deployment.hosting_deployment_id is None
        assert len([c for c in hosting.calls if c[0] == 'latest_deployment']) == 3

    @pytest.mark.asyncio
    async def test_build_listed_late_is_polled_during_run(self):
        sleeps = _Sleeps()
        hosting = _LateBuildHosting(listed_on=3)
        orchestrator, ledger, *_ = _make_orchestrator(
            hosting=hosting, poll_max_attempts=6, sleep=sleeps,
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'live'
        assert result.deployment.hosting_deployment_id is not None
        assert hosting.lookups == 3
        assert len([c for c in hosting.calls if c[0] == 'get_deployment_status']) == 1
        assert sleeps.delays == [5.0, 5.0]


# ── check_status ─────────────────────────────────────────────────────


class _SettlingHosting(InMemoryHostingProvisioner):
    """Moves the deployment to live behind the orchestrator's back."""

    def __init__(self, ledger, **kwargs):
        super().__init__(**kwargs)
        self._ledger = ledger
        self.interfere = False

    async def get_deployment_status(self, project_ref, deployment_id):
        result = await super().get_deployment_status(project_ref, deployment_id)
        if self.interfere:
            self.interfere = False
            await self._ledger.update(
                DEPLOYMENT_ID, {'status': 'live'}, expected_status='deploying',
            )
        return result


class TestCheckStatus:
    @pytest.mark.asyncio
    async def test_completes_a_deploying_deployment(self):
        hosting = InMemoryHostingProvisioner(build_statuses=('building',))
        orchestrator, ledger, source, _, notifier = _make_orchestrator(hosting=hosting)
        await _seed(ledger)
        await orchestrator.run(DEPLOYMENT_ID)
        hosting.build_statuses = ['success']

        result = await orchestrator.check_status(DEPLOYMENT_ID)

        assert result.executed is True
        assert result.status == 'live'
        assert notifier.kinds == ['started', 'success']
        assert len([c for c in source.calls if c[0] == 'create_repo']) == 1
        assert is_monotonic(_statuses(ledger))

    @pytest.mark.asyncio
    async def test_reports_build_failure(self):
        hosting = InMemoryHostingProvisioner(build_statuses=('building',))
        orchestrator, ledger, _, _, notifier = _make_orchestrator(hosting=hosting)
        await _seed(ledger)
        await orchestrator.run(DEPLOYMENT_ID)
        hosting.build_statuses = ['canceled']

        result = await orchestrator.check_status(DEPLOYMENT_ID)

        assert result.status == 'failed'
        assert result.failed_step == STEP_BUILD
        assert result.error_message.startswith('Hosting build failed')
        assert notifier.kinds == ['started', 'failed']

    @pytest.mark.asyncio
    async def test_discovers_build_started_later(self):
        hosting = InMemoryHostingProvisioner(auto_deploy=False)
        orchestrator, ledger, *_ = _make_orchestrator(hosting=hosting)
        await _seed(ledger)
        first = await orchestrator.run(DEPLOYMENT_ID)
        info = hosting.start_build(first.deployment.hosting_project_ref)

        result = await orchestrator.check_status(DEPLOYMENT_ID)

        assert result.status == 'live'
        assert result.deployment.hosting_deployment_id == info.deployment_id
        last = (await ledger.list_logs(DEPLOYMENT_ID))[-1]
        assert last.message == 'Deployment is live'
        assert last.metadata['hosting_deployment_id'] == info.deployment_id

    @pytest.mark.asyncio
    async def test_recheck_uses_single_poll_attempt(self):
        hosting = InMemoryHostingProvisioner(build_statuses=('building',))
        orchestrator, ledger, *_ = _make_orchestrator(hosting=hosting)
        await _seed(ledger)
        await orchestrator.run(DEPLOYMENT_ID)
        reads_before = len(
            [c for c in hosting.calls if c[0] == 'get_deployment_status']
        )

        result = await orchestrator.check_status(DEPLOYMENT_ID)

        reads_after = len(
            [c for c in hosting.calls if c[0] == 'get_deployment_status']
        )
        assert result.status == 'deploying'
        assert reads_after - reads_before == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status', ['queued', 'live'])
    async def test_other_states_are_returned_as_stored(self, status):
        orchestrator, ledger, source, hosting, notifier = _make_orchestrator()
        await _seed(ledger)
        if status == 'live':
            await orchestrator.run(DEPLOYMENT_ID)
        calls_before = list(hosting.calls)
        sent_before = list(notifier.sent)

        result = await orchestrator.check_status(DEPLOYMENT_ID)

        assert result.executed is False
        assert result.status == status
        assert hosting.calls == calls_before
        assert notifier.sent == sent_before

    @pytest.mark.asyncio
    async def test_lost_settle_race_sends_no_notification(self):
        ledger = InMemoryDeploymentLedger()
        hosting = _SettlingHosting(ledger, build_statuses=('building',))
        orchestrator, _, _, _, notifier = _make_orchestrator(
            ledger=ledger, hosting=hosting,
        )
        await _seed(ledger)
        await orchestrator.run(DEPLOYMENT_ID)
        hosting.build_statuses = ['success']
        hosting.interfere = True

        result = await orchestrator.check_status(DEPLOYMENT_ID)

        assert result.executed is False
        assert result.status == 'live'
        assert notifier.kinds == ['started']

    @pytest.mark.asyncio
    async def test_concurrent_checks_notify_once(self):
        hosting = InMemoryHostingProvisioner(build_statuses=('building',))
        orchestrator, ledger, _, _, notifier = _make_orchestrator(hosting=hosting)
        await _seed(ledger)
        await orchestrator.run(DEPLOYMENT_ID)
        hosting.build_statuses = ['success']

        results = await asyncio.gather(
            orchestrator.check_status(DEPLOYMENT_ID),
            orchestrator.check_status(DEPLOYMENT_ID),
        )

        assert all(r.status == 'live' for r in results)
        assert notifier.kinds.count('success') == 1

    @pytest.mark.asyncio
    async def test_in_progress_recheck_appends_one_log_entry(self):
        hosting = InMemoryHostingProvisioner(build_statuses=('building',))
        orchestrator, ledger, *_ = _make_orchestrator(hosting=hosting)
        await _seed(ledger)
        await orchestrator.run(DEPLOYMENT_ID)
        logged_before = len(await ledger.list_logs(DEPLOYMENT_ID))

        await orchestrator.check_status(DEPLOYMENT_ID)
        await orchestrator.check_status(DEPLOYMENT_ID)

        logs = await ledger.list_logs(DEPLOYMENT_ID)
        assert len(logs) == logged_before + 2
        assert {e.message for e in logs[logged_before:]} == {
            'Hosting build still in progress',
        }


# ── Name collisions ──────────────────────────────────────────────────


class TestNameCollisions:
    @pytest.mark.asyncio
    async def test_same_org_and_token_never_both_succeed(self):
        orchestrator, ledger, source, *_ = _make_orchestrator(
            token_factory=lambda: '1700000000000',
        )
        await _seed(ledger, deployment_id='dep-1')
        await _seed(ledger, deployment_id='dep-2')

        first = await orchestrator.run('dep-1')
        second = await orchestrator.run('dep-2')

        assert first.status == 'live'
        assert second.status == 'failed'
        assert second.failed_step == STEP_SOURCE
        assert 'already exists' in second.error_message
        assert list(source.repos) == ['landing-acme-corp-1700000000000']
        assert second.deployment.source_repo_url is None


# ── Notifications ────────────────────────────────────────────────────


class TestNotificationFailures:
    @pytest.mark.asyncio
    async def test_undelivered_notification_is_not_fatal(self):
        orchestrator, ledger, *_ = _make_orchestrator(
            notifier=RecordingNotifier(deliver=False),
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'live'
        logs = await ledger.list_logs(DEPLOYMENT_ID)
        warnings = [entry for entry in logs if entry.level == 'warning']
        assert [w.message for w in warnings] == [
            'Notification "started" not delivered',
            'Notification "success" not delivered',
        ]
        assert warnings[0].metadata['reason'] == 'notifier reported failure'

    @pytest.mark.asyncio
    async def test_notifier_exception_is_swallowed(self):
        orchestrator, ledger, *_ = _make_orchestrator(
            notifier=RecordingNotifier(error=RuntimeError('smtp down')),
        )
        await _seed(ledger)

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'live'
        logs = await ledger.list_logs(DEPLOYMENT_ID)
        reasons = [e.metadata['reason'] for e in logs if e.level == 'warning']
        assert reasons == ['RuntimeError: smtp down', 'RuntimeError: smtp down']

    @pytest.mark.asyncio
    async def test_missing_recipient_is_logged(self):
        orchestrator, ledger, _, _, notifier = _make_orchestrator()
        await _seed(ledger, signer_email='')

        result = await orchestrator.run(DEPLOYMENT_ID)

        assert result.status == 'live'
        assert notifier.sent == []
        logs = await ledger.list_logs(DEPLOYMENT_ID)
        reasons = {e.metadata['reason'] for e in logs if e.level == 'warning'}
        assert reasons == {'no recipient'}
