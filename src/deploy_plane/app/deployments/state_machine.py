"""Deployment state machine.

Canonical flow for one landing-page deployment:
  queued -> creating_repo -> creating_pages -> deploying -> live

``failed`` is reachable from every non-terminal state and is absorbing.
``live`` and ``failed`` are terminal: no transition leaves them, and the
ledger refuses field updates on records that reached them.
"""

from __future__ import annotations

from types import MappingProxyType

DEPLOYMENT_SEQUENCE = (
    'queued',
    'creating_repo',
    'creating_pages',
    'deploying',
    'live',
)

FAILED = 'failed'

TERMINAL_STATES = frozenset({'live', FAILED})
ACTIVE_STATES = frozenset(
    {
        'queued',
        'creating_repo',
        'creating_pages',
        'deploying',
    }
)
ALL_STATES = ACTIVE_STATES | TERMINAL_STATES

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        'queued': frozenset({'creating_repo', FAILED}),
        'creating_repo': frozenset({'creating_pages', FAILED}),
        'creating_pages': frozenset({'deploying', FAILED}),
        'deploying': frozenset({'live', FAILED}),
        'live': frozenset(),
        FAILED: frozenset(),
    }
)


class InvalidStateTransition(ValueError):
    """Raised for transitions the deployment state machine does not allow."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f'invalid state transition: {from_state!r} -> {to_state!r}'
        )


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES


def next_state(state: str) -> str:
    """Return the successor of ``state`` along the success path."""
    if state in TERMINAL_STATES:
        raise InvalidStateTransition(state, 'next')
    index = DEPLOYMENT_SEQUENCE.index(state)
    return DEPLOYMENT_SEQUENCE[index + 1]


def require_transition(from_state: str, to_state: str) -> None:
    """Raise ``InvalidStateTransition`` unless ``from_state -> to_state`` is allowed."""
    allowed = ALLOWED_TRANSITIONS.get(from_state, frozenset())
    if to_state not in allowed:
        raise InvalidStateTransition(from_state, to_state)


def state_rank(state: str) -> int:
    """Position of ``state`` in the progress order.

    ``failed`` ranks after every other state so that an observed sequence
    of statuses is non-decreasing whenever the workflow behaves.
    """
    if state == FAILED:
        return len(DEPLOYMENT_SEQUENCE)
    if state not in DEPLOYMENT_SEQUENCE:
        raise ValueError(f'unknown deployment state: {state!r}')
    return DEPLOYMENT_SEQUENCE.index(state)


def is_monotonic(states: list[str]) -> bool:
    """True when ``states`` never moves backwards and never leaves a terminal state."""
    for previous, current in zip(states, states[1:]):
        if previous == current:
            continue
        if previous in TERMINAL_STATES:
            return False
        if state_rank(current) < state_rank(previous):
            return False
    return True
