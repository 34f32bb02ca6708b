"""Deployment workflow: state machine, ledger, naming, rendering, orchestration."""

from .ledger import DeploymentNotFound, InMemoryDeploymentLedger, LedgerConflict
from .naming import derive_repo_name, hosting_project_name, repo_name_from_url
from .orchestrator import DeploymentOrchestrator, OrchestrationResult
from .records import Deployment, DeploymentLogEntry
from .state_machine import (
    ACTIVE_STATES,
    DEPLOYMENT_SEQUENCE,
    FAILED,
    TERMINAL_STATES,
    InvalidStateTransition,
    is_monotonic,
    require_transition,
)

__all__ = [
    'ACTIVE_STATES',
    'DEPLOYMENT_SEQUENCE',
    'FAILED',
    'TERMINAL_STATES',
    'Deployment',
    'DeploymentLogEntry',
    'DeploymentNotFound',
    'DeploymentOrchestrator',
    'InMemoryDeploymentLedger',
    'InvalidStateTransition',
    'LedgerConflict',
    'OrchestrationResult',
    'derive_repo_name',
    'hosting_project_name',
    'is_monotonic',
    'repo_name_from_url',
    'require_transition',
]
