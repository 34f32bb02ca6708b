"""Operational jobs: scheduled re-check and out-of-band cleanup."""

from .cleanup import CleanupNotAllowed, CleanupReport, cleanup_deployment_resources
from .recheck_scheduler import DeploymentRecheckScheduler, RecheckReport

__all__ = [
    "CleanupNotAllowed",
    "CleanupReport",
    "DeploymentRecheckScheduler",
    "RecheckReport",
    "cleanup_deployment_resources",
]
