#!/usr/bin/env python3
"""One-shot re-check of every deployment still building.

Intended for cron-style triggering when the in-process scheduler is
disabled. Configuration comes from the environment, as for the API.

Usage:
  python3 scripts/recheck_deployments.py
  python3 scripts/recheck_deployments.py --attempts 3 --json

Exit codes:
  0 = pass completed (some deployments may still be deploying)
  1 = one or more re-checks errored
  2 = configuration invalid
"""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys

from deploy_plane.app.main import build_inmemory_deps, build_orchestrator, build_remote_deps
from deploy_plane.app.observability.logging import configure_logging
from deploy_plane.app.operations.recheck_scheduler import DeploymentRecheckScheduler
from deploy_plane.app.settings import DeployPlaneSettings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--attempts", type=int, default=None,
        help="Status reads per deployment (default: DEPLOY_RECHECK_POLL_ATTEMPTS).",
    )
    parser.add_argument(
        "--concurrency", type=int, default=None,
        help="Checks in flight at once (default: DEPLOY_RECHECK_CONCURRENCY).",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON.")
    return parser.parse_args()


async def run(settings: DeployPlaneSettings, *, as_json: bool) -> int:
    deps = build_inmemory_deps() if settings.is_local else build_remote_deps(settings)
    try:
        scheduler = DeploymentRecheckScheduler(
            build_orchestrator(settings, deps),
            deps.ledger,
            concurrency=settings.recheck_concurrency,
        )
        report = await scheduler.run_once()
    finally:
        for close in deps.closers:
            await close()

    if as_json:
        print(json.dumps({
            "started_at": report.started_at.isoformat(),
            "live": list(report.live),
            "failed": list(report.failed),
            "still_deploying": list(report.still_deploying),
            "errored": list(report.errored),
        }, indent=2))
    else:
        print(
            f"checked={report.total_checked} live={len(report.live)} "
            f"failed={len(report.failed)} deploying={len(report.still_deploying)} "
            f"errored={len(report.errored)}"
        )
    return 1 if report.errored else 0


def main() -> int:
    args = parse_args()
    settings = DeployPlaneSettings.from_env()
    overrides = {}
    if args.attempts is not None:
        overrides["recheck_poll_attempts"] = args.attempts
    if args.concurrency is not None:
        overrides["recheck_concurrency"] = args.concurrency
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    errors = settings.validate()
    if errors:
        for error in errors:
            print(f"ERROR: {error}", file=sys.stderr)
        return 2

    configure_logging(level=settings.log_level, json_output=settings.log_format == "json")
    return asyncio.run(run(settings, as_json=args.json))


if __name__ == "__main__":
    raise SystemExit(main())
