#!/usr/bin/env python3
"""Run the deploy-plane API with explicit args (avoids shell interpolation).

Configuration comes from the environment (see DeployPlaneSettings.from_env).
"""
from __future__ import annotations

import argparse
import dataclasses

import uvicorn

from deploy_plane.app import DeployPlaneSettings, create_app


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--recheck",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Run the in-process re-check scheduler.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = DeployPlaneSettings.from_env()
    if not args.recheck:
        settings = dataclasses.replace(settings, recheck_interval_seconds=0)
    app = create_app(settings)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
