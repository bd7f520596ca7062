#!/usr/bin/env python3
"""
AuthGate -- account registration, login, and one-time-code verification service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 5000
  python main.py serve --reload
  python main.py sweep
  python main.py sweep --threshold 30

Configuration comes from environment variables or a .env file (see
core/config.py). At minimum set SECRET_KEY, or DEBUG=true for local runs.
"""

import argparse
import logging
import sys

from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _sweep(args: argparse.Namespace) -> int:
    """Run a single sweep against the configured database and report the result."""
    from auth.store import AccountStore
    from auth.sweeper import ExpirySweeper

    settings = get_settings()
    store = AccountStore(settings.database_url or None)
    try:
        sweeper = ExpirySweeper.from_settings(store, settings)
        deleted = sweeper.sweep(args.threshold)
    finally:
        store.close()

    if sweeper.last_failure is not None:
        print(f"  [!] {sweeper.last_failure}")
        return 1
    print(f"  Deleted {deleted} unverified account(s).")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="AuthGate account and verification service.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development).")
    serve.set_defaults(func=_serve)

    sweep = sub.add_parser("sweep", help="Delete abandoned unverified accounts once and exit.")
    sweep.add_argument(
        "--threshold",
        type=int,
        default=None,
        metavar="MINUTES",
        help="Age in minutes after which unverified accounts are removed (default: SWEEP_THRESHOLD_MINUTES).",
    )
    sweep.set_defaults(func=_sweep)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
