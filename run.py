"""
Start the staff sync service under uvicorn.

Bind address, log level and whether the weekly audit scheduler runs default
to the environment (see staffsync/config/settings.py); flags override them.

Usage:
    python run.py
    python run.py --no-scheduler        # API only, e.g. a second replica
    python run.py --port 8080 --reload
"""
import argparse
import os

import uvicorn

from staffsync.config.settings import settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the staff sync service")
    parser.add_argument("--host", default=settings.api_host, help=f"Bind address (default: {settings.api_host})")
    parser.add_argument("--port", type=int, default=settings.api_port, help=f"Bind port (default: {settings.api_port})")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    parser.add_argument(
        "--no-scheduler",
        dest="scheduler",
        action="store_false",
        help="Serve the API without starting the weekly audit scheduler"
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help=f"Log level (default: {settings.log_level})"
    )
    return parser


def main():
    args = build_parser().parse_args()

    # The environment reaches the reloader's child process; the app in this
    # process shares the already-loaded settings object
    os.environ["LOG_LEVEL"] = args.log_level
    settings.log_level = args.log_level
    if not args.scheduler:
        os.environ["AUDIT_ENABLED"] = "false"
        settings.audit_enabled = False

    scheduler_state = "on" if settings.audit_enabled else "off"
    print(f"staffsync on http://{args.host}:{args.port} (audit scheduler {scheduler_state}, env {settings.environment})")

    # One process: the audit scheduler must not run once per worker
    uvicorn.run(
        "staffsync.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
