"""
Momentum CLI — database bootstrap, one-off jobs and servers.

Commands:
- momentum init-db    — Create the tasks / task_completions / task_history tables
- momentum cleanup    — Run the archival pipeline once and print its result
- momentum reminders  — Send today's due-date reminders
- momentum serve      — Start the HTTP API (uvicorn)
- momentum worker     — Start a Celery worker with the embedded Beat scheduler
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from momentum.engine.errors import ConfigError

logger = logging.getLogger("momentum.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="momentum",
        description="Momentum — task lifecycle and archival service",
    )
    parser.add_argument("--config", help="Path to momentum.yaml (default: search from CWD)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("cleanup", help="Run the daily cleanup once")
    subparsers.add_parser("reminders", help="Send due-date reminders once")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Host to bind (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    worker_parser = subparsers.add_parser("worker", help="Start a Celery worker + Beat")
    worker_parser.add_argument("--loglevel", default="INFO", help="Celery log level (default: INFO)")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    from momentum.engine.config import load_config
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[ERROR] {e.message}")
        return 1

    if args.command == "init-db":
        return cmd_init_db(config)
    elif args.command == "cleanup":
        return cmd_cleanup(config)
    elif args.command == "reminders":
        return cmd_reminders(config)
    elif args.command == "serve":
        return cmd_serve(config, args)
    elif args.command == "worker":
        return cmd_worker(config, args)
    parser.print_help()
    return 0


def cmd_init_db(config) -> int:
    from momentum.db.session import close_all_sessions, init_db

    try:
        init_db(config.database.url, create_tables=True)
    except Exception as e:
        print(f"[ERROR] Failed to create tables: {e}")
        return 1
    finally:
        close_all_sessions()
    print(f"[OK] Tables created ({config.database.url.split('@')[-1]})")
    return 0


def cmd_cleanup(config) -> int:
    from momentum.runtime import init_runtime

    runtime = init_runtime(config=config)
    runtime.startup()
    try:
        outcome = runtime.cleanup.run(triggered_by="cli")
    finally:
        runtime.shutdown()
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.status == "completed" else 1


def cmd_reminders(config) -> int:
    from momentum.runtime import init_runtime

    runtime = init_runtime(config=config)
    runtime.startup()
    try:
        sent = runtime.reminders.run()
    finally:
        runtime.shutdown()
    print(f"[OK] {sent} reminder(s) sent")
    return 0


def cmd_serve(config, args: argparse.Namespace) -> int:
    import uvicorn

    from momentum.api.app import create_app
    from momentum.runtime import init_runtime

    runtime = init_runtime(config=config)
    runtime.startup()
    try:
        uvicorn.run(create_app(runtime), host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\nServer stopped.")
    finally:
        runtime.shutdown()
    return 0


def cmd_worker(config, args: argparse.Namespace) -> int:
    from momentum.process.scheduler import init_scheduler
    from momentum.runtime import init_runtime

    runtime = init_runtime(config=config)
    runtime.startup()
    app = init_scheduler(config)
    try:
        # Threads pool: tasks share the runtime started above
        app.worker_main([
            "worker", "--beat",
            "--pool", "threads",
            "-Q", config.celery.queue,
            "--loglevel", args.loglevel,
        ])
    finally:
        runtime.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
