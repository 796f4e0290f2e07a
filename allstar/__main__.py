#!/usr/bin/env python
"""
Entry point for the Allstar agent.
Use: python -m allstar [--dry-run]     one pipeline run, exit 0/1
Or:  python -m allstar serve            HTTP administration server (also when PORT is set)
Or:  python -m allstar init-db          create the MySQL schema
"""
import argparse
import logging
import os
import sys

from .log import setup_logging


logger = logging.getLogger("allstar")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="allstar", description="Listing acquisition and grading agent")
    parser.add_argument("command", nargs="?", choices=["run", "serve", "init-db"], default=None)
    parser.add_argument("--dry-run", action="store_true", help="grade with a fixed verdict, no model calls")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    command = args.command
    if command is None:
        command = "serve" if os.getenv("PORT") else "run"

    if command == "serve":
        from .web.app import run_server
        run_server()
        return 0

    if command == "init-db":
        from .storage.mysql import MySQLStorage
        MySQLStorage().init_schema()
        logger.info("Schema created")
        return 0

    from .pipeline.orchestrator import run_pipeline
    try:
        run_id = run_pipeline(dry_run=args.dry_run)
    except Exception as e:
        logger.error(f"Pipeline failed: {e}")
        return 1
    logger.info(f"Run {run_id} finished")
    return 0


if __name__ == "__main__":
    sys.exit(main())
