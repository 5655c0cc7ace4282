#!/usr/bin/env python
"""Main entry point for the notd core."""
import argparse
import atexit
import json
import logging
import os
import sys
from pathlib import Path

from notd_core.config import config
from notd_core.exceptions import NotdError
from notd_core.models.db_models import init_db
from notd_core.observability import configure_logging, metrics
from notd_core.server.mcp_server import NotdMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="notd property indexing and batch engine")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("NOTD_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for rotating log files",
        type=str,
        default=os.environ.get("NOTD_LOG_DIR")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("NOTD_LOG_LEVEL", "INFO")
    )
    parser.add_argument(
        "--batch",
        help="Apply the JSON batch in this file, print the results and exit",
        type=str,
        default=None
    )
    parser.add_argument(
        "--apply-definitions",
        help="Re-apply every auto-apply property definition and exit",
        action="store_true"
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.log_dir:
        config.log_dir = Path(args.log_dir)


def _log_metrics_on_exit():
    """Log the process totals on shutdown."""
    summary = metrics.summary()
    logging.getLogger(__name__).info(
        f"Shutting down after {summary['calls']} calls ({summary['failures']} failed), "
        f"{summary['batch_operations']} batch operations"
    )


def run_batch_file(engine, path: str) -> int:
    """Apply a batch file with the services the server would use."""
    server = NotdMcpServer(engine=engine)
    with open(path, "r", encoding="utf-8") as f:
        operations = json.load(f)
    try:
        results = server.batch_service.run_batch(operations)
    except NotdError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1
    print(json.dumps(results, indent=2, ensure_ascii=False))
    return 0


def main(argv=None):
    """Run the notd core."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    atexit.register(_log_metrics_on_exit)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    if args.batch:
        sys.exit(run_batch_file(engine, args.batch))

    if args.apply_definitions:
        server = NotdMcpServer(engine=engine)
        changed = server.definition_resolver.apply_all_definitions()
        logger.info(f"Applied definitions: {changed} properties updated")
        sys.exit(0)

    try:
        logger.info("Starting notd MCP server")
        server = NotdMcpServer(engine=engine)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
