"""
Data Access Layer - Operator CLI.

Checks that a schema is reachable through the same cache and routing the
application uses, and prints connection cache statistics.

Usage:
    python main.py check APP
    python main.py check APP --location TEST --mode READ
    python main.py settings
"""

import argparse
import json
import logging
import os
import sys

from dotenv import load_dotenv

# Load environment variables with explicit path (works when run from any directory)
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(_env_path)

from utils.logger import configure_non_blocking_logging, stop_logging

from dbaccess.connection_cache import close_all_connections, get_connection_cache
from dbaccess.db_config import DEFAULT_LOCATION, get_settings
from dbaccess.errors import DataAccessError
from dbaccess.schema_manager import SchemaManager

logger = logging.getLogger(__name__)


def cmd_check(args: argparse.Namespace) -> int:
    db = SchemaManager.instance(args.schema, args.location, critical=args.critical)
    conn = db.get_conn(args.mode)
    value = conn.fetch_one("SELECT 1") if conn is not None else None
    if value != 1:
        print(f"FAILED: {args.schema} at {db.location} ({args.mode})")
        return 1

    print(f"OK: {args.schema} at {db.location} ({args.mode})")
    print(json.dumps(get_connection_cache().get_cache_stats(), indent=2))
    return 0


def cmd_settings(args: argparse.Namespace) -> int:
    settings = get_settings()
    print(json.dumps(
        {
            "mode": settings.mode.value,
            "time_limit": settings.time_limit,
            "location_aliases": dict(settings.location_aliases),
            "session_time_zone": settings.session_time_zone,
            "client_encoding": settings.client_encoding,
            "statement_timeout_ms": settings.statement_timeout_ms,
        },
        indent=2,
    ))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Database access layer tools")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Run SELECT 1 against a schema")
    check.add_argument("schema", help="Schema label from the credentials")
    check.add_argument("--location", default=DEFAULT_LOCATION)
    check.add_argument("--mode", default="READ", choices=["READ", "WRITE"])
    check.add_argument("--critical", action="store_true", help="Always use the WRITE connection")
    check.set_defaults(func=cmd_check)

    settings = sub.add_parser("settings", help="Print the effective settings")
    settings.set_defaults(func=cmd_settings)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_non_blocking_logging(level=args.log_level)
    try:
        return args.func(args)
    except DataAccessError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return 2
    finally:
        close_all_connections()
        stop_logging()


if __name__ == "__main__":
    sys.exit(main())
