"""Maintenance command-line entry point.

Usage:
    python main.py init-db          Create the document table.
    python main.py backfill-emails  Write emailLower on legacy user documents.
    python main.py sweep-index      Delete classIndex rows with no active member.
"""

import argparse
import logging
import sys
from typing import List, Optional

from config import DOCUMENT_DB_URL
from core.database import get_store
from core.exceptions import ClassroomError
from core.logging_config import setup_logging
from utils.class_manager import ClassManager
from utils.user_manager import UserManager

logger = logging.getLogger(__name__)


def print_banner() -> None:
    """Print program banner."""
    print("=" * 70)
    print("  Classroom maintenance")
    print(f"  Store: {DOCUMENT_DB_URL}")
    print("=" * 70)


def init_db() -> str:
    get_store()
    return "Document store ready."


def backfill_emails() -> str:
    count = UserManager(get_store()).backfill_email_lower()
    return f"Backfilled emailLower on {count} user documents."


def sweep_index() -> str:
    count = ClassManager(get_store()).sweep_orphaned_index_rows()
    return f"Deleted {count} orphaned classIndex rows."


COMMANDS = {
    "init-db": init_db,
    "backfill-emails": backfill_emails,
    "sweep-index": sweep_index,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Classroom store maintenance tasks.")
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    print_banner()
    try:
        print(COMMANDS[args.command]())
    except ClassroomError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
