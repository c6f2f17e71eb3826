#!/usr/bin/env python3
"""
Run or validate a SQL file against the sandbox database.

Usage:
    python scripts/run_sql.py <file.sql> [--session ID] [--mode adhoc|setup] [--validate]

Examples:
    python scripts/run_sql.py setup.sql --session alice_1 --mode setup
    python scripts/run_sql.py query.sql --session alice_1
    python scripts/run_sql.py query.sql --validate
"""

import sys
import os
import argparse
import logging

# Add parent directory to path to import from sqlplayground
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlplayground.errors import SandboxError
from sqlplayground.sandbox_manager import execute_script, shutdown_connection_pool, validate_query

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def print_execution_report(result) -> bool:
    print(f"Mode: {result.mode.value}  Session: {result.session_token or '-'}")
    print("-" * 60)
    for outcome in result.outcomes:
        marker = "OK  " if outcome.success else "FAIL"
        first_line = outcome.statement.splitlines()[0] if outcome.statement else ""
        print(f"[{marker}] #{outcome.ordinal} {first_line[:70]}")
        if outcome.success:
            if outcome.columns:
                print(f"       {len(outcome.rows)} row(s){' (truncated)' if outcome.truncated else ''}: "
                      f"{', '.join(outcome.columns)}")
                for row in outcome.rows[:10]:
                    print(f"       {row}")
            elif outcome.rows_affected is not None:
                print(f"       {outcome.rows_affected} row(s) affected")
        else:
            code = f"{outcome.error_code}: " if outcome.error_code else ""
            print(f"       {code}{outcome.error}")

    skipped = result.total_statements - len(result.outcomes)
    if skipped:
        print(f"{skipped} statement(s) not executed")
    if result.rolled_back:
        print("Transaction rolled back")
    if result.error and not result.outcomes:
        print(f"Error: {result.error}")
    print("-" * 60)
    print(f"{'Success' if result.success else 'Failed'} in {result.execution_time_ms}ms")
    return result.success


def print_validation_report(result) -> bool:
    if result.valid:
        print(f"Valid ({result.statement_count} statement(s), {result.method} check)")
    else:
        code = f"{result.error_code}: " if result.error_code else ""
        print(f"Invalid: {code}{result.error}")
    return result.valid


def main():
    parser = argparse.ArgumentParser(description='Run or validate a SQL file in the sandbox')
    parser.add_argument('file', help='SQL script to run')
    parser.add_argument('--session', help='Session identifier used to namespace object names')
    parser.add_argument('--mode', choices=['adhoc', 'setup'], default='adhoc',
                        help='adhoc runs every statement; setup is all-or-nothing')
    parser.add_argument('--validate', action='store_true', help='Only check syntax, change nothing')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        with open(args.file, 'r', encoding='utf-8') as f:
            script = f.read()
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e}")
        sys.exit(1)

    try:
        if args.validate:
            success = print_validation_report(validate_query(script))
        else:
            success = print_execution_report(execute_script(script, args.session, args.mode))
    except SandboxError as e:
        logger.error(f"{e.__class__.__name__}: {e}")
        sys.exit(1)
    finally:
        shutdown_connection_pool()

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
