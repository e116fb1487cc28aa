"""
Command-line interface for mailwatch.
"""

from __future__ import annotations
import argparse
import asyncio
import sys
from typing import List

from mailwatch.config import _init_config_store, _init_source, _load_env
from mailwatch.engine import PollerEngine
from mailwatch.errors import ConfigurationError, FetchError
from mailwatch.logging import logger, setup_logging
from mailwatch.models import Account, PollResult
from mailwatch.service import main as run_service


def _print_result(account: Account, result: PollResult) -> None:
    print(f"{account.account_id}: {len(result)} new message(s), {result.total_seen} tracked")
    for msg in result.messages:
        print(f"  [{msg.timestamp}] {msg.sender} - {msg.subject}")
        if msg.preview:
            print(f"      {msg.preview}")


async def _check_all(accounts: List[Account], engine: PollerEngine) -> int:
    failures = 0
    for account in accounts:
        try:
            result = await engine.poll_once(account)
        except FetchError as e:
            print(f"{account.account_id}: check failed: {e}", file=sys.stderr)
            failures += 1
            continue
        _print_result(account, result)
    return failures


def cmd_check(args) -> None:
    """Poll every enabled account once and print new messages."""
    try:
        cfg = _load_env()
        setup_logging(log_level=cfg["LOG_LEVEL"], log_file=cfg["LOG_FILE"])
        store = _init_config_store(cfg)
        accounts = [a for a in store.list_accounts() if a.enabled]
        if args.account:
            accounts = [a for a in accounts if a.account_id == args.account]
        if not accounts:
            print("No enabled accounts configured", file=sys.stderr)
            sys.exit(1)

        engine = PollerEngine(_init_source(cfg))
        failures = asyncio.run(_check_all(accounts, engine))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        logger.exception(f"Check failed: {e}")
        sys.exit(1)

    if failures:
        sys.exit(1)


def cmd_service(args) -> None:
    """Run the polling service."""
    try:
        run_service()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception:
        sys.exit(1)


def cmd_accounts(args) -> None:
    """List configured accounts."""
    try:
        cfg = _load_env()
        setup_logging(log_level=cfg["LOG_LEVEL"], log_file=cfg["LOG_FILE"])
        store = _init_config_store(cfg)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    accounts = store.list_accounts()
    if not accounts:
        print("No accounts configured")
        return
    for a in accounts:
        state = "enabled" if a.enabled else "disabled"
        conn = a.connection
        print(
            f"{a.account_id}  {conn.provider}://{conn.host}:{conn.port}/{conn.mailbox}  "
            f"every {a.settings.interval_ms}ms  capacity={a.settings.seen_set_capacity}  {state}"
        )


def main(argv: List[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="mailwatch",
        description="mailwatch - poll mailboxes and report only new messages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s check                     Poll every enabled account once
  %(prog)s check --account me@x.com  Poll one account once
  %(prog)s service                   Run the polling service
  %(prog)s accounts                  List configured accounts
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    check_parser = subparsers.add_parser("check", help="Poll accounts once")
    check_parser.add_argument("--account", help="Only check this account id")
    check_parser.set_defaults(func=cmd_check)

    service_parser = subparsers.add_parser("service", help="Run the polling service")
    service_parser.set_defaults(func=cmd_service)

    accounts_parser = subparsers.add_parser("accounts", help="List configured accounts")
    accounts_parser.set_defaults(func=cmd_accounts)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
