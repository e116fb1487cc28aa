"""
Basic usage example for mailwatch.

Polls one IMAP mailbox every 30 seconds for two minutes and prints each new
message once. Set MAIL_ACCOUNT and MAIL_PASSWORD (an app password for
Gmail) before running.
"""

import asyncio
import os

from mailwatch import Account, ConnectionParams, PollResult, PollerEngine, PollingSettings
from mailwatch.logging import logger, setup_logging
from mailwatch.sources.imap import ImapMailSource


def on_new_messages(account: Account, result: PollResult) -> None:
    if result.is_empty:
        return
    print(f"{account.account_id}: {len(result)} new message(s)")
    for msg in result.messages:
        print(f"  {msg.sender} - {msg.subject}")
        print(f"    {msg.preview}")


async def main():
    setup_logging(log_level="INFO")

    address = os.environ["MAIL_ACCOUNT"]
    account = Account(
        account_id=address,
        connection=ConnectionParams(
            host=os.getenv("IMAP_HOST", "imap.gmail.com"),
            port=993,
            username=address,
            credential_ref="env:MAIL_PASSWORD",
        ),
        settings=PollingSettings(interval_ms=30_000, seen_set_capacity=1000),
    )

    engine = PollerEngine(ImapMailSource(), on_error=lambda acc, err: logger.warning(f"Cycle failed: {err}"))

    # one-off check first: every unread message counts as new
    first = await engine.poll_once(account)
    logger.info(f"{len(first)} unread message(s) already in the mailbox")

    # then only messages arriving from now on are reported
    handle = engine.start(account, on_new_messages)
    try:
        await asyncio.sleep(120)
    finally:
        engine.stop(handle)
        await handle.wait()


if __name__ == "__main__":
    asyncio.run(main())
