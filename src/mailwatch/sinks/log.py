"""
Sink that writes new-message notifications to the application log.
"""

from __future__ import annotations
from mailwatch.logging import logger
from mailwatch.models import Account, PollResult


class LoggingSink:
    """Logs one line per new message; empty results are logged at DEBUG."""

    def __init__(self, level: str = "INFO") -> None:
        self.level = level

    def deliver(self, account: Account, result: PollResult) -> None:
        if result.is_empty:
            logger.debug(f"[{account.account_id}] no new messages ({result.total_seen} tracked)")
            return

        logger.log(self.level, f"[{account.account_id}] {len(result)} new message(s)")
        for msg in result.messages:
            logger.log(
                self.level,
                f"[{account.account_id}] From: {msg.sender} | {msg.subject} | {msg.timestamp}",
            )
