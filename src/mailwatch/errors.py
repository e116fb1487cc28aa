"""
Error taxonomy for the polling engine.

Only ConfigurationError reaches the caller of ``start``. FetchError and
DeliveryError describe per-cycle failures; the scheduler reports them on the
error side-channel and keeps polling.
"""

from __future__ import annotations
from typing import Optional


class MailwatchError(Exception):
    """Base class for all mailwatch errors."""


class ConfigurationError(MailwatchError, ValueError):
    """Missing or invalid account parameters or settings."""


class CycleError(MailwatchError):
    """A single poll cycle failed for one account."""

    def __init__(self, account_id: str, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"[{account_id}] {message}")
        self.account_id = account_id
        self.cause = cause


class FetchError(CycleError):
    """The mail source failed or timed out. Nothing was marked seen."""


class DeliveryError(CycleError):
    """The sink rejected a poll result. Messages stay marked as seen."""
