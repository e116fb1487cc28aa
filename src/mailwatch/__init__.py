"""
mailwatch - periodic mailbox polling with bounded deduplication.
"""

from mailwatch.engine import PollerEngine
from mailwatch.errors import ConfigurationError, DeliveryError, FetchError
from mailwatch.models import Account, ConnectionParams, MessageCandidate, PollResult, PollingSettings

__version__ = "0.1.0"

__all__ = [
    "Account",
    "ConfigurationError",
    "ConnectionParams",
    "DeliveryError",
    "FetchError",
    "MessageCandidate",
    "PollResult",
    "PollerEngine",
    "PollingSettings",
]
