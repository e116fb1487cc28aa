"""
Data model for monitored accounts and poll cycles.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Tuple

DEFAULT_INTERVAL_MS = 30_000
DEFAULT_SEEN_SET_CAPACITY = 1000
DEFAULT_FETCH_TIMEOUT_MS = 20_000

PROVIDER_IMAP = "imap"
PROVIDER_GMAIL = "gmail"
PROVIDERS = (PROVIDER_IMAP, PROVIDER_GMAIL)


@dataclass(frozen=True)
class PollingSettings:
    """Per-account polling configuration (all durations in milliseconds)."""
    interval_ms: int = DEFAULT_INTERVAL_MS
    seen_set_capacity: int = DEFAULT_SEEN_SET_CAPACITY
    fetch_timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def fetch_timeout_seconds(self) -> float:
        return self.fetch_timeout_ms / 1000.0


@dataclass(frozen=True)
class ConnectionParams:
    """
    How to reach a mailbox.

    ``credential_ref`` never holds a secret directly when it can be avoided:
    ``env:NAME`` and ``file:/path`` references are resolved by the source at
    fetch time. For Gmail it is the path of the authorized-user token file.
    """
    host: str
    port: int
    username: str
    credential_ref: str
    provider: str = PROVIDER_IMAP
    mailbox: str = "INBOX"
    use_ssl: bool = True

    def is_empty(self) -> bool:
        return not (self.host and self.username and self.credential_ref)


@dataclass(frozen=True)
class Account:
    """One configured mailbox being monitored."""
    account_id: str
    connection: ConnectionParams
    settings: PollingSettings = field(default_factory=PollingSettings)
    enabled: bool = True

    def with_settings(self, **changes: Any) -> "Account":
        """Return a copy with some polling settings replaced."""
        return replace(self, settings=replace(self.settings, **changes))

    def to_dict(self) -> Dict[str, Any]:
        """Flat JSON-friendly representation (accounts file / Redis)."""
        data: Dict[str, Any] = {"id": self.account_id, "enabled": self.enabled}
        data.update(asdict(self.connection))
        data.update(asdict(self.settings))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: PollingSettings | None = None) -> "Account":
        """
        Build an account from a flat mapping.

        Missing polling settings fall back to ``defaults``. Type problems are
        reported by the validation layer, not here.
        """
        defaults = defaults or PollingSettings()
        connection = ConnectionParams(
            host=str(data.get("host", "") or "").strip(),
            port=int(data.get("port", 0) or 0),
            username=str(data.get("username", "") or "").strip(),
            credential_ref=str(data.get("credential_ref", "") or "").strip(),
            provider=str(data.get("provider", PROVIDER_IMAP) or PROVIDER_IMAP).strip().lower(),
            mailbox=str(data.get("mailbox", "INBOX") or "INBOX"),
            use_ssl=bool(data.get("use_ssl", True)),
        )
        settings = PollingSettings(
            interval_ms=int(data.get("interval_ms", defaults.interval_ms)),
            seen_set_capacity=int(data.get("seen_set_capacity", defaults.seen_set_capacity)),
            fetch_timeout_ms=int(data.get("fetch_timeout_ms", defaults.fetch_timeout_ms)),
        )
        return cls(
            account_id=str(data.get("id", "") or "").strip(),
            connection=connection,
            settings=settings,
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class MessageCandidate:
    """A message returned by a mail source, before deduplication."""
    message_id: str
    sender: str = ""
    subject: str = ""
    timestamp: str = ""
    preview: str = ""


@dataclass(frozen=True)
class PollResult:
    """Messages that were new at poll time, in the order the source returned them."""
    account_id: str
    messages: Tuple[MessageCandidate, ...] = ()
    total_seen: int = 0
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_empty(self) -> bool:
        return not self.messages

    @property
    def message_ids(self) -> list[str]:
        return [m.message_id for m in self.messages]

    def __len__(self) -> int:
        return len(self.messages)


class PollOutcome(str, Enum):
    """How a single poll cycle ended."""
    DELIVERED = "delivered"
    EMPTY = "empty"
    FETCH_FAILED = "fetch_failed"
    DELIVERY_FAILED = "delivery_failed"
