"""
Dispatches fetches to a provider-specific source.
"""

from __future__ import annotations
from typing import Dict, Sequence

from mailwatch.errors import ConfigurationError
from mailwatch.models import Account, MessageCandidate
from mailwatch.sources.base import MailSource


class MailSourceRouter:
    """MailSource that picks a backend by ``account.connection.provider``."""

    def __init__(self, sources: Dict[str, MailSource]) -> None:
        if not sources:
            raise ValueError("At least one mail source is required")
        self.sources = dict(sources)

    async def fetch(self, account: Account) -> Sequence[MessageCandidate]:
        provider = account.connection.provider
        source = self.sources.get(provider)
        if source is None:
            raise ConfigurationError(f"No mail source configured for provider {provider!r}")
        return await source.fetch(account)

    def forget(self, account_id: str) -> None:
        """Pass ``forget`` on to every backend that caches per-account state."""
        for source in self.sources.values():
            forget = getattr(source, "forget", None)
            if forget is not None:
                forget(account_id)
