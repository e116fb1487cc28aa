"""
Mail source contract.
"""

from __future__ import annotations
from typing import Protocol, Sequence, runtime_checkable

from mailwatch.models import Account, MessageCandidate


@runtime_checkable
class MailSource(Protocol):
    """
    Fetches candidate messages for an account.

    Implementations must be safe to call repeatedly and independently per
    account and must not rely on state from earlier calls. Connection
    caching, if any, is the source's own business; a source that caches
    may expose ``forget(account_id)``, which the engine calls when an
    account is removed. Any exception raised is
    treated by the engine as a failed fetch.
    """

    async def fetch(self, account: Account) -> Sequence[MessageCandidate]: ...
