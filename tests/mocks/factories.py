"""
Builders for accounts and candidates used across tests.
"""

from mailwatch.models import Account, ConnectionParams, MessageCandidate, PollingSettings


def make_account(account_id="user@example.com", **settings):
    """Build a valid IMAP account; keyword args override polling settings."""
    return Account(
        account_id=account_id,
        connection=ConnectionParams(
            host="imap.example.com",
            port=993,
            username=account_id,
            credential_ref="env:TEST_MAIL_PASSWORD",
        ),
        settings=PollingSettings(**settings),
    )


def make_messages(*ids):
    """Candidates with predictable metadata for the given ids."""
    return [
        MessageCandidate(
            message_id=mid,
            sender=f"sender-{mid}@example.com",
            subject=f"Subject {mid}",
            timestamp="2024-01-01T00:00:00+00:00",
            preview=f"Preview of {mid}",
        )
        for mid in ids
    ]
