"""
Input validation for accounts and polling settings.

Every check raises ConfigurationError; nothing here is allowed to silently
fix up a bad value.
"""

from __future__ import annotations
from mailwatch.errors import ConfigurationError
from mailwatch.models import Account, PollingSettings, PROVIDERS, PROVIDER_IMAP


def _require_positive_int(name: str, value: object) -> int:
    # bool is an int subclass; True is not a duration
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def validate_interval_ms(interval_ms: object) -> int:
    """Validate a polling interval in milliseconds."""
    return _require_positive_int("interval_ms", interval_ms)


def validate_settings(settings: PollingSettings) -> PollingSettings:
    """
    Validate polling settings.

    Args:
        settings: Per-account polling settings

    Returns:
        The same settings object

    Raises:
        ConfigurationError: If any value is not a positive integer
    """
    validate_interval_ms(settings.interval_ms)
    _require_positive_int("seen_set_capacity", settings.seen_set_capacity)
    _require_positive_int("fetch_timeout_ms", settings.fetch_timeout_ms)
    return settings


def validate_account(account: Account) -> Account:
    """
    Validate an account before it is polled.

    Args:
        account: Account to validate

    Returns:
        The same account object

    Raises:
        ConfigurationError: If the identifier or connection parameters are
            missing or out of range, or settings are invalid
    """
    if not isinstance(account, Account):
        raise ConfigurationError(f"Expected an Account, got {type(account).__name__}")

    if not account.account_id or not account.account_id.strip():
        raise ConfigurationError("Account identifier is required")

    conn = account.connection
    if conn is None or conn.is_empty():
        raise ConfigurationError(
            f"Account {account.account_id!r} is missing connection parameters "
            f"(host, username and credential reference are required)"
        )

    if conn.provider not in PROVIDERS:
        raise ConfigurationError(
            f"Account {account.account_id!r} has unknown provider {conn.provider!r}; "
            f"expected one of {', '.join(PROVIDERS)}"
        )

    if isinstance(conn.port, bool) or not isinstance(conn.port, int) or not (1 <= conn.port <= 65535):
        raise ConfigurationError(
            f"Account {account.account_id!r} port must be between 1 and 65535, got {conn.port!r}"
        )

    if conn.provider == PROVIDER_IMAP and not (conn.mailbox or "").strip():
        raise ConfigurationError(f"Account {account.account_id!r} mailbox name is required")

    validate_settings(account.settings)
    return account
