"""
Configuration management with validation, account loading and backend selection.
"""

from __future__ import annotations
import json
import os
from pathlib import Path
from typing import List, TypedDict

from dotenv import load_dotenv

from mailwatch.errors import ConfigurationError
from mailwatch.logging import logger
from mailwatch.models import (
    Account,
    PollingSettings,
    PROVIDERS,
    PROVIDER_GMAIL,
    PROVIDER_IMAP,
    DEFAULT_FETCH_TIMEOUT_MS,
    DEFAULT_INTERVAL_MS,
    DEFAULT_SEEN_SET_CAPACITY,
)
from mailwatch.sources.imap import DEFAULT_MAX_MESSAGES, ImapMailSource
from mailwatch.sources.router import MailSourceRouter
from mailwatch.storage.config_store import ConfigStore, InMemoryConfigStore
from mailwatch.utils.text import DEFAULT_PREVIEW_CHARS
from mailwatch.utils.validation import validate_account, validate_settings

_TRUTHY = ("true", "1", "yes")


class Config(TypedDict):
    """Typed configuration dictionary."""
    LOG_LEVEL: str
    LOG_FILE: str | None
    POLL_INTERVAL_MS: int
    SEEN_SET_CAPACITY: int
    FETCH_TIMEOUT_MS: int
    ACCOUNTS_FILE: str | None
    MAIL_ACCOUNT: str | None  # single-account shortcut
    MAIL_PROVIDER: str
    IMAP_HOST: str
    IMAP_PORT: int
    MAIL_USERNAME: str
    MAIL_CREDENTIAL: str
    MAIL_MAILBOX: str
    IMAP_MAX_MESSAGES: int
    PREVIEW_CHARS: int
    USE_REDIS: bool
    REDIS_HOST: str
    REDIS_PORT: int
    REDIS_DB: int
    REDIS_KEY_PREFIX: str
    GMAIL_RATE_LIMIT_PER_MINUTE: int
    GMAIL_SCOPES: list[str]
    AUTO_REAUTHORIZE: bool
    HEALTH_CHECK_ENABLED: bool
    HEALTH_CHECK_PORT: int


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _load_env() -> Config:
    """
    Load environment variables and return validated configuration.

    Optional vars with defaults:
      - LOG_LEVEL (default: "INFO"), LOG_FILE (default: None)
      - POLL_INTERVAL_MS (default: 30000)
      - SEEN_SET_CAPACITY (default: 1000)
      - FETCH_TIMEOUT_MS (default: 20000)
      - ACCOUNTS_FILE (default: None) - JSON file with an "accounts" list
      - MAIL_ACCOUNT, MAIL_PROVIDER ("imap"), IMAP_HOST ("imap.gmail.com"),
        IMAP_PORT (993), MAIL_USERNAME (MAIL_ACCOUNT), MAIL_CREDENTIAL,
        MAIL_MAILBOX ("INBOX") - one account without a file
      - IMAP_MAX_MESSAGES (default: 50), PREVIEW_CHARS (default: 150)
      - USE_REDIS ("false"), REDIS_HOST ("localhost"), REDIS_PORT (6379),
        REDIS_DB (0), REDIS_KEY_PREFIX ("mailwatch")
      - GMAIL_RATE_LIMIT_PER_MINUTE (default: 100), GOOGLE_GMAIL_SCOPES,
        AUTO_REAUTHORIZE ("false")
      - HEALTH_CHECK_ENABLED ("true"), HEALTH_CHECK_PORT (8080)

    Raises:
        ConfigurationError: If a value is malformed or out of range
    """
    load_dotenv()

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    log_file = os.getenv("LOG_FILE", "").strip() or None

    poll_interval_ms = _env_int("POLL_INTERVAL_MS", DEFAULT_INTERVAL_MS)
    seen_set_capacity = _env_int("SEEN_SET_CAPACITY", DEFAULT_SEEN_SET_CAPACITY)
    fetch_timeout_ms = _env_int("FETCH_TIMEOUT_MS", DEFAULT_FETCH_TIMEOUT_MS)
    validate_settings(PollingSettings(poll_interval_ms, seen_set_capacity, fetch_timeout_ms))

    mail_account = os.getenv("MAIL_ACCOUNT", "").strip() or None
    mail_provider = os.getenv("MAIL_PROVIDER", PROVIDER_IMAP).strip().lower()
    if mail_provider not in PROVIDERS:
        raise ConfigurationError(
            f"MAIL_PROVIDER must be one of {', '.join(PROVIDERS)}, got {mail_provider!r}"
        )

    imap_port = _env_int("IMAP_PORT", 993)
    if not (1 <= imap_port <= 65535):
        raise ConfigurationError(f"IMAP_PORT must be between 1 and 65535, got {imap_port}")

    imap_max_messages = _env_int("IMAP_MAX_MESSAGES", DEFAULT_MAX_MESSAGES)
    if not (1 <= imap_max_messages <= 500):
        raise ConfigurationError(f"IMAP_MAX_MESSAGES must be between 1 and 500, got {imap_max_messages}")

    preview_chars = _env_int("PREVIEW_CHARS", DEFAULT_PREVIEW_CHARS)
    if preview_chars < 0:
        raise ConfigurationError(f"PREVIEW_CHARS must not be negative, got {preview_chars}")

    redis_port = _env_int("REDIS_PORT", 6379)
    if not (1 <= redis_port <= 65535):
        raise ConfigurationError(f"REDIS_PORT must be between 1 and 65535, got {redis_port}")

    gmail_rate_limit = _env_int("GMAIL_RATE_LIMIT_PER_MINUTE", 100)
    if not (1 <= gmail_rate_limit <= 1000):
        raise ConfigurationError(
            f"GMAIL_RATE_LIMIT_PER_MINUTE must be between 1 and 1000, got {gmail_rate_limit}"
        )

    health_check_port = _env_int("HEALTH_CHECK_PORT", 8080)
    if not (1024 <= health_check_port <= 65535):
        raise ConfigurationError(
            f"HEALTH_CHECK_PORT must be between 1024 and 65535, got {health_check_port}"
        )

    gmail_scopes_str = os.getenv("GOOGLE_GMAIL_SCOPES", "https://www.googleapis.com/auth/gmail.readonly")
    gmail_scopes = [s.strip() for s in gmail_scopes_str.split(",") if s.strip()]

    cfg: Config = {
        "LOG_LEVEL": log_level,
        "LOG_FILE": log_file,
        "POLL_INTERVAL_MS": poll_interval_ms,
        "SEEN_SET_CAPACITY": seen_set_capacity,
        "FETCH_TIMEOUT_MS": fetch_timeout_ms,
        "ACCOUNTS_FILE": os.getenv("ACCOUNTS_FILE", "").strip() or None,
        "MAIL_ACCOUNT": mail_account,
        "MAIL_PROVIDER": mail_provider,
        "IMAP_HOST": os.getenv("IMAP_HOST", "imap.gmail.com").strip(),
        "IMAP_PORT": imap_port,
        "MAIL_USERNAME": os.getenv("MAIL_USERNAME", "").strip() or (mail_account or ""),
        "MAIL_CREDENTIAL": os.getenv("MAIL_CREDENTIAL", "").strip(),
        "MAIL_MAILBOX": os.getenv("MAIL_MAILBOX", "INBOX").strip() or "INBOX",
        "IMAP_MAX_MESSAGES": imap_max_messages,
        "PREVIEW_CHARS": preview_chars,
        "USE_REDIS": _env_bool("USE_REDIS"),
        "REDIS_HOST": os.getenv("REDIS_HOST", "localhost").strip(),
        "REDIS_PORT": redis_port,
        "REDIS_DB": _env_int("REDIS_DB", 0),
        "REDIS_KEY_PREFIX": os.getenv("REDIS_KEY_PREFIX", "mailwatch").strip() or "mailwatch",
        "GMAIL_RATE_LIMIT_PER_MINUTE": gmail_rate_limit,
        "GMAIL_SCOPES": gmail_scopes,
        "AUTO_REAUTHORIZE": _env_bool("AUTO_REAUTHORIZE"),
        "HEALTH_CHECK_ENABLED": _env_bool("HEALTH_CHECK_ENABLED", "true"),
        "HEALTH_CHECK_PORT": health_check_port,
    }

    logger.debug(
        f"Configuration loaded: USE_REDIS={cfg['USE_REDIS']}, LOG_LEVEL={log_level}, "
        f"POLL_INTERVAL_MS={poll_interval_ms}"
    )
    return cfg


def default_settings(cfg: Config) -> PollingSettings:
    return PollingSettings(
        interval_ms=cfg["POLL_INTERVAL_MS"],
        seen_set_capacity=cfg["SEEN_SET_CAPACITY"],
        fetch_timeout_ms=cfg["FETCH_TIMEOUT_MS"],
    )


def load_accounts_file(path: str | Path, defaults: PollingSettings) -> List[Account]:
    """
    Read accounts from a JSON file.

    The file holds ``{"accounts": [{...}, ...]}`` (or a bare list) of flat
    account mappings: id, provider, host, port, username, credential_ref,
    mailbox, use_ssl, enabled, interval_ms, seen_set_capacity, fetch_timeout_ms.

    Raises:
        ConfigurationError: On unreadable JSON, duplicate ids or invalid accounts
    """
    file_path = Path(path)
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationError(f"ACCOUNTS_FILE not found: {file_path}") from None
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read ACCOUNTS_FILE {file_path}: {e}") from e

    entries = data.get("accounts", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ConfigurationError(f"ACCOUNTS_FILE {file_path} must contain a list of accounts")

    accounts: List[Account] = []
    seen_ids: set[str] = set()
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Account #{i} in {file_path} is not an object")
        try:
            account = Account.from_dict(entry, defaults=defaults)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Account #{i} in {file_path} is invalid: {e}") from e
        validate_account(account)
        if account.account_id in seen_ids:
            raise ConfigurationError(f"Duplicate account id {account.account_id!r} in {file_path}")
        seen_ids.add(account.account_id)
        accounts.append(account)

    logger.info(f"Loaded {len(accounts)} account(s) from {file_path}")
    return accounts


def account_from_env(cfg: Config) -> Account | None:
    """Build the single account described by MAIL_* variables, if any."""
    if not cfg["MAIL_ACCOUNT"]:
        return None

    # Gmail accounts only need a token file; host/port describe the API endpoint
    is_gmail = cfg["MAIL_PROVIDER"] == PROVIDER_GMAIL
    account = Account.from_dict(
        {
            "id": cfg["MAIL_ACCOUNT"],
            "provider": cfg["MAIL_PROVIDER"],
            "host": "gmail.googleapis.com" if is_gmail else cfg["IMAP_HOST"],
            "port": 443 if is_gmail else cfg["IMAP_PORT"],
            "username": cfg["MAIL_USERNAME"],
            "credential_ref": cfg["MAIL_CREDENTIAL"],
            "mailbox": cfg["MAIL_MAILBOX"],
        },
        defaults=default_settings(cfg),
    )
    return validate_account(account)


def _init_config_store(cfg: Config) -> ConfigStore:
    """
    Initialize the account store with automatic fallback to memory.

    Accounts from ACCOUNTS_FILE and MAIL_* variables are written into the
    store, overriding stored entries with the same id.
    """
    store: ConfigStore
    if cfg["USE_REDIS"]:
        try:
            from mailwatch.storage.redis_store import RedisConfigStore
            store = RedisConfigStore(
                host=cfg["REDIS_HOST"],
                port=cfg["REDIS_PORT"],
                db=cfg["REDIS_DB"],
                key_prefix=cfg["REDIS_KEY_PREFIX"],
                defaults=default_settings(cfg),
            )
            logger.info(f"Using Redis config store at {cfg['REDIS_HOST']}:{cfg['REDIS_PORT']}")
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}. Falling back to in-memory config store.")
            store = InMemoryConfigStore()
    else:
        logger.info("Using in-memory config store (Redis disabled)")
        store = InMemoryConfigStore()

    seeded: List[Account] = []
    if cfg["ACCOUNTS_FILE"]:
        seeded.extend(load_accounts_file(cfg["ACCOUNTS_FILE"], default_settings(cfg)))
    env_account = account_from_env(cfg)
    if env_account is not None:
        seeded.append(env_account)
    for account in seeded:
        store.save(account)

    return store


def _init_source(cfg: Config) -> MailSourceRouter:
    """Build the provider router with IMAP and Gmail sources."""
    from mailwatch.sources.gmail import GmailMailSource
    from mailwatch.utils.rate_limiter import AsyncRateLimiter

    imap = ImapMailSource(
        max_messages=cfg["IMAP_MAX_MESSAGES"],
        preview_chars=cfg["PREVIEW_CHARS"],
        socket_timeout=cfg["FETCH_TIMEOUT_MS"] / 1000.0,
    )
    gmail = GmailMailSource(
        scopes=cfg["GMAIL_SCOPES"],
        max_messages=cfg["IMAP_MAX_MESSAGES"],
        preview_chars=cfg["PREVIEW_CHARS"],
        rate_limiter=AsyncRateLimiter(
            max_calls=cfg["GMAIL_RATE_LIMIT_PER_MINUTE"],
            time_window_seconds=60,
        ),
        auto_reauthorize=cfg["AUTO_REAUTHORIZE"],
    )
    return MailSourceRouter({PROVIDER_IMAP: imap, PROVIDER_GMAIL: gmail})
