"""
Redis-backed account configuration storage.

Accounts are stored as JSON documents under ``<prefix>:account:<id>``; the
set ``<prefix>:accounts`` indexes their identifiers.
"""

from __future__ import annotations
import json
from typing import List, Optional

import redis

from mailwatch.logging import logger
from mailwatch.models import Account, PollingSettings
from mailwatch.utils.validation import validate_account


class RedisConfigStore:
    """
    Redis implementation of the ConfigStore protocol.

    Reads degrade gracefully (a broken document is logged and skipped);
    writes raise so that callers know configuration was not persisted.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        key_prefix: str = "mailwatch",
        defaults: Optional[PollingSettings] = None,
        client: Optional[redis.Redis] = None,
    ) -> None:
        """
        Initialize the Redis connection.

        Args:
            host: Redis server hostname
            port: Redis server port
            db: Redis database number
            key_prefix: Namespace for all keys
            defaults: Polling settings applied to documents missing them
            client: Pre-built client (tests); skips connecting

        Raises:
            redis.ConnectionError: If connection to Redis fails
        """
        self.key_prefix = key_prefix
        self.defaults = defaults or PollingSettings()
        if client is not None:
            self.client = client
            return

        try:
            self.client = redis.Redis(
                host=host,
                port=port,
                db=db,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            self.client.ping()
            logger.info(f"Connected to Redis at {host}:{port}/{db}")
        except redis.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    @property
    def index_key(self) -> str:
        return f"{self.key_prefix}:accounts"

    def account_key(self, account_id: str) -> str:
        return f"{self.key_prefix}:account:{account_id}"

    def get(self, account_id: str) -> Optional[Account]:
        """
        Get an account by id.

        Returns:
            The account, or None if missing, unreadable, invalid or Redis failed
        """
        try:
            raw = self.client.get(self.account_key(account_id))
        except redis.RedisError as e:
            logger.error(f"Redis GET error for account '{account_id}': {e}")
            return None
        if raw is None:
            return None
        try:
            return validate_account(Account.from_dict(json.loads(raw), defaults=self.defaults))
        except (ValueError, TypeError) as e:
            # ConfigurationError is a ValueError
            logger.warning(f"Ignoring invalid account document '{account_id}': {e}")
            return None

    def list_accounts(self) -> List[Account]:
        try:
            ids = sorted(self.client.smembers(self.index_key))
        except redis.RedisError as e:
            logger.error(f"Redis SMEMBERS error for '{self.index_key}': {e}")
            return []
        accounts = []
        for account_id in ids:
            account = self.get(account_id)
            if account is not None:
                accounts.append(account)
        return accounts

    def save(self, account: Account) -> None:
        """
        Persist an account.

        Raises:
            redis.RedisError: If the write fails
        """
        try:
            pipe = self.client.pipeline()
            pipe.set(self.account_key(account.account_id), json.dumps(account.to_dict()))
            pipe.sadd(self.index_key, account.account_id)
            pipe.execute()
            logger.debug(f"Saved account '{account.account_id}' to Redis")
        except redis.RedisError as e:
            logger.error(f"Redis SET error for account '{account.account_id}': {e}")
            raise

    def delete(self, account_id: str) -> bool:
        try:
            pipe = self.client.pipeline()
            pipe.delete(self.account_key(account_id))
            pipe.srem(self.index_key, account_id)
            deleted, _ = pipe.execute()
            return bool(deleted)
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE error for account '{account_id}': {e}")
            return False
