"""
IMAP mail source.

Each fetch opens a fresh IMAP4(-SSL) connection in a worker thread, selects
the mailbox read-only, searches UNSEEN messages and maps the newest ones to
candidates. Nothing is cached between calls.

A worker thread cannot be cancelled, so the blocking fetch carries its own
deadline (the account's fetch timeout) and at most one worker per account
runs at a time. While an abandoned worker is still winding down, further
fetches for that account fail fast instead of starting another thread.
"""

from __future__ import annotations
import asyncio
import email
import imaplib
import ssl
import threading
import time
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional, Set

from mailwatch.auth import resolve_credential
from mailwatch.logging import logger
from mailwatch.models import Account, MessageCandidate
from mailwatch.utils.text import DEFAULT_PREVIEW_CHARS, decode_header_value, html_to_text, make_preview, normalize_whitespace

DEFAULT_MAX_MESSAGES = 50
FETCH_ITEMS = "(BODY.PEEK[])"


class ImapError(Exception):
    """The IMAP server answered a command with a non-OK status."""


def quote_mailbox_name(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_fetch_body(fetch_data: Iterable[object]) -> Optional[bytes]:
    """Return the literal payload of a single-message FETCH response."""
    for part in fetch_data or ():
        if isinstance(part, tuple) and len(part) >= 2 and isinstance(part[1], bytes):
            return part[1]
    return None


def _body_text(message: Message) -> str:
    plain: Optional[str] = None
    html_raw: Optional[str] = None
    parts = message.walk() if message.is_multipart() else [message]
    for part in parts:
        if part.get_content_maintype() != "text" or part.get_filename():
            continue
        payload = part.get_payload(decode=True)
        if not isinstance(payload, bytes):
            continue
        charset = part.get_content_charset() or "utf-8"
        try:
            text = payload.decode(charset, errors="replace")
        except LookupError:
            text = payload.decode("utf-8", errors="replace")
        subtype = part.get_content_subtype()
        if subtype == "plain" and plain is None:
            plain = normalize_whitespace(text)
        elif subtype == "html" and html_raw is None:
            html_raw = text
    if plain:
        return plain
    if html_raw:
        return html_to_text(html_raw)
    return ""


def _format_date(raw: str) -> str:
    if not raw:
        return ""
    try:
        return parsedate_to_datetime(raw).isoformat()
    except (TypeError, ValueError):
        return raw


def parse_message(raw: bytes, *, fallback_id: str, preview_chars: int = DEFAULT_PREVIEW_CHARS) -> MessageCandidate:
    """
    Map raw RFC 822 bytes to a candidate.

    Args:
        raw: Full message as returned by FETCH BODY.PEEK[]
        fallback_id: Identifier used when the message has no Message-ID header
        preview_chars: Length of the preview text
    """
    message = email.message_from_bytes(raw)
    message_id = decode_header_value(message.get("Message-ID")) or fallback_id
    return MessageCandidate(
        message_id=message_id,
        sender=decode_header_value(message.get("From")),
        subject=decode_header_value(message.get("Subject")),
        timestamp=_format_date(decode_header_value(message.get("Date"))),
        preview=make_preview(_body_text(message), preview_chars),
    )


class ImapMailSource:
    """
    MailSource backed by the standard library IMAP client.

    Only the ``max_messages`` newest UNSEEN messages are fetched per cycle;
    messages are peeked, so their \\Seen flag is left alone.
    """

    def __init__(
        self,
        *,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        preview_chars: int = DEFAULT_PREVIEW_CHARS,
        socket_timeout: Optional[float] = 30.0,
        search_criteria: str = "UNSEEN",
    ) -> None:
        self.max_messages = max_messages
        self.preview_chars = preview_chars
        self.socket_timeout = socket_timeout
        self.search_criteria = search_criteria
        self._busy: Set[str] = set()
        self._busy_lock = threading.Lock()

    async def fetch(self, account: Account) -> List[MessageCandidate]:
        """
        Fetch candidates in a worker thread.

        Raises:
            ImapError: If a previous worker for this account is still running
                or the fetch ran past its deadline
        """
        account_id = account.account_id
        with self._busy_lock:
            if account_id in self._busy:
                raise ImapError(f"Previous IMAP fetch for {account_id!r} is still running")
            self._busy.add(account_id)

        deadline = time.monotonic() + account.settings.fetch_timeout_seconds
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._run_worker, account, deadline)

    def is_busy(self, account_id: str) -> bool:
        with self._busy_lock:
            return account_id in self._busy

    def _run_worker(self, account: Account, deadline: float) -> List[MessageCandidate]:
        try:
            return self._fetch_blocking(account, deadline)
        finally:
            with self._busy_lock:
                self._busy.discard(account.account_id)

    def _timeout_for(self, deadline: float) -> float:
        remaining = max(deadline - time.monotonic(), 0.001)
        if self.socket_timeout is None:
            return remaining
        return min(self.socket_timeout, remaining)

    def _connect(self, account: Account, timeout: Optional[float]) -> imaplib.IMAP4:
        conn = account.connection
        if conn.use_ssl:
            context = ssl.create_default_context()
            return imaplib.IMAP4_SSL(conn.host, conn.port, ssl_context=context, timeout=timeout)
        return imaplib.IMAP4(conn.host, conn.port, timeout=timeout)

    @staticmethod
    def _check_deadline(account: Account, deadline: float, stage: str) -> None:
        if time.monotonic() > deadline:
            raise ImapError(
                f"[{account.account_id}] Fetch deadline of {account.settings.fetch_timeout_ms}ms exceeded {stage}"
            )

    def _fetch_blocking(self, account: Account, deadline: float) -> List[MessageCandidate]:
        conn = account.connection
        password = resolve_credential(conn.credential_ref)

        with self._connect(account, self._timeout_for(deadline)) as imap:
            imap.login(conn.username, password)
            self._check_deadline(account, deadline, "after login")
            status, data = imap.select(quote_mailbox_name(conn.mailbox), readonly=True)
            if status != "OK":
                raise ImapError(f"Cannot select mailbox {conn.mailbox!r}: {data!r}")

            uids = self._search(imap)
            if len(uids) > self.max_messages:
                logger.debug(f"[{account.account_id}] {len(uids)} unseen, fetching newest {self.max_messages}")
                uids = uids[-self.max_messages:]

            candidates: List[MessageCandidate] = []
            for uid in uids:
                self._check_deadline(account, deadline, f"after {len(candidates)} message(s)")
                candidate = self._fetch_one(imap, account, uid)
                if candidate is not None:
                    candidates.append(candidate)

            imap.logout()

        logger.debug(f"[{account.account_id}] IMAP fetch returned {len(candidates)} candidate(s)")
        return candidates

    def _search(self, imap: imaplib.IMAP4) -> List[str]:
        status, data = imap.uid("SEARCH", None, self.search_criteria)
        if status != "OK":
            raise ImapError(f"SEARCH {self.search_criteria} failed: {data!r}")
        if not data or not data[0]:
            return []
        return [uid.decode("ascii", errors="ignore") for uid in data[0].split()]

    def _fetch_one(self, imap: imaplib.IMAP4, account: Account, uid: str) -> Optional[MessageCandidate]:
        status, fetch_data = imap.uid("FETCH", uid, FETCH_ITEMS)
        raw = parse_fetch_body(fetch_data) if status == "OK" else None
        if raw is None:
            # expunged between SEARCH and FETCH
            logger.debug(f"[{account.account_id}] UID {uid} vanished before fetch")
            return None
        fallback_id = f"imap:{account.connection.mailbox}:{uid}"
        return parse_message(raw, fallback_id=fallback_id, preview_chars=self.preview_chars)
