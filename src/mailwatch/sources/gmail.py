"""
Gmail mail source with parallel message retrieval.
"""

from __future__ import annotations
import asyncio
import base64
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailwatch.auth import GMAIL_READONLY_SCOPES, ensure_valid_credentials
from mailwatch.logging import logger
from mailwatch.models import Account, MessageCandidate
from mailwatch.utils.rate_limiter import AsyncRateLimiter
from mailwatch.utils.retry_async import async_retry_with_backoff
from mailwatch.utils.text import DEFAULT_PREVIEW_CHARS, html_to_text, make_preview, normalize_whitespace

DEFAULT_QUERY = "in:inbox is:unread"


class GmailMailSource:
    """
    MailSource backed by the Gmail REST API.

    The account's ``credential_ref`` is the path of its authorized-user token
    file. One API service object is kept per account and rebuilt when the
    token path changes; the engine drops it through ``forget`` when the
    account is removed. Candidates use Gmail's message id, which is stable per mailbox.
    """

    def __init__(
        self,
        *,
        scopes: Optional[List[str]] = None,
        query: str = DEFAULT_QUERY,
        max_messages: int = 50,
        preview_chars: int = DEFAULT_PREVIEW_CHARS,
        max_concurrent: int = 10,
        rate_limiter: Optional[AsyncRateLimiter] = None,
        auto_reauthorize: bool = False,
    ) -> None:
        """
        Args:
            scopes: OAuth scopes (default: gmail.readonly)
            query: Gmail search query selecting candidate messages
            max_messages: Maximum messages listed per fetch
            preview_chars: Length of the preview text
            max_concurrent: Concurrent message GETs per fetch
            rate_limiter: Optional limiter shared by all accounts
            auto_reauthorize: Run the browser OAuth flow when a token is dead
        """
        self.scopes = scopes or GMAIL_READONLY_SCOPES
        self.query = query
        self.max_messages = max_messages
        self.preview_chars = preview_chars
        self.max_concurrent = max_concurrent
        self.rate_limiter = rate_limiter
        self.auto_reauthorize = auto_reauthorize
        self._services: Dict[str, Tuple[str, object]] = {}

    async def fetch(self, account: Account) -> List[MessageCandidate]:
        svc = await self._service_for(account)
        resp = await self._list_messages(svc)
        ids = [m["id"] for m in resp.get("messages", [])]
        if not ids:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def process_with_semaphore(mid: str) -> Optional[MessageCandidate]:
            async with semaphore:
                return await self._process_single_message(svc, mid)

        results = await asyncio.gather(*(process_with_semaphore(mid) for mid in ids))
        candidates = [c for c in results if c is not None]
        logger.debug(f"[{account.account_id}] Gmail fetch returned {len(candidates)}/{len(ids)} candidate(s)")
        return candidates

    def forget(self, account_id: str) -> None:
        """Drop the cached API service for an account."""
        self._services.pop(account_id, None)

    async def _service_for(self, account: Account):
        token_path = account.connection.credential_ref
        cached = self._services.get(account.account_id)
        if cached is not None:
            cached_path, svc = cached
            if cached_path == token_path:
                return svc
            logger.info(f"[{account.account_id}] Token path changed, rebuilding Gmail service")

        loop = asyncio.get_running_loop()

        def _build():
            creds = ensure_valid_credentials(
                token_path=token_path,
                scopes=self.scopes,
                auto_reauthorize=self.auto_reauthorize,
            )
            return build("gmail", "v1", credentials=creds, cache_discovery=False)

        svc = await loop.run_in_executor(None, _build)
        self._services[account.account_id] = (token_path, svc)
        logger.info(f"[{account.account_id}] Gmail service initialized")
        return svc

    @async_retry_with_backoff(max_retries=3, initial_delay=1.0, exceptions=(HttpError,))
    async def _list_messages(self, svc) -> Dict:
        if self.rate_limiter:
            await self.rate_limiter.acquire(blocking=True)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: svc.users().messages().list(
                userId="me",
                q=self.query,
                maxResults=self.max_messages,
            ).execute()
        )

    @async_retry_with_backoff(max_retries=3, initial_delay=1.0, exceptions=(HttpError,))
    async def _fetch_message(self, svc, message_id: str) -> Dict:
        if self.rate_limiter:
            await self.rate_limiter.acquire(blocking=True)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: svc.users().messages().get(userId="me", id=message_id, format="full").execute()
        )

    async def _process_single_message(self, svc, mid: str) -> Optional[MessageCandidate]:
        """
        Fetch one message and map it to a candidate.

        A message that cannot be fetched is skipped (and logged); it was not
        marked seen, so the next cycle retries it.
        """
        try:
            m = await self._fetch_message(svc, mid)
        except HttpError as e:
            logger.error(f"Failed to fetch message {mid}: {e}")
            return None
        return message_to_candidate(m, preview_chars=self.preview_chars)


def _decode_b64(data: str) -> str:
    return base64.urlsafe_b64decode(data.encode("utf-8")).decode("utf-8", errors="replace")


def extract_text_from_payload(payload: dict) -> Tuple[Optional[str], Optional[str]]:
    """
    Extract plain and HTML bodies from a Gmail payload tree.

    Prefers ``text/plain`` but also returns raw ``text/html`` for later
    conversion. Recurses through multipart structures.

    Returns:
        (plain_text, html_text); either may be None
    """
    if not payload:
        return None, None

    mime = payload.get("mimeType")
    data = payload.get("body", {}).get("data")

    if data and isinstance(data, str):
        decoded = _decode_b64(data)
        if mime == "text/html":
            return None, decoded
        if mime and mime.startswith("text/"):
            return normalize_whitespace(decoded), None

    plain_best, html_best = None, None
    for part in payload.get("parts") or []:
        p_plain, p_html = extract_text_from_payload(part)
        if p_plain and not plain_best:
            plain_best = p_plain
        if p_html and not html_best:
            html_best = p_html
        if plain_best and html_best:
            break
    return plain_best, html_best


def message_to_candidate(m: dict, *, preview_chars: int = DEFAULT_PREVIEW_CHARS) -> MessageCandidate:
    """Map a Gmail ``messages.get(format="full")`` response to a candidate."""
    payload = m.get("payload", {})
    headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
    plain, html_raw = extract_text_from_payload(payload)
    if plain:
        text = plain
    elif html_raw:
        text = html_to_text(html_raw)
    else:
        text = m.get("snippet", "")

    timestamp = ""
    internal_date = m.get("internalDate")
    if internal_date:
        try:
            timestamp = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc).isoformat()
        except (TypeError, ValueError):
            timestamp = str(internal_date)

    return MessageCandidate(
        message_id=m["id"],
        sender=headers.get("from", ""),
        subject=headers.get("subject", ""),
        timestamp=timestamp,
        preview=make_preview(text, preview_chars),
    )
