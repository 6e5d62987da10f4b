import asyncio
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any

from inbox_ledger.core.settings import PipelineSettings
from inbox_ledger.domain.body import clean_body, extract_body, get_header, truncate_body
from inbox_ledger.errors import AuthError, MailboxError
from inbox_ledger.integration.gmail import GmailClient
from inbox_ledger.logger import get_logger
from inbox_ledger.models import CandidateMessage

logger = get_logger(__name__)

TRANSACTION_KEYWORDS = (
    "transaction",
    "purchase",
    "payment",
    "charged",
    "debit",
    "withdrawal",
    "deposit",
    "transfer",
    "statement",
    "balance",
    "spent",
    "card ending",
    "account ending",
)

RETRY_DELAYS_SECONDS = (1.0, 2.0, 4.0)


def build_search_query(window_days: int | None = 90, extra: str | None = None) -> str:
    keyword_query = " OR ".join(f'"{keyword}"' for keyword in TRANSACTION_KEYWORDS)
    query = f"({keyword_query})"
    if window_days:
        query = f"{query} newer_than:{window_days}d"
    if extra:
        query = f"{query} {extra}"
    return query


def to_candidate(message_id: str, raw: dict[str, Any], max_body_chars: int) -> CandidateMessage:
    payload = raw.get("payload") or {}
    headers = payload.get("headers") or []
    body = truncate_body(clean_body(extract_body(payload)), max_body_chars)
    return CandidateMessage(
        id=message_id,
        sender=get_header(headers, "From"),
        subject=get_header(headers, "Subject"),
        date=get_header(headers, "Date"),
        body=body,
    )


class MessageFetcher:
    def __init__(
        self,
        gmail: GmailClient,
        config: PipelineSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.gmail = gmail
        self.config = config or PipelineSettings()
        self._sleep = sleep

    async def fetch(self, credential: str, limit: int) -> list[CandidateMessage]:
        query = build_search_query(self.config.search_window_days)
        return await self._fetch_query(credential, query, limit)

    async def fetch_by_date_range(
        self, credential: str, start: date, end: date, limit: int
    ) -> list[CandidateMessage]:
        date_clause = f"after:{start:%Y/%m/%d} before:{end:%Y/%m/%d}"
        query = build_search_query(window_days=None, extra=date_clause)
        return await self._fetch_query(credential, query, limit)

    async def fetch_unread(self, credential: str, limit: int) -> list[CandidateMessage]:
        query = build_search_query(self.config.search_window_days, extra="is:unread")
        return await self._fetch_query(credential, query, limit)

    async def _fetch_query(self, credential: str, query: str, limit: int) -> list[CandidateMessage]:
        logger.info("[FETCH] Searching mailbox with query: %s", query)
        refs = await self.gmail.search(credential, query, limit)
        if not refs:
            logger.info("[FETCH] No messages matched.")
            return []

        logger.info("[FETCH] Found %d candidate messages.", len(refs))
        # A failing fetch cancels its siblings instead of letting them run on.
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(self.fetch_message(credential, ref["id"])) for ref in refs]
        except ExceptionGroup as group_error:
            raise group_error.exceptions[0] from None
        results = [task.result() for task in tasks]
        messages = [message for message in results if message is not None]
        skipped = len(refs) - len(messages)
        if skipped:
            logger.warning("[FETCH] Skipped %d messages after retries.", skipped)
        logger.info("[FETCH] Fetched %d complete messages.", len(messages))
        return messages

    async def fetch_message(self, credential: str, message_id: str) -> CandidateMessage | None:
        """Fetch one message, retrying with backoff. Returns None once retries run out."""
        attempts = self.config.fetch_attempts
        for attempt in range(1, attempts + 1):
            try:
                raw = await self.gmail.fetch_full(credential, message_id)
                return to_candidate(message_id, raw, self.config.max_body_chars)
            except AuthError:
                raise
            except MailboxError as exc:
                logger.warning(
                    "[FETCH] Attempt %d/%d failed for message %s: %s",
                    attempt,
                    attempts,
                    message_id,
                    exc,
                )
            if attempt < attempts:
                delay = RETRY_DELAYS_SECONDS[min(attempt - 1, len(RETRY_DELAYS_SECONDS) - 1)]
                await self._sleep(delay)

        logger.error("[FETCH] Giving up on message %s after %d attempts.", message_id, attempts)
        return None
