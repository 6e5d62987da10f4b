import asyncio
from typing import Any

import httpx

from inbox_ledger.core import settings
from inbox_ledger.errors import AuthError, MailboxError, RateLimited, TransientError
from inbox_ledger.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

_QUOTA_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded", "dailyLimitExceeded")


def _error_reason(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        errors = error.get("errors") or []
        if errors and isinstance(errors[0], dict) and errors[0].get("reason"):
            return str(errors[0]["reason"])
        return str(error.get("message") or error.get("status") or "")
    return str(error or "")


def map_status_error(exc: httpx.HTTPStatusError) -> MailboxError:
    response = exc.response
    status = response.status_code
    reason = _error_reason(response)
    if status == 401:
        return AuthError("Gmail access token expired. Please re-authenticate.", status)
    if status == 429 or (status == 403 and any(r in reason for r in _QUOTA_REASONS)):
        return RateLimited("Gmail API rate limit or quota exceeded. Try again later.", status)
    if status == 403:
        return AuthError(f"Gmail access denied: {reason or 'forbidden'}", status)
    return TransientError(f"Gmail API error {status}: {reason}", status)


class GmailClient:
    """Minimal async client for the Gmail REST API (``users.messages`` only).

    The access token is supplied per call; the client holds no credentials.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.base_url = (base_url or settings.GMAIL_API_URL).rstrip("/")
        self.timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=self.timeout)
                self._client = client
            return client

    @staticmethod
    def _headers(access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def _get(self, access_token: str, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}{path}",
                headers=self._headers(access_token),
                params=params,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise map_status_error(exc) from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"Gmail request failed: {exc!r}") from exc
        return response.json()

    async def search(self, access_token: str, query: str, max_results: int) -> list[dict[str, Any]]:
        """Return message refs (``{"id", "threadId"}``) matching ``query``."""
        data = await self._get(
            access_token,
            "/users/me/messages",
            params={"q": query, "maxResults": max_results},
        )
        messages = data.get("messages") or []
        logger.debug("[FETCH] Search returned %d message refs.", len(messages))
        return messages

    async def fetch_full(self, access_token: str, message_id: str) -> dict[str, Any]:
        return await self._get(
            access_token,
            f"/users/me/messages/{message_id}",
            params={"format": "full"},
        )

    async def get_profile(self, access_token: str) -> dict[str, Any]:
        return await self._get(access_token, "/users/me/profile")
