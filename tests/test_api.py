from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import anyio
import pytest
from conftest import make_guess, make_message
from fastapi.testclient import TestClient

from inbox_ledger.app import app
from inbox_ledger.errors import AuthError, SyncError, TransientError
from inbox_ledger.models import SyncStats, SyncSummary, Transaction
from inbox_ledger.services.normalizer import Normalizer
from inbox_ledger.storage.repository import LedgerRepository

client = TestClient(app)


def _swap_state(name: str, value: Any) -> Generator[Any, None, None]:
    had_value = hasattr(app.state, name)
    original = getattr(app.state, name, None)
    setattr(app.state, name, value)
    yield value
    if had_value:
        setattr(app.state, name, original)
    else:
        delattr(app.state, name)


@pytest.fixture
def mock_sync_service() -> Generator[MagicMock, None, None]:
    service = MagicMock()
    service.run_sync = AsyncMock()
    yield from _swap_state("sync_service", service)


@pytest.fixture
def app_repository(repository: LedgerRepository) -> Generator[LedgerRepository, None, None]:
    yield from _swap_state("repository", repository)


@pytest.fixture
def mock_gmail() -> Generator[AsyncMock, None, None]:
    yield from _swap_state("gmail", AsyncMock())


@pytest.fixture
def mock_fetcher() -> Generator[AsyncMock, None, None]:
    yield from _swap_state("fetcher", AsyncMock())


@pytest.fixture
def sync_disabled() -> Generator[None, None, None]:
    yield from _swap_state("sync_service", None)


def _seed(repository: LedgerRepository) -> None:
    async def seed() -> None:
        owner = await repository.ensure_owner("owner@example.com")
        tx = Normalizer().normalize(make_guess(), make_message(), owner.id)
        assert isinstance(tx, Transaction)
        await repository.save_transactions(owner.id, [tx])

    anyio.run(seed)


def test_health() -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_full_sync_returns_camel_case_stats(mock_sync_service: MagicMock) -> None:
    mock_sync_service.run_sync.return_value = SyncSummary(
        success=True,
        message="Successfully synced 4 new transactions",
        run_id=9,
        stats=SyncStats(
            messages_fetched=5,
            messages_processed=5,
            transactions_found=4,
            transactions_saved=4,
            failed=1,
            processing_time_seconds=1.25,
        ),
        failures=[{"message_id": "msg-3", "error": "TimeoutError: slow"}],
    )

    response = client.post(
        "/api/sync/full-sync",
        json={"access_token": "token", "user_email": "owner@example.com", "max_emails": 5},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["stats"]["transactionsSaved"] == 4
    assert data["stats"]["processingTimeSeconds"] == 1.25
    assert data["failures"][0]["message_id"] == "msg-3"
    mock_sync_service.run_sync.assert_awaited_once_with("token", "owner@example.com", 5)


def test_full_sync_failure_is_500(mock_sync_service: MagicMock) -> None:
    error = SyncError("Sync failed while persisting: disk full", run_id=3)
    error.__cause__ = TransientError("disk full")
    mock_sync_service.run_sync.side_effect = error

    response = client.post("/api/sync/full-sync", json={"access_token": "t", "user_email": "owner@example.com"})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Sync failed while persisting: disk full", "run_id": 3}


def test_full_sync_expired_token_is_401(mock_sync_service: MagicMock) -> None:
    error = SyncError("Sync failed while fetching: expired", run_id=4)
    error.__cause__ = AuthError("expired", 401)
    mock_sync_service.run_sync.side_effect = error

    response = client.post("/api/sync/full-sync", json={"access_token": "t", "user_email": "owner@example.com"})

    assert response.status_code == 401


def test_full_sync_validates_request(mock_sync_service: MagicMock) -> None:
    response = client.post("/api/sync/full-sync", json={"access_token": "", "user_email": "owner@example.com"})
    assert response.status_code == 422
    mock_sync_service.run_sync.assert_not_called()


def test_full_sync_disabled_without_service(sync_disabled: None) -> None:
    response = client.post("/api/sync/full-sync", json={"access_token": "t", "user_email": "owner@example.com"})
    assert response.status_code == 503


def test_status_unknown_owner_is_404(app_repository: LedgerRepository) -> None:
    response = client.post("/api/sync/status", json={"user_email": "nobody@example.com"})
    assert response.status_code == 404


def test_status_and_history_for_known_owner(app_repository: LedgerRepository) -> None:
    anyio.run(app_repository.ensure_owner, "owner@example.com")

    status = client.post("/api/sync/status", json={"user_email": "owner@example.com"})
    history = client.get("/api/sync/history", params={"user_email": "owner@example.com"})

    assert status.json() == {"success": True, "lastSync": None}
    assert history.json() == {"success": True, "logs": []}


def test_list_and_get_transactions(app_repository: LedgerRepository) -> None:
    _seed(app_repository)

    listing = client.post(
        "/api/transactions/list",
        json={"user_email": "owner@example.com", "filters": {"category": "transfer"}},
    ).json()
    assert listing["pagination"]["total"] == 1
    stored = listing["transactions"][0]
    assert stored["merchant"] == "Remitly"

    single = client.get(f"/api/transactions/{stored['id']}", params={"user_email": "owner@example.com"})
    assert single.status_code == 200
    assert single.json()["transaction"]["source_message_id"] == "msg-1"


def test_analytics_by_category(app_repository: LedgerRepository) -> None:
    _seed(app_repository)

    response = client.post(
        "/api/transactions/analytics/by-category",
        json={"user_email": "owner@example.com", "start_date": "2025-12-01", "end_date": "2025-12-31"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["summary"] == [{"name": "transfer", "total": "33.15", "count": 1}]
    assert data["totalSpent"] == "33.15"


def test_analytics_rejects_inverted_range(app_repository: LedgerRepository) -> None:
    response = client.post(
        "/api/transactions/analytics/by-category",
        json={"user_email": "owner@example.com", "start_date": "2025-12-31", "end_date": "2025-12-01"},
    )
    assert response.status_code == 400


def test_test_connection(mock_gmail: AsyncMock) -> None:
    mock_gmail.get_profile.return_value = {"emailAddress": "owner@example.com", "messagesTotal": 120}

    response = client.post("/api/sync/test-connection", json={"access_token": "t"})

    assert response.json()["email"] == "owner@example.com"
    assert response.json()["totalMessages"] == 120


def test_test_connection_reports_mailbox_errors(mock_gmail: AsyncMock) -> None:
    mock_gmail.get_profile.side_effect = AuthError("expired", 401)

    response = client.post("/api/sync/test-connection", json={"access_token": "t"})

    assert response.status_code == 200
    assert response.json() == {"success": False, "error": "expired"}


def test_fetch_emails_default_search(mock_fetcher: AsyncMock) -> None:
    mock_fetcher.fetch.return_value = [make_message("m1"), make_message("m2", subject="Deposit")]

    response = client.post("/api/sync/fetch-emails", json={"access_token": "t"})

    body = response.json()
    assert body["success"] is True
    assert body["count"] == 2
    assert body["emails"][1]["subject"] == "Deposit"
    mock_fetcher.fetch.assert_awaited_once_with("t", 20)


def test_fetch_emails_by_date_range(mock_fetcher: AsyncMock) -> None:
    mock_fetcher.fetch_by_date_range.return_value = [make_message("m1")]

    response = client.post(
        "/api/sync/fetch-emails",
        json={"access_token": "t", "start_date": "2025-12-01", "end_date": "2025-12-31", "max_results": 5},
    )

    assert response.json()["count"] == 1
    args = mock_fetcher.fetch_by_date_range.await_args.args
    assert [str(arg) for arg in args] == ["t", "2025-12-01", "2025-12-31", "5"]
    mock_fetcher.fetch.assert_not_awaited()


def test_fetch_emails_unread_only(mock_fetcher: AsyncMock) -> None:
    mock_fetcher.fetch_unread.return_value = []

    response = client.post("/api/sync/fetch-emails", json={"access_token": "t", "unread_only": True})

    assert response.json() == {"success": True, "count": 0, "emails": []}
    mock_fetcher.fetch_unread.assert_awaited_once_with("t", 20)


def test_fetch_emails_rejects_half_open_range(mock_fetcher: AsyncMock) -> None:
    response = client.post("/api/sync/fetch-emails", json={"access_token": "t", "start_date": "2025-12-01"})

    assert response.status_code == 400
    mock_fetcher.fetch_by_date_range.assert_not_awaited()


def test_fetch_emails_expired_token_is_401(mock_fetcher: AsyncMock) -> None:
    mock_fetcher.fetch.side_effect = AuthError("Gmail access token expired.", 401)

    response = client.post("/api/sync/fetch-emails", json={"access_token": "t"})

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Gmail access token expired."}
