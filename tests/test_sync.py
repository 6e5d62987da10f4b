from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_message

from inbox_ledger.core.settings import PipelineSettings
from inbox_ledger.errors import AuthError, PersistenceError, SyncError
from inbox_ledger.extractors.llm import LLMExtractor
from inbox_ledger.models import SyncStatus
from inbox_ledger.services.batch import BatchExtractor
from inbox_ledger.services.normalizer import Normalizer
from inbox_ledger.services.sync import SyncService
from inbox_ledger.storage.repository import LedgerRepository

ALERT_JSON = (
    '{{"is_transaction": true, "amount": {amount}, "currency": "CAD", "merchant": "{merchant}", '
    '"category": "dining", "date": "2025-12-22", "transaction_type": "debit", "confidence": 0.9}}'
)


def _llm_client(responses: dict[str, object]) -> MagicMock:
    """Fake extraction client keyed on the message subject found in the prompt."""

    async def create(**kwargs: object) -> SimpleNamespace:
        prompt = str(kwargs["input"])
        for subject, reply in responses.items():
            if f"Subject: {subject}\n" in prompt:
                if isinstance(reply, Exception):
                    raise reply
                return SimpleNamespace(output_text=reply, output=[])
        return SimpleNamespace(output_text='{"is_transaction": false}', output=[])

    client = MagicMock()
    client.responses.create = AsyncMock(side_effect=create)
    return client


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 12, 22, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=2)
        return current


def _service(
    repository: LedgerRepository,
    messages: list,
    responses: dict[str, object],
) -> tuple[SyncService, AsyncMock, MagicMock]:
    fetcher = AsyncMock()
    fetcher.fetch.return_value = messages
    client = _llm_client(responses)
    config = PipelineSettings()

    async def no_pause(delay: float) -> None:
        return None

    batch = BatchExtractor(LLMExtractor(client=client), Normalizer(config), config, sleep=no_pause)
    return SyncService(fetcher, batch, repository, clock=Clock()), fetcher, client


def _messages(count: int) -> list:
    return [make_message(f"msg-{i}", subject=f"Alert {i}") for i in range(1, count + 1)]


@pytest.mark.anyio
async def test_empty_fetch_short_circuits(repository: LedgerRepository) -> None:
    service, _, client = _service(repository, [], {})

    summary = await service.run_sync("token", "owner@example.com")

    assert summary.success
    assert summary.message == "No transaction emails found"
    assert summary.stats.messages_fetched == 0
    client.responses.create.assert_not_awaited()

    owner = await repository.get_owner_by_email("owner@example.com")
    assert owner.last_sync_at is not None
    [run] = await repository.sync_history(owner.id)
    assert run.status == SyncStatus.SUCCESS
    assert run.transactions_found == 0


@pytest.mark.anyio
async def test_one_timeout_in_group_does_not_fail_the_run(repository: LedgerRepository) -> None:
    responses: dict[str, object] = {
        f"Alert {i}": ALERT_JSON.format(amount=10 * i, merchant=f"STORE {chr(64 + i)}") for i in (1, 2, 4, 5)
    }
    responses["Alert 3"] = TimeoutError("request timed out")
    service, _, _ = _service(repository, _messages(5), responses)

    summary = await service.run_sync("token", "owner@example.com", limit=5)

    assert summary.success
    assert summary.stats.transactions_found == 4
    assert summary.stats.transactions_saved == 4
    assert summary.stats.failed == 1
    assert [f["message_id"] for f in summary.failures] == ["msg-3"]
    assert summary.message == "Successfully synced 4 new transactions"

    owner = await repository.get_owner_by_email("owner@example.com")
    [run] = await repository.sync_history(owner.id)
    assert run.status == SyncStatus.SUCCESS
    assert run.error_count == 1
    assert run.error_details[0]["message_id"] == "msg-3"
    assert run.duration_seconds is not None and run.duration_seconds >= 0


@pytest.mark.anyio
async def test_non_transaction_messages_are_counted(repository: LedgerRepository) -> None:
    responses = {"Alert 1": ALERT_JSON.format(amount=12.5, merchant="SHELL")}
    service, _, _ = _service(repository, _messages(3), responses)

    summary = await service.run_sync("token", "owner@example.com")

    assert summary.stats.messages_processed == 3
    assert summary.stats.non_transaction_messages == 2
    assert summary.stats.transactions_found == 1


@pytest.mark.anyio
async def test_second_run_reports_duplicates(repository: LedgerRepository) -> None:
    responses = {f"Alert {i}": ALERT_JSON.format(amount=i, merchant="SHELL") for i in (1, 2, 3)}
    service, _, _ = _service(repository, _messages(3), responses)

    first = await service.run_sync("token", "owner@example.com")
    second = await service.run_sync("token", "owner@example.com")

    assert first.stats.transactions_saved == 3
    assert second.stats.transactions_saved == 0
    assert second.stats.duplicates_skipped == second.stats.transactions_found == 3
    assert second.message == "Successfully synced 0 new transactions"


@pytest.mark.anyio
async def test_multi_transaction_message_gets_indexed_keys(repository: LedgerRepository) -> None:
    statement = (
        '[{"amount": 4.5, "merchant": "TIM HORTONS", "date": "2025-12-20"},'
        ' {"amount": 60, "merchant": "SHELL", "date": "2025-12-21"}]'
    )
    service, _, _ = _service(repository, _messages(1), {"Alert 1": statement})

    summary = await service.run_sync("token", "owner@example.com")

    assert summary.stats.transactions_saved == 2
    owner = await repository.get_owner_by_email("owner@example.com")
    listing = await repository.list_transactions(owner.id)
    assert sorted(tx.source_message_id for tx in listing["transactions"]) == ["msg-1#1", "msg-1#2"]


@pytest.mark.anyio
async def test_persistence_failure_closes_run_as_failed(repository: LedgerRepository) -> None:
    responses: dict[str, object] = {
        "Alert 1": ALERT_JSON.format(amount=5, merchant="SHELL"),
        "Alert 2": TimeoutError("request timed out"),
    }
    service, _, _ = _service(repository, _messages(2), responses)
    repository.save_transactions = AsyncMock(side_effect=PersistenceError("disk full"))
    repository.finalize_sync_run = AsyncMock(wraps=repository.finalize_sync_run)

    with pytest.raises(SyncError) as exc_info:
        await service.run_sync("token", "owner@example.com")

    assert exc_info.value.run_id is not None
    assert repository.finalize_sync_run.await_count == 1
    owner = await repository.get_owner_by_email("owner@example.com")
    [run] = await repository.sync_history(owner.id)
    assert run.id == exc_info.value.run_id
    assert run.status == SyncStatus.FAILED
    assert run.completed_at is not None
    assert run.error_count == 2
    assert run.error_details[0]["phase"] == "persisting"
    assert "disk full" in run.error_details[0]["message"]
    assert [d.get("message_id") for d in run.error_details[1:]] == ["msg-2"]
    assert run.messages_fetched == 2
    assert run.transactions_found == 1
    assert run.transactions_saved == 0
    assert owner.last_sync_at is None


@pytest.mark.anyio
async def test_last_sync_failure_records_run_once_with_saved_counts(repository: LedgerRepository) -> None:
    responses = {f"Alert {i}": ALERT_JSON.format(amount=i, merchant="SHELL") for i in (1, 2)}
    service, _, _ = _service(repository, _messages(2), responses)
    repository.touch_last_sync = AsyncMock(side_effect=PersistenceError("owner row locked"))
    repository.finalize_sync_run = AsyncMock(wraps=repository.finalize_sync_run)

    with pytest.raises(SyncError) as exc_info:
        await service.run_sync("token", "owner@example.com")

    assert repository.finalize_sync_run.await_count == 1
    owner = await repository.get_owner_by_email("owner@example.com")
    [run] = await repository.sync_history(owner.id)
    assert run.id == exc_info.value.run_id
    assert run.status == SyncStatus.FAILED
    assert run.error_details[0]["phase"] == "recording"
    assert run.transactions_found == 2
    assert run.transactions_saved == 2
    assert run.duplicates_skipped == 0
    listing = await repository.list_transactions(owner.id)
    assert len(listing["transactions"]) == 2


@pytest.mark.anyio
async def test_last_sync_failure_after_empty_fetch_records_run_once(repository: LedgerRepository) -> None:
    service, _, _ = _service(repository, [], {})
    repository.touch_last_sync = AsyncMock(side_effect=PersistenceError("owner row locked"))
    repository.finalize_sync_run = AsyncMock(wraps=repository.finalize_sync_run)

    with pytest.raises(SyncError):
        await service.run_sync("token", "owner@example.com")

    assert repository.finalize_sync_run.await_count == 1
    owner = await repository.get_owner_by_email("owner@example.com")
    [run] = await repository.sync_history(owner.id)
    assert run.status == SyncStatus.FAILED
    assert run.error_details[0]["phase"] == "recording"


@pytest.mark.anyio
async def test_auth_failure_during_fetch_is_wrapped(repository: LedgerRepository) -> None:
    service, fetcher, _ = _service(repository, [], {})
    fetcher.fetch.side_effect = AuthError("Gmail access token expired.", 401)

    with pytest.raises(SyncError) as exc_info:
        await service.run_sync("token", "owner@example.com")

    assert isinstance(exc_info.value.__cause__, AuthError)
    owner = await repository.get_owner_by_email("owner@example.com")
    [run] = await repository.sync_history(owner.id)
    assert run.status == SyncStatus.FAILED
    assert run.error_details[0]["phase"] == "fetching"


@pytest.mark.anyio
async def test_run_cannot_open_raises_without_run_id(repository: LedgerRepository) -> None:
    service, _, _ = _service(repository, [], {})
    repository.ensure_owner = AsyncMock(side_effect=PersistenceError("db down"))

    with pytest.raises(SyncError) as exc_info:
        await service.run_sync("token", "owner@example.com")

    assert exc_info.value.run_id is None
