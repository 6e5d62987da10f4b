import asyncio

import pytest
from conftest import make_guess, make_message

from inbox_ledger.core.settings import PipelineSettings
from inbox_ledger.domain.extraction import ExtractionFailed, Many, NotATransaction, One, RawExtraction
from inbox_ledger.extractors.base import Extractor
from inbox_ledger.models import CandidateMessage
from inbox_ledger.services.batch import BatchExtractor, chunked
from inbox_ledger.services.normalizer import Normalizer


class ScriptedExtractor(Extractor):
    """Returns canned outcomes by message id and tracks concurrency."""

    def __init__(self, outcomes: dict[str, RawExtraction] | None = None, delay: float = 0.01) -> None:
        self.outcomes = outcomes or {}
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls: list[str] = []

    async def extract(self, message: CandidateMessage) -> RawExtraction:
        self.calls.append(message.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return self.outcomes.get(message.id) or One(message_id=message.id, guess=make_guess())
        finally:
            self.in_flight -= 1


def _batch(extractor: Extractor, sleeps: list[float], **config: object) -> BatchExtractor:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    settings = PipelineSettings(**config)
    return BatchExtractor(extractor, Normalizer(settings), settings, sleep=fake_sleep)


def test_chunked() -> None:
    assert chunked([1, 2, 3, 4, 5, 6, 7], 3) == [[1, 2, 3], [4, 5, 6], [7]]
    assert chunked([], 5) == []


@pytest.mark.anyio
async def test_groups_run_sequentially_with_bounded_concurrency() -> None:
    extractor = ScriptedExtractor()
    sleeps: list[float] = []
    messages = [make_message(f"m{i}") for i in range(12)]

    result = await _batch(extractor, sleeps, batch_size=5).extract_all(messages, owner_id=1)

    assert extractor.max_in_flight == 5
    assert result.total_messages == 12
    assert result.total_found == 12
    # Pause between the three groups, never after the last one.
    assert sleeps == [0.1, 0.1]


@pytest.mark.anyio
async def test_outcomes_are_sorted_into_buckets() -> None:
    extractor = ScriptedExtractor(
        {
            "news": NotATransaction(message_id="news"),
            "broken": ExtractionFailed(message_id="broken", reason="TimeoutError: slow"),
            "bad-amount": One(message_id="bad-amount", guess=make_guess(amount=0)),
            "statement": Many(
                message_id="statement",
                guesses=(make_guess(merchant="SHELL"), make_guess(merchant="METRO")),
            ),
        }
    )
    messages = [make_message(i) for i in ("ok", "news", "broken", "bad-amount", "statement")]

    result = await _batch(extractor, []).extract_all(messages, owner_id=3)

    assert result.non_transaction == ["news"]
    assert result.failed == [{"message_id": "broken", "error": "TimeoutError: slow"}]
    assert [r.message_id for r in result.rejected] == ["bad-amount"]
    assert [tx.source_message_id for tx in result.transactions] == ["ok", "statement#1", "statement#2"]
    assert all(tx.owner_id == 3 for tx in result.transactions)


@pytest.mark.anyio
async def test_raising_extractor_does_not_abort_group() -> None:
    class Flaky(ScriptedExtractor):
        async def extract(self, message: CandidateMessage) -> RawExtraction:
            if message.id == "m2":
                raise RuntimeError("unexpected")
            return await super().extract(message)

    result = await _batch(Flaky(), []).extract_all([make_message(f"m{i}") for i in range(4)], owner_id=1)

    assert result.total_found == 3
    assert result.failed == [{"message_id": "m2", "error": "RuntimeError: unexpected"}]
