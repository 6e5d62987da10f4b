import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from inbox_ledger.core.settings import PipelineSettings
from inbox_ledger.domain.extraction import ExtractionFailed, Many, NotATransaction, One, RawExtraction, keyed_guesses
from inbox_ledger.extractors.base import Extractor
from inbox_ledger.logger import get_logger
from inbox_ledger.models import CandidateMessage, Rejected, Transaction
from inbox_ledger.services.normalizer import Normalizer

logger = get_logger(__name__)


@dataclass
class BatchResult:
    total_messages: int = 0
    transactions: list[Transaction] = field(default_factory=list)
    non_transaction: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    rejected: list[Rejected] = field(default_factory=list)

    @property
    def total_found(self) -> int:
        return len(self.transactions)


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchExtractor:
    """Runs extraction in fixed-size concurrent groups, one group at a time."""

    def __init__(
        self,
        extractor: Extractor,
        normalizer: Normalizer,
        config: PipelineSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.extractor = extractor
        self.normalizer = normalizer
        self.config = config or PipelineSettings()
        self._sleep = sleep

    async def _extract_one(self, message: CandidateMessage) -> RawExtraction:
        try:
            return await self.extractor.extract(message)
        except Exception as exc:
            # Extractors are not supposed to raise; keep the group alive if one does.
            logger.error("[EXTRACT] Extractor raised for message %s: %r", message.id, exc)
            return ExtractionFailed(message_id=message.id, reason=f"{type(exc).__name__}: {exc}")

    async def extract_all(self, messages: Sequence[CandidateMessage], owner_id: int) -> BatchResult:
        result = BatchResult(total_messages=len(messages))
        groups = chunked(messages, self.config.batch_size)

        for index, group in enumerate(groups, start=1):
            logger.info(
                "[EXTRACT] Group %d/%d: extracting %d messages.",
                index,
                len(groups),
                len(group),
            )
            outcomes = await asyncio.gather(*(self._extract_one(message) for message in group))
            for message, outcome in zip(group, outcomes):
                self._collect(result, message, outcome, owner_id)

            if index < len(groups) and self.config.batch_pause_seconds > 0:
                await self._sleep(self.config.batch_pause_seconds)

        logger.info(
            "[EXTRACT] Done: %d transactions, %d non-transaction, %d failed, %d rejected from %d messages.",
            result.total_found,
            len(result.non_transaction),
            len(result.failed),
            len(result.rejected),
            result.total_messages,
        )
        return result

    def _collect(
        self,
        result: BatchResult,
        message: CandidateMessage,
        outcome: RawExtraction,
        owner_id: int,
    ) -> None:
        match outcome:
            case NotATransaction():
                result.non_transaction.append(message.id)
            case ExtractionFailed(reason=reason):
                result.failed.append({"message_id": message.id, "error": reason})
            case One() | Many():
                for key, guess in keyed_guesses(outcome):
                    normalized = self.normalizer.normalize(guess, message, owner_id, source_message_id=key)
                    if isinstance(normalized, Rejected):
                        result.rejected.append(normalized)
                    else:
                        result.transactions.append(normalized)
            case _:
                raise TypeError(f"Unexpected extraction outcome: {outcome!r}")
