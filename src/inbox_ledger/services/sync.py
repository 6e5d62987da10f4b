from collections.abc import Callable
from datetime import datetime
from enum import Enum
from time import perf_counter
from typing import Any

from inbox_ledger.core.settings import DEFAULT_MAX_MESSAGES
from inbox_ledger.domain.timefmt import format_duration, utcnow
from inbox_ledger.errors import SyncError
from inbox_ledger.logger import get_logger
from inbox_ledger.models import SyncRun, SyncStats, SyncStatus, SyncSummary
from inbox_ledger.services.batch import BatchExtractor, BatchResult
from inbox_ledger.services.fetcher import MessageFetcher
from inbox_ledger.storage.repository import LedgerRepository, SaveResult

logger = get_logger(__name__)


class SyncPhase(str, Enum):
    STARTED = "started"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    RECORDING = "recording"
    FINALIZED = "finalized"


class SyncService:
    """Drives one sync run: fetch, extract, normalize, persist, record."""

    def __init__(
        self,
        fetcher: MessageFetcher,
        batch: BatchExtractor,
        repository: LedgerRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.fetcher = fetcher
        self.batch = batch
        self.repository = repository
        self._clock = clock

    @staticmethod
    def _enter(run: SyncRun, phase: SyncPhase) -> SyncPhase:
        logger.info("[SYNC] Run %s -> %s", run.id, phase.value)
        return phase

    async def run_sync(self, credential: str, owner_email: str, limit: int = DEFAULT_MAX_MESSAGES) -> SyncSummary:
        started_at = self._clock()
        timer = perf_counter()
        logger.info("[SYNC] Starting sync for %s (max %d messages).", owner_email, limit)

        # Bookkeeping failures before the run exists cannot be logged to it.
        try:
            owner = await self.repository.ensure_owner(owner_email)
            run = await self.repository.create_sync_run(owner.id, started_at)
        except Exception as exc:
            logger.error("[SYNC] Could not open sync run for %s: %r", owner_email, exc)
            raise SyncError(f"Could not start sync: {exc}") from exc

        phase = self._enter(run, SyncPhase.STARTED)
        messages_fetched = 0
        batch_result: BatchResult | None = None
        saved: SaveResult | None = None
        try:
            phase = self._enter(run, SyncPhase.FETCHING)
            messages = await self.fetcher.fetch(credential, limit)
            messages_fetched = len(messages)

            if not messages:
                phase = self._enter(run, SyncPhase.RECORDING)
                await self.repository.touch_last_sync(owner.id, self._clock())
                await self.repository.finalize_sync_run(
                    run,
                    started_at=started_at,
                    completed_at=self._clock(),
                    status=SyncStatus.SUCCESS,
                )
                self._enter(run, SyncPhase.FINALIZED)
                return SyncSummary(
                    success=True,
                    message="No transaction emails found",
                    run_id=run.id,
                    stats=SyncStats(processing_time_seconds=round(perf_counter() - timer, 2)),
                )

            phase = self._enter(run, SyncPhase.EXTRACTING)
            batch_result = await self.batch.extract_all(messages, owner.id)

            phase = self._enter(run, SyncPhase.PERSISTING)
            saved = await self.repository.save_transactions(owner.id, batch_result.transactions)

            # The run log is written last so that a failure before it is the
            # only path into _close_failed.
            phase = self._enter(run, SyncPhase.RECORDING)
            await self.repository.touch_last_sync(owner.id, self._clock())
            await self.repository.finalize_sync_run(
                run,
                started_at=started_at,
                completed_at=self._clock(),
                status=SyncStatus.SUCCESS,
                messages_fetched=messages_fetched,
                messages_processed=batch_result.total_messages,
                transactions_found=batch_result.total_found,
                transactions_saved=saved.saved,
                duplicates_skipped=saved.duplicates,
                error_count=len(batch_result.failed),
                error_details=batch_result.failed or None,
            )
        except Exception as exc:
            await self._close_failed(run, started_at, phase, exc, messages_fetched, batch_result, saved)
            raise SyncError(f"Sync failed while {phase.value}: {exc}", run_id=run.id) from exc

        self._enter(run, SyncPhase.FINALIZED)
        elapsed = perf_counter() - timer
        logger.info(
            "[SYNC] Run %s complete in %s: %d saved, %d duplicates, %d failed.",
            run.id,
            format_duration(elapsed),
            saved.saved,
            saved.duplicates,
            len(batch_result.failed),
        )
        return self._summary(run, messages_fetched, batch_result, saved, elapsed)

    async def _close_failed(
        self,
        run: SyncRun,
        started_at: datetime,
        phase: SyncPhase,
        exc: Exception,
        messages_fetched: int,
        batch_result: BatchResult | None,
        saved: SaveResult | None,
    ) -> None:
        completed_at = self._clock()
        logger.error("[SYNC] Run %s failed while %s: %r", run.id, phase.value, exc)
        details: list[dict[str, Any]] = [{
            "message": str(exc) or type(exc).__name__,
            "phase": phase.value,
            "timestamp": completed_at.isoformat(),
        }]
        try:
            await self.repository.finalize_sync_run(
                run,
                started_at=started_at,
                completed_at=completed_at,
                status=SyncStatus.FAILED,
                messages_fetched=messages_fetched,
                messages_processed=batch_result.total_messages if batch_result else 0,
                transactions_found=batch_result.total_found if batch_result else 0,
                transactions_saved=saved.saved if saved else 0,
                duplicates_skipped=saved.duplicates if saved else 0,
                error_count=1 + (len(batch_result.failed) if batch_result else 0),
                error_details=details + (batch_result.failed if batch_result else []),
            )
        except Exception as log_exc:
            logger.exception("[SYNC] Could not record failure of run %s: %r", run.id, log_exc)
        self._enter(run, SyncPhase.FINALIZED)

    @staticmethod
    def _summary(
        run: SyncRun,
        messages_fetched: int,
        batch_result: BatchResult,
        saved: SaveResult,
        elapsed: float,
    ) -> SyncSummary:
        return SyncSummary(
            success=True,
            message=f"Successfully synced {saved.saved} new transactions",
            run_id=run.id,
            stats=SyncStats(
                messages_fetched=messages_fetched,
                messages_processed=batch_result.total_messages,
                transactions_found=batch_result.total_found,
                transactions_saved=saved.saved,
                duplicates_skipped=saved.duplicates,
                non_transaction_messages=len(batch_result.non_transaction),
                failed=len(batch_result.failed),
                processing_time_seconds=round(elapsed, 2),
            ),
            failures=batch_result.failed,
        )
