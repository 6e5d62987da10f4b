import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from inbox_ledger.domain.timefmt import utcnow, whole_seconds_between
from inbox_ledger.logger import get_logger
from inbox_ledger.models import Owner, StoredTransaction, SyncRun, SyncStatus, Transaction
from inbox_ledger.storage.database import Filter, Page, Sort, Store

logger = get_logger(__name__)

TRANSACTION_CONFLICT_KEY = ("owner_id", "source_message_id")

SORTABLE_TRANSACTION_FIELDS = frozenset({
    "date",
    "display_amount",
    "amount",
    "merchant",
    "category",
    "institution",
    "created_at",
})


@dataclass(frozen=True)
class SaveResult:
    saved: int
    duplicates: int


@dataclass(frozen=True)
class TransactionFilter:
    category: str | None = None
    institution: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    transaction_type: str | None = None
    search: str | None = None
    sort_by: str = "date"
    sort_ascending: bool = False

    def to_filters(self, owner_id: int) -> list[Filter]:
        filters = [Filter("owner_id", "eq", owner_id)]
        if self.category:
            filters.append(Filter("category", "eq", self.category))
        if self.institution:
            filters.append(Filter("institution", "eq", self.institution))
        if self.start_date:
            filters.append(Filter("date", "gte", self.start_date))
        if self.end_date:
            filters.append(Filter("date", "lte", self.end_date))
        if self.min_amount is not None:
            filters.append(Filter("display_amount", "gte", self.min_amount))
        if self.max_amount is not None:
            filters.append(Filter("display_amount", "lte", self.max_amount))
        if self.transaction_type:
            filters.append(Filter("transaction_type", "eq", self.transaction_type))
        if self.search:
            filters.append(Filter(("merchant", "description"), "ilike_any", self.search))
        return filters


def _transaction_row(owner_id: int, transaction: Transaction, created_at: datetime) -> dict[str, Any]:
    row = transaction.model_dump(mode="python")
    row["owner_id"] = owner_id
    row["category"] = transaction.category.value
    row["transaction_type"] = transaction.transaction_type.value
    row["created_at"] = created_at
    return row


class LedgerRepository:
    """Persistence and dedup on top of a :class:`Store`.

    Every method is a coroutine; the blocking store runs in a worker thread.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    async def save_transactions(self, owner_id: int, transactions: Sequence[Transaction]) -> SaveResult:
        if not transactions:
            return SaveResult(saved=0, duplicates=0)

        now = utcnow()
        rows = [_transaction_row(owner_id, tx, now) for tx in transactions]
        inserted = await asyncio.to_thread(
            self.store.upsert,
            "transactions",
            rows,
            TRANSACTION_CONFLICT_KEY,
            True,
        )
        saved = len(inserted)
        result = SaveResult(saved=saved, duplicates=len(rows) - saved)
        logger.info(
            "[STORE] Owner %s: saved %d transactions, skipped %d duplicates.",
            owner_id,
            result.saved,
            result.duplicates,
        )
        return result

    async def create_sync_run(self, owner_id: int, started_at: datetime, sync_type: str = "manual") -> SyncRun:
        row = await asyncio.to_thread(
            self.store.insert_one,
            "sync_runs",
            {
                "owner_id": owner_id,
                "sync_type": sync_type,
                "started_at": started_at,
                "status": SyncStatus.RUNNING.value,
            },
        )
        logger.debug("[STORE] Created sync run %s for owner %s.", row["id"], owner_id)
        return SyncRun(id=row["id"], owner_id=owner_id, started_at=started_at)

    async def finalize_sync_run(
        self,
        run: SyncRun,
        *,
        started_at: datetime,
        completed_at: datetime,
        status: SyncStatus,
        messages_fetched: int = 0,
        messages_processed: int = 0,
        transactions_found: int = 0,
        transactions_saved: int = 0,
        duplicates_skipped: int = 0,
        error_count: int = 0,
        error_details: list[dict[str, Any]] | None = None,
    ) -> SyncRun:
        values = {
            "completed_at": completed_at,
            "duration_seconds": whole_seconds_between(started_at, completed_at),
            "messages_fetched": messages_fetched,
            "messages_processed": messages_processed,
            "transactions_found": transactions_found,
            "transactions_saved": transactions_saved,
            "duplicates_skipped": duplicates_skipped,
            "error_count": error_count,
            "status": status.value,
            "error_details": error_details,
        }
        await asyncio.to_thread(self.store.update_by_id, "sync_runs", run.id, values)
        return run.model_copy(update={**values, "status": status})

    async def sync_history(self, owner_id: int, limit: int = 10) -> list[SyncRun]:
        rows = await asyncio.to_thread(
            self.store.select,
            "sync_runs",
            [Filter("owner_id", "eq", owner_id)],
            Sort("started_at", ascending=False),
            Page(1, limit),
        )
        return [SyncRun.model_validate(row) for row in rows]

    async def get_owner_by_email(self, email: str) -> Owner | None:
        rows = await asyncio.to_thread(
            self.store.select,
            "owners",
            [Filter("email", "eq", email.strip().lower())],
        )
        return Owner.model_validate(rows[0]) if rows else None

    async def ensure_owner(self, email: str) -> Owner:
        normalized = email.strip().lower()
        await asyncio.to_thread(
            self.store.upsert,
            "owners",
            [{"email": normalized, "created_at": utcnow()}],
            ("email",),
            True,
        )
        owner = await self.get_owner_by_email(normalized)
        if owner is None:
            raise LookupError(f"Owner {normalized} missing after registration")
        return owner

    async def touch_last_sync(self, owner_id: int, at: datetime) -> None:
        await asyncio.to_thread(self.store.update_by_id, "owners", owner_id, {"last_sync_at": at})

    async def list_transactions(
        self,
        owner_id: int,
        criteria: TransactionFilter | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict[str, Any]:
        criteria = criteria or TransactionFilter()
        sort_by = criteria.sort_by if criteria.sort_by in SORTABLE_TRANSACTION_FIELDS else "date"
        filters = criteria.to_filters(owner_id)
        rows = await asyncio.to_thread(
            self.store.select,
            "transactions",
            filters,
            Sort(sort_by, ascending=criteria.sort_ascending),
            Page(page, limit),
        )
        total = await asyncio.to_thread(self.store.count, "transactions", filters)
        return {
            "transactions": [StoredTransaction.model_validate(row) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": -(-total // limit) if limit else 0,
            },
        }

    async def all_transactions(
        self,
        owner_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[StoredTransaction]:
        criteria = TransactionFilter(start_date=start_date, end_date=end_date)
        rows = await asyncio.to_thread(self.store.select, "transactions", criteria.to_filters(owner_id))
        return [StoredTransaction.model_validate(row) for row in rows]

    async def get_transaction(self, owner_id: int, transaction_id: int) -> StoredTransaction | None:
        rows = await asyncio.to_thread(
            self.store.select,
            "transactions",
            [Filter("owner_id", "eq", owner_id), Filter("id", "eq", transaction_id)],
        )
        return StoredTransaction.model_validate(rows[0]) if rows else None
