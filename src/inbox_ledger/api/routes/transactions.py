from datetime import date
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from inbox_ledger.api.dependencies import get_repository
from inbox_ledger.api.schemas import DateRangeRequest, ListTransactionsRequest, OwnerRequest
from inbox_ledger.models import Owner
from inbox_ledger.services.analytics import spending_by_category, transaction_stats
from inbox_ledger.storage.repository import LedgerRepository, TransactionFilter

router = APIRouter(prefix="/api/transactions")


async def _require_owner(repository: LedgerRepository, email: str) -> Owner:
    owner = await repository.get_owner_by_email(email)
    if owner is None:
        raise HTTPException(status_code=404, detail="User not found")
    return owner


@router.post("/list")
async def list_transactions(
    req: ListTransactionsRequest,
    repository: Annotated[LedgerRepository, Depends(get_repository)],
) -> dict[str, Any]:
    owner = await _require_owner(repository, req.user_email)
    filters = req.filters
    criteria = TransactionFilter(
        category=filters.category,
        institution=filters.institution,
        start_date=filters.start_date,
        end_date=filters.end_date,
        min_amount=filters.min_amount,
        max_amount=filters.max_amount,
        transaction_type=filters.transaction_type,
        search=filters.search,
        sort_by=filters.sort_by,
        sort_ascending=filters.sort_order.lower() == "asc",
    )
    result = await repository.list_transactions(owner.id, criteria, page=req.page, limit=req.limit)
    return {
        "success": True,
        "transactions": [tx.model_dump(mode="json") for tx in result["transactions"]],
        "pagination": result["pagination"],
    }


@router.post("/analytics/by-category")
async def analytics_by_category(
    req: DateRangeRequest,
    repository: Annotated[LedgerRepository, Depends(get_repository)],
) -> dict[str, Any]:
    if req.end_date < req.start_date:
        raise HTTPException(status_code=400, detail="end_date is before start_date")
    owner = await _require_owner(repository, req.user_email)
    rows = await repository.all_transactions(owner.id, req.start_date, req.end_date)
    summary = spending_by_category(rows)
    return {
        "success": True,
        "summary": [
            {"name": item["name"], "total": str(item["total"]), "count": item["count"]}
            for item in summary["summary"]
        ],
        "totalSpent": str(summary["total_spent"]),
        "totalIncome": str(summary["total_income"]),
        "netSpending": str(summary["net_spending"]),
    }


@router.post("/stats")
async def stats(
    req: OwnerRequest,
    repository: Annotated[LedgerRepository, Depends(get_repository)],
) -> dict[str, Any]:
    owner = await _require_owner(repository, req.user_email)
    rows = await repository.all_transactions(owner.id)
    values = transaction_stats(rows, today=date.today())
    return {
        "success": True,
        "stats": {key: str(value) if not isinstance(value, int) else value for key, value in values.items()},
    }


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: int,
    user_email: str,
    repository: Annotated[LedgerRepository, Depends(get_repository)],
) -> dict[str, Any]:
    owner = await _require_owner(repository, user_email)
    transaction = await repository.get_transaction(owner.id, transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"success": True, "transaction": transaction.model_dump(mode="json")}
