from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Any

from inbox_ledger.models import Category, StoredTransaction, TransactionType

ZERO = Decimal("0")


def spending_by_category(transactions: Iterable[StoredTransaction]) -> dict[str, Any]:
    """Group display amounts by category.

    Debits add to the category total and to total spent; credits add to total
    income. Every transaction counts towards its category.
    """
    summary: dict[str, dict[str, Any]] = {}
    total_spent = ZERO
    total_income = ZERO

    for tx in transactions:
        name = tx.category.value if isinstance(tx.category, Category) else str(tx.category)
        bucket = summary.setdefault(name, {"name": name, "total": ZERO, "count": 0})
        if tx.transaction_type == TransactionType.DEBIT:
            bucket["total"] += tx.display_amount
            total_spent += tx.display_amount
        elif tx.transaction_type == TransactionType.CREDIT:
            total_income += tx.display_amount
        bucket["count"] += 1

    return {
        "summary": sorted(summary.values(), key=lambda item: item["total"], reverse=True),
        "total_spent": total_spent,
        "total_income": total_income,
        "net_spending": total_spent - total_income,
    }


def transaction_stats(transactions: Iterable[StoredTransaction], today: date) -> dict[str, Any]:
    rows = list(transactions)
    total_spent = ZERO
    total_income = ZERO
    largest: Decimal | None = None
    smallest: Decimal | None = None
    this_month_count = 0
    this_month_spending = ZERO

    for tx in rows:
        amount = tx.display_amount
        is_debit = tx.transaction_type == TransactionType.DEBIT
        if is_debit:
            total_spent += amount
            largest = amount if largest is None else max(largest, amount)
            smallest = amount if smallest is None else min(smallest, amount)
        elif tx.transaction_type == TransactionType.CREDIT:
            total_income += amount

        if (tx.date.year, tx.date.month) == (today.year, today.month):
            this_month_count += 1
            if is_debit:
                this_month_spending += amount

    average = (total_spent / len(rows)).quantize(Decimal("0.01")) if rows else ZERO
    return {
        "total_transactions": len(rows),
        "total_spent": total_spent,
        "total_income": total_income,
        "average_transaction": average,
        "largest_transaction": largest or ZERO,
        "smallest_transaction": smallest or ZERO,
        "transactions_this_month": this_month_count,
        "spending_this_month": this_month_spending,
        "net_balance": total_income - total_spent,
    }
