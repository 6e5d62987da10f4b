from datetime import date
from decimal import Decimal

from inbox_ledger.models import Category, StoredTransaction, TransactionType
from inbox_ledger.services.analytics import spending_by_category, transaction_stats


def _stored(tx_id: int, amount: str, category: Category, tx_type: TransactionType, day: date) -> StoredTransaction:
    value = Decimal(amount)
    return StoredTransaction(
        id=tx_id,
        owner_id=1,
        source_message_id=f"m{tx_id}",
        amount=value,
        currency="CAD",
        original_amount=value,
        original_currency="CAD",
        display_amount=value,
        display_currency="CAD",
        merchant="Store",
        category=category,
        transaction_type=tx_type,
        date=day,
        confidence=0.9,
    )


TRANSACTIONS = [
    _stored(1, "40.00", Category.GROCERIES, TransactionType.DEBIT, date(2025, 12, 3)),
    _stored(2, "12.50", Category.DINING, TransactionType.DEBIT, date(2025, 12, 5)),
    _stored(3, "7.50", Category.GROCERIES, TransactionType.DEBIT, date(2025, 11, 28)),
    _stored(4, "1000.00", Category.TRANSFER, TransactionType.CREDIT, date(2025, 12, 1)),
]


def test_spending_by_category() -> None:
    result = spending_by_category(TRANSACTIONS)

    assert [item["name"] for item in result["summary"]] == ["groceries", "dining", "transfer"]
    assert result["summary"][0] == {"name": "groceries", "total": Decimal("47.50"), "count": 2}
    assert result["summary"][2]["count"] == 1
    assert result["total_spent"] == Decimal("60.00")
    assert result["total_income"] == Decimal("1000.00")
    assert result["net_spending"] == Decimal("-940.00")


def test_transaction_stats() -> None:
    stats = transaction_stats(TRANSACTIONS, today=date(2025, 12, 20))

    assert stats["total_transactions"] == 4
    assert stats["largest_transaction"] == Decimal("40.00")
    assert stats["smallest_transaction"] == Decimal("7.50")
    assert stats["average_transaction"] == Decimal("15.00")
    assert stats["transactions_this_month"] == 3
    assert stats["spending_this_month"] == Decimal("52.50")
    assert stats["net_balance"] == Decimal("940.00")


def test_transaction_stats_empty() -> None:
    stats = transaction_stats([], today=date(2025, 12, 20))
    assert stats["total_transactions"] == 0
    assert stats["average_transaction"] == Decimal("0")
