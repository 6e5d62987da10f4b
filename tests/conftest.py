from collections.abc import Generator

import pytest

from inbox_ledger.models import CandidateMessage, TransactionGuess
from inbox_ledger.storage.database import Store
from inbox_ledger.storage.repository import LedgerRepository


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store(tmp_path) -> Generator[Store, None, None]:
    store = Store(f"sqlite:///{tmp_path / 'ledger.db'}")
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture
def repository(store: Store) -> LedgerRepository:
    return LedgerRepository(store)


def make_message(message_id: str = "msg-1", **overrides: str) -> CandidateMessage:
    fields = {
        "sender": "CIBC Alerts <alerts@cibc.com>",
        "subject": "Transaction alert",
        "date": "Mon, 22 Dec 2025 10:15:00 +0000",
        "body": "Your card ending 5286 was charged $33.15 at REMITLY on Dec 22, 2025",
    }
    fields.update(overrides)
    return CandidateMessage(id=message_id, **fields)


def make_guess(**overrides: object) -> TransactionGuess:
    fields: dict[str, object] = {
        "amount": 33.15,
        "currency": "CAD",
        "merchant": "REMITLY",
        "category": "transfer",
        "date": "2025-12-22",
        "card_last4": "5286",
        "transaction_type": "debit",
        "description": "Card ending 5286 charged at REMITLY",
        "confidence": 0.95,
    }
    fields.update(overrides)
    return TransactionGuess.model_validate(fields)
