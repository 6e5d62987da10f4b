from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Category(str, Enum):
    GROCERIES = "groceries"
    DINING = "dining"
    TRANSPORT = "transport"
    SHOPPING = "shopping"
    BILLS = "bills"
    ENTERTAINMENT = "entertainment"
    HEALTH = "health"
    TRANSFER = "transfer"
    OTHER = "other"


class TransactionType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"
    PAYMENT = "payment"
    REFUND = "refund"
    TRANSFER = "transfer"


class SyncStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class CandidateMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sender: str = ""
    subject: str = ""
    date: str = ""  # source-native header value
    body: str = ""


class TransactionGuess(BaseModel):
    """One transaction as reported by the extraction service. Nothing here is trusted."""
    model_config = ConfigDict(extra="ignore")

    amount: Any = None
    currency: str | None = None
    merchant: str | None = None
    category: str | None = None
    date: str | None = None
    time: str | None = None
    card_last4: str | None = None
    account_last4: str | None = None
    institution: str | None = None
    transaction_type: str | None = None
    description: str | None = None
    location: str | None = None
    confidence: Any = None

    @field_validator(
        "currency", "merchant", "category", "date", "time", "card_last4", "account_last4",
        "institution", "transaction_type", "description", "location",
        mode="before",
    )
    @classmethod
    def _stringify(cls, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        return None


class Transaction(BaseModel):
    owner_id: int
    source_message_id: str
    source_subject: str = ""
    source_date: datetime | None = None

    amount: Decimal
    currency: str
    original_amount: Decimal
    original_currency: str
    display_amount: Decimal
    display_currency: str

    merchant: str
    category: Category = Category.OTHER
    transaction_type: TransactionType = TransactionType.DEBIT
    date: date
    time: str | None = None
    card_last4: str | None = None
    account_last4: str | None = None
    institution: str = "Unknown"
    description: str = ""
    location: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)


class StoredTransaction(Transaction):
    id: int
    created_at: datetime | None = None


class Rejected(BaseModel):
    message_id: str
    reason: str


class Owner(BaseModel):
    id: int
    email: str
    last_sync_at: datetime | None = None


class SyncRun(BaseModel):
    id: int
    owner_id: int
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: int | None = None
    messages_fetched: int = 0
    messages_processed: int = 0
    transactions_found: int = 0
    transactions_saved: int = 0
    duplicates_skipped: int = 0
    error_count: int = 0
    status: SyncStatus = SyncStatus.RUNNING
    error_details: list[dict[str, Any]] | None = None


class SyncStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages_fetched: int = Field(0, serialization_alias="messagesFetched")
    messages_processed: int = Field(0, serialization_alias="messagesProcessed")
    transactions_found: int = Field(0, serialization_alias="transactionsFound")
    transactions_saved: int = Field(0, serialization_alias="transactionsSaved")
    duplicates_skipped: int = Field(0, serialization_alias="duplicatesSkipped")
    non_transaction_messages: int = Field(0, serialization_alias="nonTransactionMessages")
    failed: int = Field(0, serialization_alias="failed")
    processing_time_seconds: float = Field(0.0, serialization_alias="processingTimeSeconds")


class SyncSummary(BaseModel):
    success: bool
    message: str
    run_id: int | None = None
    stats: SyncStats
    failures: list[dict[str, str]] = Field(default_factory=list)
