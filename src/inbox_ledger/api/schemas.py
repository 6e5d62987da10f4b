from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from inbox_ledger.core.settings import DEFAULT_MAX_MESSAGES


class ConnectionRequest(BaseModel):
    access_token: str = Field(min_length=1)


class FullSyncRequest(BaseModel):
    access_token: str = Field(min_length=1)
    user_email: str = Field(min_length=3)
    max_emails: int = Field(DEFAULT_MAX_MESSAGES, ge=1, le=500)


class OwnerRequest(BaseModel):
    user_email: str = Field(min_length=3)


class TransactionFilters(BaseModel):
    category: str | None = None
    institution: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    transaction_type: str | None = None
    search: str | None = None
    sort_by: str = "date"
    sort_order: str = "desc"


class ListTransactionsRequest(OwnerRequest):
    filters: TransactionFilters = Field(default_factory=TransactionFilters)
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=500)


class DateRangeRequest(OwnerRequest):
    start_date: date
    end_date: date


class FetchEmailsRequest(BaseModel):
    access_token: str = Field(min_length=1)
    max_results: int = Field(20, ge=1, le=500)
    start_date: date | None = None
    end_date: date | None = None
    unread_only: bool = False
