from fastapi import HTTPException, Request

from inbox_ledger.integration.gmail import GmailClient
from inbox_ledger.services.fetcher import MessageFetcher
from inbox_ledger.services.sync import SyncService
from inbox_ledger.storage.repository import LedgerRepository


def get_repository(request: Request) -> LedgerRepository:
    repository = getattr(request.app.state, "repository", None)
    if not repository:
        raise HTTPException(status_code=500, detail="Store not initialized")
    return repository


def get_sync_service(request: Request) -> SyncService:
    service = getattr(request.app.state, "sync_service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Sync disabled: extraction service not configured")
    return service


def get_gmail(request: Request) -> GmailClient:
    gmail = getattr(request.app.state, "gmail", None)
    if not gmail:
        raise HTTPException(status_code=500, detail="Mailbox client not initialized")
    return gmail


def get_fetcher(request: Request) -> MessageFetcher:
    fetcher = getattr(request.app.state, "fetcher", None)
    if not fetcher:
        raise HTTPException(status_code=500, detail="Mailbox client not initialized")
    return fetcher
