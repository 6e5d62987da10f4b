from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from inbox_ledger.api.dependencies import get_fetcher, get_gmail, get_repository, get_sync_service
from inbox_ledger.api.schemas import ConnectionRequest, FetchEmailsRequest, FullSyncRequest, OwnerRequest
from inbox_ledger.errors import AuthError, MailboxError, SyncError
from inbox_ledger.integration.gmail import GmailClient
from inbox_ledger.logger import get_logger
from inbox_ledger.services.fetcher import MessageFetcher
from inbox_ledger.services.sync import SyncService
from inbox_ledger.storage.repository import LedgerRepository

logger = get_logger(__name__)

router = APIRouter(prefix="/api/sync")


@router.post("/full-sync", response_model=None)
async def full_sync(
    req: FullSyncRequest,
    service: Annotated[SyncService, Depends(get_sync_service)],
) -> dict[str, Any] | JSONResponse:
    try:
        summary = await service.run_sync(req.access_token, req.user_email, req.max_emails)
    except SyncError as exc:
        status_code = 401 if isinstance(exc.__cause__, AuthError) else 500
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "error": str(exc), "run_id": exc.run_id},
        )
    return summary.model_dump(mode="json", by_alias=True)


@router.post("/status")
async def sync_status(
    req: OwnerRequest,
    repository: Annotated[LedgerRepository, Depends(get_repository)],
) -> dict[str, Any]:
    owner = await repository.get_owner_by_email(req.user_email)
    if owner is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "success": True,
        "lastSync": owner.last_sync_at.isoformat() if owner.last_sync_at else None,
    }


@router.get("/history")
async def sync_history(
    user_email: str,
    repository: Annotated[LedgerRepository, Depends(get_repository)],
    limit: int = 10,
) -> dict[str, Any]:
    owner = await repository.get_owner_by_email(user_email)
    if owner is None:
        raise HTTPException(status_code=404, detail="User not found")
    runs = await repository.sync_history(owner.id, limit=max(1, min(limit, 100)))
    return {"success": True, "logs": [run.model_dump(mode="json") for run in runs]}


@router.post("/test-connection")
async def test_connection(
    req: ConnectionRequest,
    gmail: Annotated[GmailClient, Depends(get_gmail)],
) -> dict[str, Any]:
    try:
        profile = await gmail.get_profile(req.access_token)
    except MailboxError as exc:
        logger.warning("[FETCH] Mailbox connection test failed: %s", exc)
        return {"success": False, "error": str(exc)}
    return {
        "success": True,
        "email": profile.get("emailAddress"),
        "totalMessages": profile.get("messagesTotal"),
        "threadsTotal": profile.get("threadsTotal"),
    }


@router.post("/fetch-emails", response_model=None)
async def fetch_emails(
    req: FetchEmailsRequest,
    fetcher: Annotated[MessageFetcher, Depends(get_fetcher)],
) -> dict[str, Any] | JSONResponse:
    """Preview candidate messages without extracting or storing anything."""
    if (req.start_date is None) != (req.end_date is None):
        raise HTTPException(status_code=400, detail="start_date and end_date must be given together")
    if req.start_date and req.end_date and req.end_date < req.start_date:
        raise HTTPException(status_code=400, detail="end_date is before start_date")

    try:
        if req.start_date and req.end_date:
            messages = await fetcher.fetch_by_date_range(
                req.access_token, req.start_date, req.end_date, req.max_results
            )
        elif req.unread_only:
            messages = await fetcher.fetch_unread(req.access_token, req.max_results)
        else:
            messages = await fetcher.fetch(req.access_token, req.max_results)
    except MailboxError as exc:
        logger.warning("[FETCH] Preview fetch failed: %s", exc)
        status_code = 401 if isinstance(exc, AuthError) else 502
        return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})

    return {
        "success": True,
        "count": len(messages),
        "emails": [message.model_dump() for message in messages],
    }
