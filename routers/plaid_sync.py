import json
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from business.plaid_sync.errors import (
    ConsentRevokedError,
    PlaidItemNotFoundError,
    ReauthRequiredError,
    TransientProviderError,
)
from business.plaid_sync.models import SyncType
from business.plaid_sync.scheduler import SyncScheduler
from business.plaid_sync.service import (
    connect_item,
    create_link_token_for_user,
    remove_item,
    sync_all_items_for_user,
    sync_item,
)
from business.plaid_sync.transfers import detect_transfers
from database.supabase.account import list_accounts_for_plaid_item
from database.supabase.ledger_entry import (
    get_ledger_entry_by_id,
    list_ledger_entries_for_user,
    update_user_annotations,
)
from database.supabase.plaid_item import (
    PlaidItem,
    get_plaid_item_for_user,
    list_plaid_items_for_user,
)
from database.supabase.sync_run import list_sync_runs_for_item, list_sync_runs_for_user
from integrations.plaid import (
    PlaidAPIError,
    PlaidClient,
    PlaidConfigurationError,
    get_plaid_client,
    is_plaid_configured,
)
from models.auth_user import AuthUser
from models.sync import (
    AccountResponse,
    ConnectItemRequest,
    ItemSyncResponse,
    LedgerAnnotationRequest,
    LedgerEntriesResponse,
    LedgerEntryResponse,
    LinkTokenResponse,
    PlaidItemDetailResponse,
    PlaidItemResponse,
    PlaidItemsResponse,
    PlaidStatusResponse,
    SchedulerStatusResponse,
    SyncAllResponse,
    SyncLogsResponse,
    SyncResultResponse,
    SyncRunResponse,
    TransferDetectionResponse,
)
from utils.constants import PLAID_ENV
from utils.middlewares.auth_user import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plaid", tags=["Plaid Sync"])


def get_sync_scheduler(request: Request) -> Optional[SyncScheduler]:
    return getattr(request.app.state, "sync_scheduler", None)


def _to_http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, PlaidItemNotFoundError):
        return HTTPException(status_code=404, detail="Plaid item not found")
    if isinstance(e, (ReauthRequiredError, ConsentRevokedError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (TransientProviderError, PlaidAPIError)):
        logger.error(f"Plaid API error during {action}: {e}")
        return HTTPException(status_code=502, detail=f"Failed to {action}")
    if isinstance(e, PlaidConfigurationError):
        logger.error(f"Plaid configuration error: {e}")
        return HTTPException(status_code=500, detail="Plaid configuration error")
    logger.error(f"Unexpected error during {action}: {e}")
    return HTTPException(status_code=500, detail="Internal server error")


def _item_response(item: PlaidItem) -> PlaidItemResponse:
    return PlaidItemResponse(
        id=item.id,
        item_id=item.item_id,
        institution_id=item.institution_id,
        institution_name=item.institution_name,
        status=item.status,
        last_sync_at=item.last_sync_at,
        last_error=item.last_error,
        consent_expires_at=item.consent_expires_at,
        created_at=item.created_at,
    )


@router.get("/status")
async def get_plaid_status() -> PlaidStatusResponse:
    """Whether Plaid credentials are configured on this deployment"""
    return PlaidStatusResponse(configured=is_plaid_configured(), environment=PLAID_ENV)


@router.post("/link-token")
async def create_link_token(
    current_user: AuthUser = Depends(get_current_user),
    plaid_client: PlaidClient = Depends(get_plaid_client),
) -> LinkTokenResponse:
    """Create a link token for connecting a new institution"""
    try:
        token = await create_link_token_for_user(plaid_client=plaid_client, user_id=current_user.id)
    except Exception as e:
        raise _to_http_error(e, "create link token")
    return LinkTokenResponse(**token.model_dump())


@router.post("/link-token/{item_id}")
async def create_update_link_token(
    item_id: str,
    current_user: AuthUser = Depends(get_current_user),
    plaid_client: PlaidClient = Depends(get_plaid_client),
) -> LinkTokenResponse:
    """Create an update-mode link token to re-authenticate one of the user's items"""
    try:
        token = await create_link_token_for_user(
            plaid_client=plaid_client, user_id=current_user.id, item_db_id=item_id
        )
    except Exception as e:
        raise _to_http_error(e, "create link token")
    return LinkTokenResponse(**token.model_dump())


@router.post("/items")
async def connect_plaid_item(
    request: ConnectItemRequest,
    current_user: AuthUser = Depends(get_current_user),
    plaid_client: PlaidClient = Depends(get_plaid_client),
) -> PlaidItemResponse:
    """Exchange a Link public token, store the item and run its initial sync"""
    try:
        item = await connect_item(
            plaid_client=plaid_client,
            user_id=current_user.id,
            public_token=request.public_token,
            institution_id=request.institution_id,
            institution_name=request.institution_name,
        )
    except Exception as e:
        raise _to_http_error(e, "connect item")
    return _item_response(item)


@router.get("/items")
async def get_plaid_items(
    current_user: AuthUser = Depends(get_current_user),
) -> PlaidItemsResponse:
    """List the user's connections with their health status"""
    items = list_plaid_items_for_user(current_user.id)
    return PlaidItemsResponse(items=[_item_response(item) for item in items])


@router.get("/items/{item_id}")
async def get_plaid_item(
    item_id: str,
    current_user: AuthUser = Depends(get_current_user),
) -> PlaidItemDetailResponse:
    """One connection with its accounts and cached balances"""
    item = get_plaid_item_for_user(current_user.id, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Plaid item not found")
    accounts = [
        AccountResponse(**account.model_dump()) for account in list_accounts_for_plaid_item(item.id)
    ]
    return PlaidItemDetailResponse(**_item_response(item).model_dump(), accounts=accounts)


@router.get("/items/{item_id}/sync-logs")
async def get_item_sync_logs(
    item_id: str,
    current_user: AuthUser = Depends(get_current_user),
) -> SyncLogsResponse:
    """Every sync run of one item, newest first"""
    item = get_plaid_item_for_user(current_user.id, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Plaid item not found")
    runs = reversed(list_sync_runs_for_item(item.id))
    return SyncLogsResponse(
        runs=[
            SyncRunResponse(**run.model_dump(), institution_name=item.institution_name)
            for run in runs
        ]
    )


@router.delete("/items/{item_id}")
async def delete_plaid_item(
    item_id: str,
    current_user: AuthUser = Depends(get_current_user),
    plaid_client: PlaidClient = Depends(get_plaid_client),
) -> dict:
    """Disconnect an item and delete its accounts and ledger entries"""
    try:
        await remove_item(plaid_client=plaid_client, user_id=current_user.id, item_db_id=item_id)
    except Exception as e:
        raise _to_http_error(e, "remove item")
    return {"deleted": True}


@router.post("/items/{item_id}/sync")
async def sync_plaid_item(
    item_id: str,
    current_user: AuthUser = Depends(get_current_user),
    plaid_client: PlaidClient = Depends(get_plaid_client),
) -> SyncResultResponse:
    """Run a manual sync of one item"""
    if get_plaid_item_for_user(current_user.id, item_id) is None:
        raise HTTPException(status_code=404, detail="Plaid item not found")
    try:
        result = await sync_item(
            plaid_client=plaid_client, item_db_id=item_id, sync_type=SyncType.MANUAL
        )
    except Exception as e:
        raise _to_http_error(e, "sync item")
    return SyncResultResponse(**result.to_dict())


@router.post("/sync")
async def sync_plaid_items(
    current_user: AuthUser = Depends(get_current_user),
    plaid_client: PlaidClient = Depends(get_plaid_client),
) -> SyncAllResponse:
    """Synchronize all active Plaid items for the authenticated user.

    Returns per-item counts and overall timestamps. Items that fail report zero counts.
    """
    started_at = datetime.now(timezone.utc)
    try:
        results = await sync_all_items_for_user(plaid_client=plaid_client, user_id=current_user.id)
    except Exception as e:
        raise _to_http_error(e, "sync items")
    finished_at = datetime.now(timezone.utc)

    items: List[ItemSyncResponse] = [
        ItemSyncResponse(plaid_item_id=plaid_item_id, **result.to_dict())
        for plaid_item_id, result in results.items()
    ]

    logger.info(
        json.dumps(
            {
                "event": "plaid_sync.user_sync_completed",
                "user_id": current_user.id,
                "items": len(items),
                "started_at": started_at.isoformat(),
                "finished_at": finished_at.isoformat(),
            }
        )
    )

    return SyncAllResponse(items=items, started_at=started_at, finished_at=finished_at)


@router.get("/sync-logs")
async def get_sync_logs(
    limit: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(get_current_user),
) -> SyncLogsResponse:
    """Most recent sync runs for the user, newest first"""
    runs = list_sync_runs_for_user(current_user.id, limit=limit)
    return SyncLogsResponse(runs=[SyncRunResponse(**run.model_dump()) for run in runs])


@router.post("/transfers/detect")
async def detect_user_transfers(
    current_user: AuthUser = Depends(get_current_user),
) -> TransferDetectionResponse:
    """Link transfer pairs across all of the user's accounts"""
    try:
        linked = detect_transfers(current_user.id)
    except Exception as e:
        raise _to_http_error(e, "detect transfers")
    return TransferDetectionResponse(linked=linked)


@router.get("/ledger")
async def get_ledger_entries(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    current_user: AuthUser = Depends(get_current_user),
) -> LedgerEntriesResponse:
    """Ledger entries across all of the user's accounts, newest first"""
    entries = list_ledger_entries_for_user(current_user.id, date_from=date_from, date_to=date_to)
    return LedgerEntriesResponse(
        entries=[LedgerEntryResponse(**entry.model_dump()) for entry in entries]
    )


@router.patch("/ledger/{entry_id}")
async def annotate_ledger_entry(
    entry_id: str,
    request: LedgerAnnotationRequest,
    current_user: AuthUser = Depends(get_current_user),
) -> LedgerEntryResponse:
    """Update user-owned fields; later syncs never overwrite them"""
    entry = get_ledger_entry_by_id(entry_id)
    if entry is None or entry.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Ledger entry not found")
    try:
        updated = update_user_annotations(entry_id, **request.model_dump(exclude_unset=True))
    except Exception as e:
        raise _to_http_error(e, "update ledger entry")
    return LedgerEntryResponse(**updated.model_dump())


@router.get("/scheduler")
async def get_scheduler_status(
    current_user: AuthUser = Depends(get_current_user),
    scheduler: Optional[SyncScheduler] = Depends(get_sync_scheduler),
) -> SchedulerStatusResponse:
    if scheduler is None:
        return SchedulerStatusResponse(enabled=False, running=False, syncing=False)
    return SchedulerStatusResponse(
        enabled=True, running=scheduler.is_running, syncing=scheduler.is_syncing
    )
