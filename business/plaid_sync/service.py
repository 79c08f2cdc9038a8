from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Union

from integrations.plaid import PlaidClient, PlaidError

from business.plaid_sync import mappers
from business.plaid_sync.errors import (
    PlaidItemNotFoundError,
    classify_sync_error,
    describe_error,
    to_sync_error,
)
from business.plaid_sync.models import (
    PageCounts,
    PlaidItemStatus,
    SyncResult,
    SyncStatus,
    SyncType,
)
from business.plaid_sync.transfers import detect_transfers
from database.supabase import account as account_repo
from database.supabase import ledger_entry as ledger_repo
from database.supabase import plaid_item as plaid_item_repo
from database.supabase import plaid_item_sync_state as sync_state_repo
from database.supabase import sync_run as sync_run_repo
from database.supabase.orm import get_connection
from database.supabase.plaid_item import PlaidItem
from models.plaid import ChangeFeedPage, LinkToken

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _sync_accounts(plaid_client: PlaidClient, item: PlaidItem, access_token: str) -> int:
    """Refresh accounts and cached balances for the item in one transaction."""
    accounts = plaid_client.get_accounts(access_token)
    refreshed_at = _now()

    conn = get_connection()
    try:
        sync_state_repo.get_or_create_sync_state(conn, item.id)
        for acct in accounts:
            data = mappers.map_plaid_account_to_db_fields(
                user_id=item.user_id,
                plaid_item_id=item.id,
                account=acct,
                refreshed_at=refreshed_at,
            )
            account_repo.upsert_plaid_account(conn, **data)
        sync_state_repo.update_accounts_last_synced_at(conn, item.id, refreshed_at)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    return len(accounts)


def _apply_page(conn, item: PlaidItem, page: ChangeFeedPage) -> PageCounts:
    counts = PageCounts()
    account_ids = account_repo.get_account_ids_by_plaid_account_id(
        conn, user_id=item.user_id, plaid_item_id=item.id
    )

    for t in page.added:
        account_id = account_ids.get(t.account_id)
        if not account_id:
            logger.warning(
                f"Skipping transaction {t.transaction_id}: unknown account {t.account_id}"
            )
            counts.skipped += 1
            continue

        tx_data = mappers.map_plaid_transaction_to_ledger_fields(
            user_id=item.user_id, account_id=account_id, transaction=t
        )

        # Pending -> posted: carry the local pending entry (and its annotations) over
        if t.pending_transaction_id:
            relinked = ledger_repo.relink_pending_to_posted(
                conn,
                user_id=item.user_id,
                pending_transaction_id=t.pending_transaction_id,
                posted_data=tx_data,
            )
            if relinked:
                counts.modified += 1
                continue

        ledger_repo.upsert_ledger_entry(conn, data=tx_data)
        counts.added += 1

    for t in page.modified:
        account_id = account_ids.get(t.account_id)
        if not account_id:
            logger.warning(
                f"Skipping transaction {t.transaction_id}: unknown account {t.account_id}"
            )
            counts.skipped += 1
            continue

        tx_data = mappers.map_plaid_transaction_to_ledger_fields(
            user_id=item.user_id, account_id=account_id, transaction=t
        )
        ledger_repo.upsert_ledger_entry(conn, data=tx_data)
        counts.modified += 1

    removed_ids = [r.transaction_id for r in page.removed]
    ledger_repo.delete_ledger_entries_by_external_id(
        conn, user_id=item.user_id, plaid_transaction_ids=removed_ids
    )
    counts.removed += len(removed_ids)
    return counts


def _sync_transactions(
    plaid_client: PlaidClient,
    item: PlaidItem,
    access_token: str,
    result: SyncResult,
) -> Optional[str]:
    """Drain the change feed from the stored cursor and return the final cursor.

    Each page commits on its own. The cursor is only returned, never written here.
    """
    cursor = item.last_sync_cursor
    page_number = 0
    while True:
        page_number += 1
        page = plaid_client.transactions_sync_page(access_token, cursor)

        conn = get_connection()
        try:
            counts = _apply_page(conn, item, page)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        result.added += counts.added
        result.modified += counts.modified
        result.removed += counts.removed
        logger.info(
            json.dumps(
                {
                    "event": "plaid_sync.page_applied",
                    "item_id": item.item_id,
                    "page": page_number,
                    "added": counts.added,
                    "modified": counts.modified,
                    "removed": counts.removed,
                    "skipped": counts.skipped,
                    "has_more": page.has_more,
                }
            )
        )

        cursor = page.next_cursor
        if not page.has_more:
            return cursor


def _mark_succeeded(item: PlaidItem, cursor: Optional[str]) -> None:
    """Persist cursor, last_sync_at and ACTIVE status together."""
    synced_at = _now()
    conn = get_connection()
    try:
        plaid_item_repo.mark_sync_succeeded(conn, item_pk=item.id, synced_at=synced_at)
        sync_state_repo.get_or_create_sync_state(conn, item.id)
        sync_state_repo.update_sync_cursor(conn, item.id, cursor, synced_at)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _record_failure(
    item: PlaidItem,
    run_id: str,
    error: BaseException,
    result: SyncResult,
    duration_ms: int,
) -> PlaidItemStatus:
    classification = classify_sync_error(error)

    try:
        sync_run_repo.finalize_sync_run(
            run_id,
            status=SyncStatus.FAILED.value,
            duration_ms=duration_ms,
            transactions_added=result.added,
            transactions_modified=result.modified,
            transactions_removed=result.removed,
            accounts_updated=result.accounts_updated,
            error=describe_error(error),
        )
    except Exception as e:
        logger.error(f"Could not finalize failed sync run {run_id}: {e}")

    try:
        plaid_item_repo.update_plaid_item_status(
            item.id, classification.target_status.value, classification.message
        )
    except Exception as e:
        logger.error(f"Could not update status of plaid_item {item.id}: {e}")

    logger.error(
        json.dumps(
            {
                "event": "plaid_sync.failed",
                "item_id": item.item_id,
                "sync_run_id": run_id,
                "status": classification.target_status.value,
                "error_code": classification.error_code,
                "error": classification.message,
            }
        )
    )
    return classification.target_status


def _finalize_completed(
    run_id: str, result: SyncResult, transfers_linked: int, duration_ms: int
) -> None:
    """Close the run as COMPLETED, falling back to FAILED if that write itself fails.

    The ledger and cursor are already committed at this point, so a bookkeeping
    error is logged rather than raised.
    """
    counts = {
        "duration_ms": duration_ms,
        "transactions_added": result.added,
        "transactions_modified": result.modified,
        "transactions_removed": result.removed,
        "accounts_updated": result.accounts_updated,
        "transfers_linked": transfers_linked,
    }
    try:
        sync_run_repo.finalize_sync_run(run_id, status=SyncStatus.COMPLETED.value, **counts)
        return
    except Exception as e:
        logger.error(f"Could not finalize completed sync run {run_id}: {e}")
        error = describe_error(e)

    try:
        sync_run_repo.finalize_sync_run(
            run_id, status=SyncStatus.FAILED.value, error=error, **counts
        )
    except Exception as e:
        logger.error(f"Could not finalize sync run {run_id}: {e}")


def run_item_sync(
    *,
    plaid_client: PlaidClient,
    item_db_id: str,
    sync_type: Union[SyncType, str] = SyncType.INCREMENTAL,
) -> SyncResult:
    """Bring one item's accounts and ledger up to date with Plaid.

    Accounts and balances are always refreshed, then the transactions change feed
    is drained page by page from the stored cursor until Plaid reports no more
    data. The cursor and item status are only written once the loop finishes.
    Transfer detection runs for the whole user afterwards and never fails the sync.

    Every attempt leaves a sync run behind, COMPLETED or FAILED. Failures update
    the item status and are re-raised as the classified sync error.

    Blocking: every database and Plaid call runs on the calling thread.
    """
    item = plaid_item_repo.get_plaid_item_by_id(item_db_id)
    if item is None:
        raise PlaidItemNotFoundError(f"Plaid item {item_db_id} not found")

    sync_type = SyncType(sync_type)
    started = time.monotonic()
    run = sync_run_repo.create_sync_run(
        user_id=item.user_id, plaid_item_id=item.id, sync_type=sync_type.value
    )
    logger.info(
        json.dumps(
            {
                "event": "plaid_sync.started",
                "item_id": item.item_id,
                "sync_run_id": run.id,
                "sync_type": sync_type.value,
            }
        )
    )

    result = SyncResult()
    try:
        access_token = plaid_client.decrypt_token(item.access_token)
        result.accounts_updated = _sync_accounts(plaid_client, item, access_token)
        cursor = _sync_transactions(plaid_client, item, access_token, result)
        _mark_succeeded(item, cursor)
    except Exception as e:
        classification = classify_sync_error(e)
        _record_failure(item, run.id, e, result, _elapsed_ms(started))
        error = to_sync_error(e, classification)
        if error is e:
            raise
        raise error from e

    transfers_linked = 0
    try:
        transfers_linked = detect_transfers(item.user_id)
    except Exception as e:
        logger.error(
            json.dumps(
                {
                    "event": "plaid_sync.transfer_detection_failed",
                    "item_id": item.item_id,
                    "user_id": item.user_id,
                    "error": str(e),
                }
            )
        )

    duration_ms = _elapsed_ms(started)
    _finalize_completed(run.id, result, transfers_linked, duration_ms)
    logger.info(
        json.dumps(
            {
                "event": "plaid_sync.completed",
                "item_id": item.item_id,
                "sync_run_id": run.id,
                **result.to_dict(),
                "transfers_linked": transfers_linked,
                "duration_ms": duration_ms,
            }
        )
    )
    return result


async def sync_item(
    *,
    plaid_client: PlaidClient,
    item_db_id: str,
    sync_type: Union[SyncType, str] = SyncType.INCREMENTAL,
) -> SyncResult:
    """Request-path entry point; the work itself runs on the calling thread."""
    return run_item_sync(plaid_client=plaid_client, item_db_id=item_db_id, sync_type=sync_type)


async def connect_item(
    *,
    plaid_client: PlaidClient,
    user_id: str,
    public_token: str,
    institution_id: Optional[str] = None,
    institution_name: Optional[str] = None,
) -> PlaidItem:
    """Exchange a Link public token, store the item and run its initial sync.

    Reconnecting an existing item replaces its token and resets it to ACTIVE.
    A failed initial sync is recorded on the item but does not undo the connection.
    """
    exchange = plaid_client.exchange_public_token(public_token)

    consent_expires_at = None
    try:
        consent_expires_at = plaid_client.get_consent_expiration(exchange.access_token)
    except PlaidError as e:
        logger.warning(f"Could not fetch consent expiration for item {exchange.item_id}: {e}")

    item = plaid_item_repo.create_or_update_plaid_item(
        user_id=user_id,
        access_token=plaid_client.encrypt_token(exchange.access_token),
        item_id=exchange.item_id,
        institution_id=institution_id,
        institution_name=institution_name,
        consent_expires_at=consent_expires_at,
    )

    try:
        await sync_item(plaid_client=plaid_client, item_db_id=item.id, sync_type=SyncType.INITIAL)
    except Exception as e:
        logger.error(
            json.dumps(
                {
                    "event": "plaid_sync.initial_sync_failed",
                    "item_id": item.item_id,
                    "error": str(e),
                }
            )
        )

    return plaid_item_repo.get_plaid_item_by_id(item.id)


async def create_link_token_for_user(
    *, plaid_client: PlaidClient, user_id: str, item_db_id: Optional[str] = None
) -> LinkToken:
    """Link token for a new connection, or an update-mode token for one of the user's items.

    Update mode is how a PENDING_REAUTH or REVOKED item gets repaired; the next
    manual sync then moves it back to ACTIVE.
    """
    access_token = None
    if item_db_id is not None:
        item = plaid_item_repo.get_plaid_item_for_user(user_id, item_db_id)
        if item is None:
            raise PlaidItemNotFoundError(f"Plaid item {item_db_id} not found")
        access_token = plaid_client.decrypt_token(item.access_token)
    return plaid_client.create_link_token(user_id, access_token=access_token)


async def remove_item(*, plaid_client: PlaidClient, user_id: str, item_db_id: str) -> None:
    """Disconnect an item at Plaid (best effort) and delete it with all its data."""
    item = plaid_item_repo.get_plaid_item_for_user(user_id, item_db_id)
    if item is None:
        raise PlaidItemNotFoundError(f"Plaid item {item_db_id} not found")

    try:
        plaid_client.remove_item(plaid_client.decrypt_token(item.access_token))
    except PlaidError as e:
        logger.warning(f"Plaid-side removal failed for item {item.item_id}, deleting locally: {e}")

    plaid_item_repo.delete_plaid_item(item.id)
    logger.info(f"Removed plaid_item {item.id} for user {user_id}")


async def sync_all_items_for_user(
    *, plaid_client: PlaidClient, user_id: str
) -> dict[str, SyncResult]:
    """Sync every ACTIVE item of the user sequentially.

    A failing item is logged and reported with zero counts; the others still run.
    """
    items = plaid_item_repo.list_plaid_items_by_status(
        PlaidItemStatus.ACTIVE.value, user_id=user_id
    )

    results: dict[str, SyncResult] = {}
    for item in items:
        try:
            results[item.id] = await sync_item(
                plaid_client=plaid_client, item_db_id=item.id, sync_type=SyncType.MANUAL
            )
        except Exception as e:
            logger.error(f"Sync failed for plaid_item {item.id} ({item.display_name}): {e}")
            results[item.id] = SyncResult()
    return results
