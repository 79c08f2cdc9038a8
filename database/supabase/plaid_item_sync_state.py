import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from database.supabase.orm import execute
from utils.database import fetch_one_model

logger = logging.getLogger(__name__)


class PlaidItemSyncState(BaseModel):
    plaid_item_id: str
    transactions_cursor: Optional[str]  # opaque; stored and forwarded verbatim
    accounts_last_synced_at: Optional[datetime]
    updated_at: Optional[datetime]


def _select_sync_state(conn, plaid_item_id: str) -> Optional[PlaidItemSyncState]:
    cur = execute(
        conn,
        """
        SELECT plaid_item_id, transactions_cursor, accounts_last_synced_at, updated_at
        FROM plaid_item_sync_state
        WHERE plaid_item_id = %(plaid_item_id)s
        """,
        {"plaid_item_id": plaid_item_id},
    )
    return fetch_one_model(cur, PlaidItemSyncState)


def get_or_create_sync_state(conn, plaid_item_id: str) -> PlaidItemSyncState:
    """Ensure a sync state row exists for the item and return it."""
    execute(
        conn,
        """
        INSERT INTO plaid_item_sync_state (plaid_item_id, updated_at)
        VALUES (%(plaid_item_id)s, %(now)s)
        ON CONFLICT (plaid_item_id) DO NOTHING
        """,
        {"plaid_item_id": plaid_item_id, "now": datetime.now(timezone.utc)},
    )
    return _select_sync_state(conn, plaid_item_id)


def update_accounts_last_synced_at(conn, plaid_item_id: str, synced_at: datetime) -> None:
    """Refresh the accounts_last_synced_at timestamp for the item."""
    execute(
        conn,
        """
        UPDATE plaid_item_sync_state
        SET accounts_last_synced_at = %(synced_at)s, updated_at = %(synced_at)s
        WHERE plaid_item_id = %(plaid_item_id)s
        """,
        {"plaid_item_id": plaid_item_id, "synced_at": synced_at},
    )


def update_sync_cursor(
    conn, plaid_item_id: str, next_cursor: Optional[str], synced_at: datetime
) -> None:
    """Store the latest Plaid transactions cursor for the item."""
    execute(
        conn,
        """
        UPDATE plaid_item_sync_state
        SET transactions_cursor = %(cursor)s, updated_at = %(synced_at)s
        WHERE plaid_item_id = %(plaid_item_id)s
        """,
        {"plaid_item_id": plaid_item_id, "cursor": next_cursor, "synced_at": synced_at},
    )
