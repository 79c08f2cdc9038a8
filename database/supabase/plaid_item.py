import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from database.supabase import plaid_item_sync_state as sync_state_repo
from database.supabase.orm import execute, get_connection
from utils.database import fetch_all_models, fetch_one_model

logger = logging.getLogger(__name__)

_SELECT_ITEM = """
    SELECT p.id, p.user_id, p.item_id, p.access_token, p.institution_id, p.institution_name,
           p.status, p.last_sync_at, p.last_error, p.consent_expires_at,
           s.transactions_cursor AS last_sync_cursor,
           p.created_at, p.updated_at
    FROM plaid_items p
    LEFT JOIN plaid_item_sync_state s ON s.plaid_item_id = p.id
"""


class PlaidItem(BaseModel):
    id: str
    user_id: str
    item_id: str
    access_token: str  # encrypted
    institution_id: Optional[str]
    institution_name: Optional[str]
    status: str
    last_sync_at: Optional[datetime]
    last_error: Optional[str]
    consent_expires_at: Optional[datetime]
    last_sync_cursor: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @property
    def display_name(self) -> str:
        return self.institution_name or self.item_id


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_plaid_item_by_id(item_pk: str) -> Optional[PlaidItem]:
    conn = get_connection()
    try:
        cur = execute(conn, _SELECT_ITEM + " WHERE p.id = %(id)s", {"id": item_pk})
        return fetch_one_model(cur, PlaidItem)
    finally:
        conn.close()


def get_plaid_item_for_user(user_id: str, item_pk: str) -> Optional[PlaidItem]:
    conn = get_connection()
    try:
        cur = execute(
            conn,
            _SELECT_ITEM + " WHERE p.id = %(id)s AND p.user_id = %(user_id)s",
            {"id": item_pk, "user_id": user_id},
        )
        return fetch_one_model(cur, PlaidItem)
    finally:
        conn.close()


def list_plaid_items_for_user(user_id: str) -> List[PlaidItem]:
    conn = get_connection()
    try:
        cur = execute(
            conn,
            _SELECT_ITEM + " WHERE p.user_id = %(user_id)s ORDER BY p.created_at DESC",
            {"user_id": user_id},
        )
        return fetch_all_models(cur, PlaidItem)
    finally:
        conn.close()


def list_plaid_items_by_status(status: str, user_id: Optional[str] = None) -> List[PlaidItem]:
    """Items in the given status, oldest first, optionally scoped to one user."""
    sql = _SELECT_ITEM + " WHERE p.status = %(status)s"
    params = {"status": status}
    if user_id is not None:
        sql += " AND p.user_id = %(user_id)s"
        params["user_id"] = user_id
    sql += " ORDER BY p.created_at ASC"

    conn = get_connection()
    try:
        cur = execute(conn, sql, params)
        return fetch_all_models(cur, PlaidItem)
    finally:
        conn.close()


def create_or_update_plaid_item(
    user_id: str,
    access_token: str,
    item_id: str,
    institution_id: Optional[str],
    institution_name: Optional[str],
    consent_expires_at: Optional[datetime] = None,
) -> PlaidItem:
    """Insert an item, or reset an existing one to ACTIVE on reconnect."""
    now = _now()
    conn = get_connection()
    try:
        execute(
            conn,
            """
            INSERT INTO plaid_items (
                id, user_id, item_id, access_token, institution_id, institution_name,
                status, last_error, consent_expires_at, created_at, updated_at
            )
            VALUES (
                %(id)s, %(user_id)s, %(item_id)s, %(access_token)s, %(institution_id)s,
                %(institution_name)s, 'ACTIVE', NULL, %(consent_expires_at)s, %(now)s, %(now)s
            )
            ON CONFLICT (user_id, item_id) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                institution_id = COALESCE(EXCLUDED.institution_id, plaid_items.institution_id),
                institution_name = COALESCE(EXCLUDED.institution_name, plaid_items.institution_name),
                consent_expires_at = EXCLUDED.consent_expires_at,
                status = 'ACTIVE',
                last_error = NULL,
                updated_at = EXCLUDED.updated_at
            """,
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "item_id": item_id,
                "access_token": access_token,
                "institution_id": institution_id,
                "institution_name": institution_name,
                "consent_expires_at": consent_expires_at,
                "now": now,
            },
        )
        cur = execute(
            conn,
            _SELECT_ITEM + " WHERE p.user_id = %(user_id)s AND p.item_id = %(item_id)s",
            {"user_id": user_id, "item_id": item_id},
        )
        item = fetch_one_model(cur, PlaidItem)
        sync_state_repo.get_or_create_sync_state(conn, item.id)
        conn.commit()
        return item
    except Exception as e:
        conn.rollback()
        logger.error(f"Error upserting plaid_item (user_id={user_id}, item_id={item_id}): {e}")
        raise
    finally:
        conn.close()


def mark_sync_succeeded(conn, *, item_pk: str, synced_at: datetime) -> None:
    """Reset the item to a healthy state after a completed page loop."""
    execute(
        conn,
        """
        UPDATE plaid_items
        SET status = 'ACTIVE', last_error = NULL, last_sync_at = %(synced_at)s, updated_at = %(synced_at)s
        WHERE id = %(id)s
        """,
        {"id": item_pk, "synced_at": synced_at},
    )


def update_plaid_item_status(item_pk: str, status: str, last_error: Optional[str]) -> None:
    conn = get_connection()
    try:
        execute(
            conn,
            """
            UPDATE plaid_items
            SET status = %(status)s, last_error = %(last_error)s, updated_at = %(now)s
            WHERE id = %(id)s
            """,
            {"id": item_pk, "status": status, "last_error": last_error, "now": _now()},
        )
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.error(f"Error updating status of plaid_item {item_pk}: {e}")
        raise
    finally:
        conn.close()


def delete_plaid_item(item_pk: str) -> bool:
    """Delete an item together with its accounts, ledger entries, cursor and sync runs.

    Entries elsewhere that were linked to a deleted entry lose their link.
    """
    conn = get_connection()
    try:
        params = {"id": item_pk}
        execute(
            conn,
            """
            UPDATE ledger_entries
            SET linked_entry_id = NULL, linked_confidence = NULL
            WHERE linked_entry_id IN (
                SELECT e.id FROM ledger_entries e
                JOIN accounts a ON a.id = e.account_id
                WHERE a.plaid_item_id = %(id)s
            )
            """,
            params,
        )
        execute(
            conn,
            """
            DELETE FROM ledger_entries
            WHERE account_id IN (SELECT id FROM accounts WHERE plaid_item_id = %(id)s)
            """,
            params,
        )
        execute(conn, "DELETE FROM accounts WHERE plaid_item_id = %(id)s", params)
        execute(conn, "DELETE FROM sync_runs WHERE plaid_item_id = %(id)s", params)
        execute(conn, "DELETE FROM plaid_item_sync_state WHERE plaid_item_id = %(id)s", params)
        cur = execute(conn, "DELETE FROM plaid_items WHERE id = %(id)s", params)
        deleted = cur.rowcount > 0
        conn.commit()
        return deleted
    except Exception as e:
        conn.rollback()
        logger.error(f"Error deleting plaid_item {item_pk}: {e}")
        raise
    finally:
        conn.close()
