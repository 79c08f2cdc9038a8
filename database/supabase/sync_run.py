import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from database.supabase.orm import execute, get_connection
from utils.database import fetch_all_models, fetch_one_model

logger = logging.getLogger(__name__)


class SyncRun(BaseModel):
    id: str
    user_id: str
    plaid_item_id: str
    sync_type: str
    status: str
    transactions_added: int
    transactions_modified: int
    transactions_removed: int
    accounts_updated: int
    transfers_linked: int
    error: Optional[str]
    duration_ms: Optional[int]
    created_at: Optional[datetime]
    finished_at: Optional[datetime]


class SyncRunWithInstitution(SyncRun):
    institution_name: Optional[str]


def create_sync_run(*, user_id: str, plaid_item_id: str, sync_type: str) -> SyncRun:
    """Record a sync attempt in STARTED state."""
    run_id = str(uuid.uuid4())
    conn = get_connection()
    try:
        execute(
            conn,
            """
            INSERT INTO sync_runs (id, user_id, plaid_item_id, sync_type, status, created_at)
            VALUES (%(id)s, %(user_id)s, %(plaid_item_id)s, %(sync_type)s, 'STARTED', %(now)s)
            """,
            {
                "id": run_id,
                "user_id": user_id,
                "plaid_item_id": plaid_item_id,
                "sync_type": sync_type,
                "now": datetime.now(timezone.utc),
            },
        )
        cur = execute(conn, "SELECT * FROM sync_runs WHERE id = %(id)s", {"id": run_id})
        run = fetch_one_model(cur, SyncRun)
        conn.commit()
        return run
    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating sync run for plaid_item {plaid_item_id}: {e}")
        raise
    finally:
        conn.close()


def finalize_sync_run(
    run_id: str,
    *,
    status: str,
    duration_ms: int,
    transactions_added: int = 0,
    transactions_modified: int = 0,
    transactions_removed: int = 0,
    accounts_updated: int = 0,
    transfers_linked: int = 0,
    error: Optional[str] = None,
) -> bool:
    """Move a STARTED run to its final state. A run that is already final is left alone."""
    conn = get_connection()
    try:
        cur = execute(
            conn,
            """
            UPDATE sync_runs
            SET status = %(status)s,
                transactions_added = %(added)s,
                transactions_modified = %(modified)s,
                transactions_removed = %(removed)s,
                accounts_updated = %(accounts_updated)s,
                transfers_linked = %(transfers_linked)s,
                error = %(error)s,
                duration_ms = %(duration_ms)s,
                finished_at = %(now)s
            WHERE id = %(id)s AND status = 'STARTED'
            """,
            {
                "id": run_id,
                "status": status,
                "added": transactions_added,
                "modified": transactions_modified,
                "removed": transactions_removed,
                "accounts_updated": accounts_updated,
                "transfers_linked": transfers_linked,
                "error": error,
                "duration_ms": duration_ms,
                "now": datetime.now(timezone.utc),
            },
        )
        finalized = cur.rowcount > 0
        conn.commit()
        return finalized
    except Exception as e:
        conn.rollback()
        logger.error(f"Error finalizing sync run {run_id}: {e}")
        raise
    finally:
        conn.close()


def list_sync_runs_for_item(plaid_item_id: str) -> List[SyncRun]:
    conn = get_connection()
    try:
        cur = execute(
            conn,
            "SELECT * FROM sync_runs WHERE plaid_item_id = %(plaid_item_id)s ORDER BY created_at ASC",
            {"plaid_item_id": plaid_item_id},
        )
        return fetch_all_models(cur, SyncRun)
    finally:
        conn.close()


def list_sync_runs_for_user(user_id: str, limit: int = 20) -> List[SyncRunWithInstitution]:
    conn = get_connection()
    try:
        cur = execute(
            conn,
            """
            SELECT r.*, p.institution_name
            FROM sync_runs r
            JOIN plaid_items p ON p.id = r.plaid_item_id
            WHERE r.user_id = %(user_id)s
            ORDER BY r.created_at DESC
            LIMIT %(limit)s
            """,
            {"user_id": user_id, "limit": limit},
        )
        return fetch_all_models(cur, SyncRunWithInstitution)
    finally:
        conn.close()
