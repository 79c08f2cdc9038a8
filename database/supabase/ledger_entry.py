import json
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, field_validator

from database.supabase.orm import execute, get_connection
from utils.database import decode_json_list, fetch_all_models, fetch_one_model

logger = logging.getLogger(__name__)

# Written by the mapper on every sync; everything else on the row is user- or linker-owned
PROVIDER_FIELDS = (
    "account_id",
    "date",
    "authorized_date",
    "amount",
    "kind",
    "name",
    "merchant_name",
    "plaid_category",
    "plaid_category_id",
    "personal_finance_category",
    "personal_finance_category_detailed",
    "payment_channel",
    "iso_currency_code",
    "pending",
)


class LedgerEntry(BaseModel):
    id: str
    user_id: str
    account_id: str
    plaid_transaction_id: str
    date: date
    authorized_date: Optional[date]
    amount: float  # positive = money out, negative = money in
    kind: str
    name: str
    merchant_name: Optional[str]
    plaid_category: Optional[str]
    plaid_category_id: Optional[str]
    personal_finance_category: Optional[str]
    personal_finance_category_detailed: Optional[str]
    payment_channel: Optional[str]
    iso_currency_code: str
    pending: bool
    notes: Optional[str]
    category_override: Optional[str]
    tags: List[str] = []
    is_reviewed: bool
    linked_entry_id: Optional[str]
    linked_confidence: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @field_validator("tags", mode="before")
    @classmethod
    def _decode_tags(cls, value: Any) -> list:
        return decode_json_list(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_ledger_entry_by_id(entry_id: str) -> Optional[LedgerEntry]:
    conn = get_connection()
    try:
        cur = execute(conn, "SELECT * FROM ledger_entries WHERE id = %(id)s", {"id": entry_id})
        return fetch_one_model(cur, LedgerEntry)
    finally:
        conn.close()


def list_ledger_entries_for_user(
    user_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> List[LedgerEntry]:
    sql = "SELECT * FROM ledger_entries WHERE user_id = %(user_id)s"
    params: dict[str, Any] = {"user_id": user_id}
    if date_from is not None:
        sql += " AND date >= %(date_from)s"
        params["date_from"] = date_from
    if date_to is not None:
        sql += " AND date <= %(date_to)s"
        params["date_to"] = date_to
    sql += " ORDER BY date DESC, plaid_transaction_id"

    conn = get_connection()
    try:
        cur = execute(conn, sql, params)
        return fetch_all_models(cur, LedgerEntry)
    finally:
        conn.close()


def list_unlinked_settled_entries(user_id: str) -> List[LedgerEntry]:
    """Transfer-linking candidates: unlinked, non-pending, oldest first."""
    conn = get_connection()
    try:
        cur = execute(
            conn,
            """
            SELECT * FROM ledger_entries
            WHERE user_id = %(user_id)s
              AND linked_entry_id IS NULL
              AND pending = %(pending)s
            ORDER BY date ASC, created_at ASC, plaid_transaction_id ASC
            """,
            {"user_id": user_id, "pending": False},
        )
        return fetch_all_models(cur, LedgerEntry)
    finally:
        conn.close()


def upsert_ledger_entry(conn, *, data: dict[str, Any]) -> None:
    """Insert a ledger entry, or merge provider fields into the existing one.

    User annotations (notes, category_override, tags, is_reviewed) and link fields
    are never touched here. A TRANSFER kind set by the linker survives the merge.
    """
    now = _now()
    params = {field: data.get(field) for field in PROVIDER_FIELDS}
    params.update(
        {
            "id": str(uuid.uuid4()),
            "user_id": data["user_id"],
            "plaid_transaction_id": data["plaid_transaction_id"],
            "pending": bool(data.get("pending", False)),
            "now": now,
        }
    )
    execute(
        conn,
        """
        INSERT INTO ledger_entries (
            id, user_id, account_id, plaid_transaction_id, date, authorized_date, amount, kind, name,
            merchant_name, plaid_category, plaid_category_id, personal_finance_category,
            personal_finance_category_detailed, payment_channel, iso_currency_code, pending,
            tags, is_reviewed, created_at, updated_at
        )
        VALUES (
            %(id)s, %(user_id)s, %(account_id)s, %(plaid_transaction_id)s, %(date)s, %(authorized_date)s,
            %(amount)s, %(kind)s, %(name)s, %(merchant_name)s, %(plaid_category)s, %(plaid_category_id)s,
            %(personal_finance_category)s, %(personal_finance_category_detailed)s, %(payment_channel)s,
            %(iso_currency_code)s, %(pending)s, '[]', FALSE, %(now)s, %(now)s
        )
        ON CONFLICT (user_id, plaid_transaction_id) DO UPDATE SET
            account_id = EXCLUDED.account_id,
            date = EXCLUDED.date,
            authorized_date = EXCLUDED.authorized_date,
            amount = EXCLUDED.amount,
            kind = CASE
                WHEN ledger_entries.linked_entry_id IS NULL THEN EXCLUDED.kind
                ELSE ledger_entries.kind
            END,
            name = EXCLUDED.name,
            merchant_name = EXCLUDED.merchant_name,
            plaid_category = EXCLUDED.plaid_category,
            plaid_category_id = EXCLUDED.plaid_category_id,
            personal_finance_category = EXCLUDED.personal_finance_category,
            personal_finance_category_detailed = EXCLUDED.personal_finance_category_detailed,
            payment_channel = EXCLUDED.payment_channel,
            iso_currency_code = EXCLUDED.iso_currency_code,
            pending = EXCLUDED.pending,
            updated_at = EXCLUDED.updated_at
        """,
        params,
    )


def relink_pending_to_posted(
    conn,
    *,
    user_id: str,
    pending_transaction_id: str,
    posted_data: dict[str, Any],
) -> bool:
    """Re-key a local pending entry to its posted counterpart, keeping annotations.

    Returns False when there is no pending entry to carry over, or when the posted
    id is already present locally.
    """
    existing = execute(
        conn,
        """
        SELECT 1 FROM ledger_entries
        WHERE user_id = %(user_id)s AND plaid_transaction_id = %(posted_id)s
        """,
        {"user_id": user_id, "posted_id": posted_data["plaid_transaction_id"]},
    ).fetchone()
    if existing:
        return False

    params = {field: posted_data.get(field) for field in PROVIDER_FIELDS}
    params.update(
        {
            "user_id": user_id,
            "pending_id": pending_transaction_id,
            "posted_id": posted_data["plaid_transaction_id"],
            "pending": bool(posted_data.get("pending", False)),
            "now": _now(),
        }
    )
    cur = execute(
        conn,
        """
        UPDATE ledger_entries
        SET plaid_transaction_id = %(posted_id)s,
            account_id = %(account_id)s,
            date = %(date)s,
            authorized_date = %(authorized_date)s,
            amount = %(amount)s,
            kind = CASE WHEN linked_entry_id IS NULL THEN %(kind)s ELSE kind END,
            name = %(name)s,
            merchant_name = %(merchant_name)s,
            plaid_category = %(plaid_category)s,
            plaid_category_id = %(plaid_category_id)s,
            personal_finance_category = %(personal_finance_category)s,
            personal_finance_category_detailed = %(personal_finance_category_detailed)s,
            payment_channel = %(payment_channel)s,
            iso_currency_code = %(iso_currency_code)s,
            pending = %(pending)s,
            updated_at = %(now)s
        WHERE user_id = %(user_id)s AND plaid_transaction_id = %(pending_id)s
        """,
        params,
    )
    return cur.rowcount > 0


def delete_ledger_entries_by_external_id(
    conn,
    *,
    user_id: str,
    plaid_transaction_ids: Iterable[str],
) -> int:
    """Delete entries by external id; ids that are already gone are ignored.

    Any entry linked to a deleted one has its link cleared so no one-way link remains.
    """
    deleted = 0
    for plaid_transaction_id in plaid_transaction_ids:
        params = {"user_id": user_id, "plaid_transaction_id": plaid_transaction_id}
        execute(
            conn,
            """
            UPDATE ledger_entries
            SET linked_entry_id = NULL, linked_confidence = NULL
            WHERE linked_entry_id IN (
                SELECT id FROM ledger_entries
                WHERE user_id = %(user_id)s AND plaid_transaction_id = %(plaid_transaction_id)s
            )
            """,
            params,
        )
        cur = execute(
            conn,
            """
            DELETE FROM ledger_entries
            WHERE user_id = %(user_id)s AND plaid_transaction_id = %(plaid_transaction_id)s
            """,
            params,
        )
        deleted += max(cur.rowcount, 0)
    return deleted


def link_transfer_pair(entry_id: str, other_entry_id: str, confidence: int) -> bool:
    """Link two entries to each other in one transaction and mark both as TRANSFER.

    Both rows must still be unlinked; otherwise nothing is written and False is returned.
    """
    conn = get_connection()
    try:
        now = _now()
        updated = 0
        for this_id, that_id in ((entry_id, other_entry_id), (other_entry_id, entry_id)):
            cur = execute(
                conn,
                """
                UPDATE ledger_entries
                SET linked_entry_id = %(that_id)s,
                    linked_confidence = %(confidence)s,
                    kind = 'TRANSFER',
                    updated_at = %(now)s
                WHERE id = %(this_id)s AND linked_entry_id IS NULL
                """,
                {"this_id": this_id, "that_id": that_id, "confidence": confidence, "now": now},
            )
            updated += cur.rowcount
        if updated != 2:
            conn.rollback()
            logger.warning(f"Skipped linking {entry_id} <-> {other_entry_id}: one side already linked")
            return False
        conn.commit()
        return True
    except Exception as e:
        conn.rollback()
        logger.error(f"Error linking transfer pair {entry_id} <-> {other_entry_id}: {e}")
        raise
    finally:
        conn.close()


def update_user_annotations(
    entry_id: str,
    *,
    notes: Optional[str] = None,
    category_override: Optional[str] = None,
    tags: Optional[List[str]] = None,
    is_reviewed: Optional[bool] = None,
) -> Optional[LedgerEntry]:
    """Set user-owned fields; arguments left as None are unchanged."""
    updates: dict[str, Any] = {}
    if notes is not None:
        updates["notes"] = notes
    if category_override is not None:
        updates["category_override"] = category_override
    if tags is not None:
        updates["tags"] = json.dumps(tags)
    if is_reviewed is not None:
        updates["is_reviewed"] = is_reviewed
    if not updates:
        return get_ledger_entry_by_id(entry_id)

    assignments = ", ".join(f"{column} = %({column})s" for column in updates)
    conn = get_connection()
    try:
        execute(
            conn,
            f"UPDATE ledger_entries SET {assignments}, updated_at = %(now)s WHERE id = %(id)s",
            {**updates, "id": entry_id, "now": _now()},
        )
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.error(f"Error updating annotations on ledger entry {entry_id}: {e}")
        raise
    finally:
        conn.close()
    return get_ledger_entry_by_id(entry_id)
