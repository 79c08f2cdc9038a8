import logging
import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from database.supabase.orm import execute, get_connection
from utils.database import fetch_all_models

logger = logging.getLogger(__name__)


class Account(BaseModel):
    id: str
    user_id: str
    plaid_item_id: str
    plaid_account_id: str
    name: str
    official_name: Optional[str]
    mask: Optional[str]
    type: str
    subtype: Optional[str]
    current_balance: Optional[float]
    available_balance: Optional[float]
    limit_amount: Optional[float]
    iso_currency_code: str = "CAD"
    last_balance_update: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


def list_accounts_for_plaid_item(plaid_item_id: str) -> List[Account]:
    conn = get_connection()
    try:
        cur = execute(
            conn,
            "SELECT * FROM accounts WHERE plaid_item_id = %(plaid_item_id)s ORDER BY name",
            {"plaid_item_id": plaid_item_id},
        )
        return fetch_all_models(cur, Account)
    finally:
        conn.close()


def upsert_plaid_account(
    conn,
    *,
    user_id: str,
    plaid_item_id: str,
    plaid_account_id: str,
    name: str,
    official_name: Optional[str],
    mask: Optional[str],
    type: str,
    subtype: Optional[str],
    current_balance: Optional[float],
    available_balance: Optional[float],
    limit_amount: Optional[float],
    iso_currency_code: str,
    last_balance_update: datetime,
) -> None:
    """Upsert an account and its cached balances via an existing connection."""
    execute(
        conn,
        """
        INSERT INTO accounts (
            id, user_id, plaid_item_id, plaid_account_id, name, official_name, mask, type, subtype,
            current_balance, available_balance, limit_amount, iso_currency_code, last_balance_update,
            created_at, updated_at
        )
        VALUES (
            %(id)s, %(user_id)s, %(plaid_item_id)s, %(plaid_account_id)s, %(name)s, %(official_name)s,
            %(mask)s, %(type)s, %(subtype)s, %(current_balance)s, %(available_balance)s,
            %(limit_amount)s, %(iso_currency_code)s, %(last_balance_update)s,
            %(last_balance_update)s, %(last_balance_update)s
        )
        ON CONFLICT (user_id, plaid_account_id) DO UPDATE SET
            plaid_item_id = EXCLUDED.plaid_item_id,
            name = EXCLUDED.name,
            official_name = EXCLUDED.official_name,
            mask = EXCLUDED.mask,
            type = EXCLUDED.type,
            subtype = EXCLUDED.subtype,
            current_balance = EXCLUDED.current_balance,
            available_balance = EXCLUDED.available_balance,
            limit_amount = EXCLUDED.limit_amount,
            iso_currency_code = EXCLUDED.iso_currency_code,
            last_balance_update = EXCLUDED.last_balance_update,
            updated_at = EXCLUDED.updated_at
        """,
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "plaid_item_id": plaid_item_id,
            "plaid_account_id": plaid_account_id,
            "name": name,
            "official_name": official_name,
            "mask": mask,
            "type": type,
            "subtype": subtype,
            "current_balance": current_balance,
            "available_balance": available_balance,
            "limit_amount": limit_amount,
            "iso_currency_code": iso_currency_code,
            "last_balance_update": last_balance_update,
        },
    )


def get_account_ids_by_plaid_account_id(conn, *, user_id: str, plaid_item_id: str) -> dict[str, str]:
    """Map Plaid account ids to local account ids for one item."""
    cur = execute(
        conn,
        """
        SELECT plaid_account_id, id
        FROM accounts
        WHERE user_id = %(user_id)s AND plaid_item_id = %(plaid_item_id)s
        """,
        {"user_id": user_id, "plaid_item_id": plaid_item_id},
    )
    return {str(row[0]): str(row[1]) for row in cur.fetchall()}
