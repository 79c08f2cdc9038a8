from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from business.plaid_sync.classification import is_transfer_like
from business.plaid_sync.models import AccountType, TransactionKind
from models.plaid import Account, Transaction

DEFAULT_CURRENCY = "CAD"
CATEGORY_PATH_SEPARATOR = " > "


def map_account_type(plaid_type: Optional[str]) -> AccountType:
    try:
        return AccountType((plaid_type or "").lower())
    except ValueError:
        return AccountType.OTHER


def map_plaid_account_to_db_fields(
    *,
    user_id: str,
    plaid_item_id: str,
    account: Account,
    refreshed_at: datetime,
) -> dict[str, Any]:
    """Map a Plaid account to accounts table columns, including cached balances."""
    balances = account.balances
    return {
        "user_id": user_id,
        "plaid_item_id": plaid_item_id,
        "plaid_account_id": account.account_id,
        "name": account.name,
        "official_name": account.official_name,
        "mask": account.mask,
        "type": map_account_type(account.type).value,
        "subtype": account.subtype,
        "current_balance": balances.current,
        "available_balance": balances.available,
        "limit_amount": balances.limit,
        "iso_currency_code": balances.iso_currency_code
        or balances.unofficial_currency_code
        or DEFAULT_CURRENCY,
        "last_balance_update": refreshed_at,
    }


def derive_kind(
    *,
    amount: float,
    name: Optional[str],
    category_path: Optional[Iterable[str]] = None,
    pfc_primary: Optional[str] = None,
    pfc_detailed: Optional[str] = None,
) -> TransactionKind:
    """Classify a record as income, expense or transfer.

    Transfer and bill-payment signals win regardless of sign. Otherwise Plaid's
    convention applies: positive amounts are money out (expense), the rest income.
    """
    if is_transfer_like(name, category_path, pfc_primary, pfc_detailed):
        return TransactionKind.TRANSFER
    return TransactionKind.EXPENSE if amount > 0 else TransactionKind.INCOME


def map_plaid_transaction_to_ledger_fields(
    *,
    user_id: str,
    account_id: str,
    transaction: Transaction,
) -> dict[str, Any]:
    """Map a change-feed record to ledger_entries columns. Pure; no I/O."""
    pfc = transaction.personal_finance_category
    pfc_primary = pfc.primary if pfc else None
    pfc_detailed = pfc.detailed if pfc else None

    kind = derive_kind(
        amount=transaction.amount,
        name=transaction.name,
        category_path=transaction.category,
        pfc_primary=pfc_primary,
        pfc_detailed=pfc_detailed,
    )

    return {
        "user_id": user_id,
        "account_id": account_id,
        "plaid_transaction_id": transaction.transaction_id,
        "date": transaction.date,
        "authorized_date": transaction.authorized_date,
        "amount": transaction.amount,
        "kind": kind.value,
        "name": transaction.name,
        "merchant_name": transaction.merchant_name,
        "plaid_category": CATEGORY_PATH_SEPARATOR.join(transaction.category)
        if transaction.category
        else None,
        "plaid_category_id": transaction.category_id,
        "personal_finance_category": pfc_primary,
        "personal_finance_category_detailed": pfc_detailed,
        "payment_channel": transaction.payment_channel,
        "iso_currency_code": transaction.iso_currency_code
        or transaction.unofficial_currency_code
        or DEFAULT_CURRENCY,
        "pending": transaction.pending,
    }
