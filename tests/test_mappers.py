from datetime import date, datetime, timezone

from business.plaid_sync.mappers import (
    derive_kind,
    map_account_type,
    map_plaid_account_to_db_fields,
    map_plaid_transaction_to_ledger_fields,
)
from business.plaid_sync.models import AccountType, TransactionKind
from factories import make_account, make_transaction


def test_kind_follows_amount_sign():
    assert derive_kind(amount=12.5, name="Grocery Store") is TransactionKind.EXPENSE
    assert derive_kind(amount=-1500.0, name="Payroll") is TransactionKind.INCOME


def test_transfer_signal_wins_over_sign():
    assert derive_kind(amount=250.0, name="Transfer to Savings") is TransactionKind.TRANSFER
    assert derive_kind(amount=-250.0, name="Transfer from Chequing") is TransactionKind.TRANSFER
    assert (
        derive_kind(amount=-500.0, name="Thank you", pfc_detailed="LOAN_PAYMENTS_CREDIT_CARD_PAYMENT")
        is TransactionKind.TRANSFER
    )
    assert derive_kind(amount=80.0, name="Bill", category_path=["Transfer", "Debit"]) is TransactionKind.TRANSFER


def test_transaction_fields_keep_provider_metadata():
    t = make_transaction(
        "tx-1",
        "acct-1",
        42.1,
        on=date(2024, 3, 1),
        name="SQ *BLUE BOTTLE",
        merchant_name="Blue Bottle",
        category=["Food and Drink", "Restaurants", "Coffee Shop"],
        category_id="13005043",
        pfc_primary="FOOD_AND_DRINK",
        pfc_detailed="FOOD_AND_DRINK_COFFEE",
        payment_channel="in store",
    )

    fields = map_plaid_transaction_to_ledger_fields(user_id="u1", account_id="local-1", transaction=t)

    assert fields["user_id"] == "u1"
    assert fields["account_id"] == "local-1"
    assert fields["plaid_transaction_id"] == "tx-1"
    assert fields["date"] == date(2024, 3, 1)
    assert fields["amount"] == 42.1
    assert fields["kind"] == "EXPENSE"
    assert fields["merchant_name"] == "Blue Bottle"
    assert fields["plaid_category"] == "Food and Drink > Restaurants > Coffee Shop"
    assert fields["plaid_category_id"] == "13005043"
    assert fields["personal_finance_category"] == "FOOD_AND_DRINK"
    assert fields["personal_finance_category_detailed"] == "FOOD_AND_DRINK_COFFEE"
    assert fields["pending"] is False


def test_transaction_currency_falls_back():
    t = make_transaction("tx-1", "acct-1", 10.0)
    t.iso_currency_code = None
    assert map_plaid_transaction_to_ledger_fields(user_id="u", account_id="a", transaction=t)[
        "iso_currency_code"
    ] == "CAD"

    t.unofficial_currency_code = "BTC"
    assert map_plaid_transaction_to_ledger_fields(user_id="u", account_id="a", transaction=t)[
        "iso_currency_code"
    ] == "BTC"


def test_account_type_mapping():
    assert map_account_type("credit") is AccountType.CREDIT
    assert map_account_type("Depository") is AccountType.DEPOSITORY
    assert map_account_type("crypto") is AccountType.OTHER
    assert map_account_type(None) is AccountType.OTHER


def test_account_fields_include_balances():
    refreshed_at = datetime(2024, 3, 2, tzinfo=timezone.utc)
    fields = map_plaid_account_to_db_fields(
        user_id="u1",
        plaid_item_id="item-pk",
        account=make_account("acct-1", name="Visa Infinite", type="credit", current=321.0),
        refreshed_at=refreshed_at,
    )

    assert fields["plaid_account_id"] == "acct-1"
    assert fields["type"] == "credit"
    assert fields["current_balance"] == 321.0
    assert fields["available_balance"] == 321.0
    assert fields["iso_currency_code"] == "CAD"
    assert fields["last_balance_update"] == refreshed_at
