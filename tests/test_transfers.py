from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from business.plaid_sync.transfers import LinkPolicy, compute_link_confidence, detect_transfers
from database.supabase import account as account_repo
from database.supabase import ledger_entry as ledger_repo
from database.supabase.orm import get_connection
from factories import USER_ID, create_item, ledger_entry_by_plaid_id


def _entry(account_id, amount, on, name="Coffee", kind=None, pfc=None, pfc_detailed=None):
    return SimpleNamespace(
        id=f"{account_id}-{amount}-{on}",
        account_id=account_id,
        amount=amount,
        date=on,
        name=name,
        kind=kind or ("EXPENSE" if amount > 0 else "INCOME"),
        personal_finance_category=pfc,
        personal_finance_category_detailed=pfc_detailed,
    )


# compute_link_confidence


def test_same_account_scores_zero():
    a = _entry("chequing", 250.0, date(2024, 3, 1), "Transfer to Savings")
    b = _entry("chequing", -250.0, date(2024, 3, 1), "Transfer from Chequing")
    assert compute_link_confidence(a, b) == 0


def test_amount_gate_is_hard():
    a = _entry("chequing", 100.0, date(2024, 3, 1), "Transfer", kind="TRANSFER")
    b = _entry("savings", -80.0, date(2024, 3, 1), "Transfer", kind="TRANSFER")
    assert compute_link_confidence(a, b) == 0


def test_exact_opposite_same_day():
    """Exact opposite amounts on the same day, plain income/expense kinds.

    The classic "Transfer to Savings" example is often quoted at 85, but the
    weights give 50 (exact amount) + 25 (same day) + 5 (keyword) = 80. The
    +10 only applies when a side is typed TRANSFER or carries a transfer
    category, which these entries do not.
    """
    a = _entry("chequing", 250.0, date(2024, 3, 1), "Transfer to Savings")
    b = _entry("savings", -250.0, date(2024, 3, 1), "Transfer from Chequing")
    assert compute_link_confidence(a, b) == 80


def test_near_opposite_amount():
    a = _entry("chequing", 100.0, date(2024, 3, 1))
    b = _entry("savings", -99.5, date(2024, 3, 1))
    assert compute_link_confidence(a, b) == 40 + 25


def test_within_epsilon_counts_as_exact():
    a = _entry("chequing", 100.0, date(2024, 3, 1))
    b = _entry("savings", -99.99, date(2024, 3, 1))
    assert compute_link_confidence(a, b) == 50 + 25


@pytest.mark.parametrize("days,points", [(0, 25), (1, 20), (2, 15), (3, 10)])
def test_date_proximity_weights(days, points):
    a = _entry("chequing", 100.0, date(2024, 3, 1))
    b = _entry("savings", -100.0, date(2024, 3, 1 + days))
    assert compute_link_confidence(a, b) == 50 + points
    assert compute_link_confidence(b, a) == 50 + points


def test_outside_window_scores_zero():
    a = _entry("chequing", 100.0, date(2024, 3, 1), "Transfer")
    b = _entry("savings", -100.0, date(2024, 3, 5), "Transfer")
    assert compute_link_confidence(a, b) == 0


@pytest.mark.parametrize("window_days", [-1, 4, 7])
def test_policy_window_must_fit_date_weights(window_days):
    with pytest.raises(ValueError, match="window_days"):
        LinkPolicy(window_days=window_days)


def test_policy_window_can_grow_with_date_weights():
    policy = LinkPolicy(window_days=4, date_scores=(25, 20, 15, 10, 5))
    a = _entry("chequing", 100.0, date(2024, 3, 1))
    b = _entry("savings", -100.0, date(2024, 3, 5))
    assert compute_link_confidence(a, b, policy) == 50 + 5


def test_category_and_keyword_signals_counted_once():
    a = _entry("chequing", 250.0, date(2024, 3, 1), "Transfer to Savings", kind="TRANSFER")
    b = _entry(
        "savings",
        -250.0,
        date(2024, 3, 1),
        "Online banking transfer",
        kind="TRANSFER",
        pfc="TRANSFER_IN",
        pfc_detailed="TRANSFER_IN_ACCOUNT_TRANSFER",
    )
    assert compute_link_confidence(a, b) == 50 + 25 + 10 + 5


def test_category_marker_without_transfer_kind():
    a = _entry("chequing", 500.0, date(2024, 3, 1), "Thank you", pfc_detailed="LOAN_PAYMENTS_CREDIT_CARD_PAYMENT")
    b = _entry("visa", -500.0, date(2024, 3, 1), "Received")
    assert compute_link_confidence(a, b) == 50 + 25 + 10


def test_visa_payment_three_days_apart_stays_below_threshold():
    a = _entry("chequing", 500.0, date(2024, 3, 1), "VISA Payment")
    b = _entry("visa", -500.0, date(2024, 3, 4), "VISA Payment")
    assert compute_link_confidence(a, b) == 65


def test_score_is_capped():
    policy = LinkPolicy(exact_amount_score=80)
    a = _entry("chequing", 250.0, date(2024, 3, 1), "Transfer", kind="TRANSFER")
    b = _entry("savings", -250.0, date(2024, 3, 1), "Transfer", kind="TRANSFER")
    assert compute_link_confidence(a, b, policy) == 100


# detect_transfers against the ledger


@pytest.fixture
def accounts(setup_test_db):
    """Three accounts under one item: chequing, savings and a credit card."""
    item = create_item()
    now = datetime.now(timezone.utc)
    conn = get_connection()
    try:
        for plaid_account_id, name, type in (
            ("chequing", "Chequing", "depository"),
            ("savings", "Savings", "depository"),
            ("visa", "Visa", "credit"),
        ):
            account_repo.upsert_plaid_account(
                conn,
                user_id=USER_ID,
                plaid_item_id=item.id,
                plaid_account_id=plaid_account_id,
                name=name,
                official_name=None,
                mask=None,
                type=type,
                subtype=None,
                current_balance=None,
                available_balance=None,
                limit_amount=None,
                iso_currency_code="CAD",
                last_balance_update=now,
            )
        ids = account_repo.get_account_ids_by_plaid_account_id(conn, user_id=USER_ID, plaid_item_id=item.id)
        conn.commit()
    finally:
        conn.close()
    return ids


def _insert(plaid_transaction_id, account_id, amount, on, name, kind=None, pending=False, user_id=USER_ID):
    conn = get_connection()
    try:
        ledger_repo.upsert_ledger_entry(
            conn,
            data={
                "user_id": user_id,
                "account_id": account_id,
                "plaid_transaction_id": plaid_transaction_id,
                "date": on,
                "amount": amount,
                "kind": kind or ("EXPENSE" if amount > 0 else "INCOME"),
                "name": name,
                "iso_currency_code": "CAD",
                "pending": pending,
            },
        )
        conn.commit()
    finally:
        conn.close()
    return ledger_entry_by_plaid_id(plaid_transaction_id, user_id)


def _reload(entry):
    return ledger_repo.get_ledger_entry_by_id(entry.id)


def test_exact_transfer_is_linked_symmetrically(accounts):
    """Scores 80 rather than the often quoted 85: 50 amount + 25 date + 5 keyword.

    Entries are inserted as EXPENSE/INCOME, so the transfer-type bonus is not earned.
    """
    out = _insert("t1", accounts["chequing"], 250.0, date(2024, 3, 1), "Transfer to Savings")
    into = _insert("t2", accounts["savings"], -250.0, date(2024, 3, 1), "Transfer from Checking")

    assert detect_transfers(USER_ID) == 1

    out, into = _reload(out), _reload(into)
    assert out.linked_entry_id == into.id
    assert into.linked_entry_id == out.id
    assert out.linked_confidence == into.linked_confidence == 80
    assert out.kind == into.kind == "TRANSFER"


def test_detection_is_idempotent(accounts):
    _insert("t1", accounts["chequing"], 250.0, date(2024, 3, 1), "Transfer to Savings")
    _insert("t2", accounts["savings"], -250.0, date(2024, 3, 1), "Transfer from Checking")

    assert detect_transfers(USER_ID) == 1
    assert detect_transfers(USER_ID) == 0


def test_mismatched_amounts_never_link(accounts):
    a = _insert("t1", accounts["chequing"], 100.0, date(2024, 3, 1), "Transfer")
    b = _insert("t2", accounts["savings"], -80.0, date(2024, 3, 1), "Transfer")

    assert detect_transfers(USER_ID) == 0
    assert _reload(a).linked_entry_id is None
    assert _reload(b).linked_entry_id is None


def test_below_threshold_pair_is_left_alone(accounts):
    a = _insert("t1", accounts["chequing"], 500.0, date(2024, 3, 1), "VISA Payment")
    b = _insert("t2", accounts["visa"], -500.0, date(2024, 3, 4), "VISA Payment")

    assert detect_transfers(USER_ID) == 0
    a, b = _reload(a), _reload(b)
    assert a.linked_entry_id is None and b.linked_entry_id is None
    assert a.kind == "EXPENSE" and b.kind == "INCOME"


def test_pending_entries_are_not_candidates(accounts):
    _insert("t1", accounts["chequing"], 250.0, date(2024, 3, 1), "Transfer to Savings", pending=True)
    _insert("t2", accounts["savings"], -250.0, date(2024, 3, 1), "Transfer from Checking")

    assert detect_transfers(USER_ID) == 0


def test_higher_score_wins_over_closer_date(accounts):
    a = _insert("t1", accounts["chequing"], 300.0, date(2024, 3, 1), "Coffee")
    near = _insert("t2", accounts["savings"], -300.0, date(2024, 3, 2), "Deposit")
    far = _insert("t3", accounts["visa"], -300.0, date(2024, 3, 3), "Transfer in", kind="TRANSFER")

    # near: 50 + 20 = 70, far: 50 + 15 + 10 + 5 = 80
    assert detect_transfers(USER_ID) == 1
    assert _reload(a).linked_entry_id == far.id
    assert _reload(far).linked_confidence == 80
    assert _reload(near).linked_entry_id is None


def test_tie_on_score_goes_to_smallest_distance(accounts):
    a = _insert("t1", accounts["chequing"], 100.0, date(2024, 3, 1), "Coffee")
    same_day = _insert("t2", accounts["savings"], -99.5, date(2024, 3, 1), "Transfer in")
    next_day = _insert("t3", accounts["visa"], -100.0, date(2024, 3, 2), "Refund")

    # same_day: 40 + 25 + 5 = 70, next_day: 50 + 20 = 70
    assert detect_transfers(USER_ID) == 1
    assert _reload(a).linked_entry_id == same_day.id
    assert _reload(same_day).linked_confidence == 70
    assert _reload(next_day).linked_entry_id is None


def test_full_tie_goes_to_first_candidate(accounts):
    a = _insert("t1", accounts["chequing"], 100.0, date(2024, 3, 1), "Transfer out")
    first = _insert("t2", accounts["savings"], -100.0, date(2024, 3, 1), "Transfer in")
    second = _insert("t3", accounts["visa"], -100.0, date(2024, 3, 1), "Transfer in")

    assert detect_transfers(USER_ID) == 1
    assert _reload(a).linked_entry_id == first.id
    assert _reload(second).linked_entry_id is None


def test_each_entry_links_at_most_once(accounts):
    _insert("t1", accounts["chequing"], 100.0, date(2024, 3, 1), "Transfer out")
    _insert("t2", accounts["savings"], -100.0, date(2024, 3, 1), "Transfer in")
    _insert("t3", accounts["visa"], -100.0, date(2024, 3, 1), "Transfer in")
    _insert("t4", accounts["savings"], 100.0, date(2024, 3, 2), "Transfer out")

    assert detect_transfers(USER_ID) == 2
    linked = [e for e in ledger_repo.list_ledger_entries_for_user(USER_ID) if e.linked_entry_id]
    assert len(linked) == 4
    for entry in linked:
        partner = ledger_repo.get_ledger_entry_by_id(entry.linked_entry_id)
        assert partner.linked_entry_id == entry.id


def test_other_users_entries_are_ignored(accounts):
    _insert("t1", accounts["chequing"], 250.0, date(2024, 3, 1), "Transfer to Savings")
    _insert("t2", accounts["savings"], -250.0, date(2024, 3, 1), "Transfer from Checking", user_id="user-2")

    assert detect_transfers(USER_ID) == 0
    assert detect_transfers("user-2") == 0


def test_link_pair_refuses_already_linked_entry(accounts):
    a = _insert("t1", accounts["chequing"], 250.0, date(2024, 3, 1), "Transfer")
    b = _insert("t2", accounts["savings"], -250.0, date(2024, 3, 1), "Transfer")
    c = _insert("t3", accounts["visa"], -250.0, date(2024, 3, 1), "Transfer")

    assert ledger_repo.link_transfer_pair(a.id, b.id, 80)
    assert not ledger_repo.link_transfer_pair(a.id, c.id, 80)
    assert _reload(c).linked_entry_id is None
    assert _reload(a).linked_entry_id == b.id
