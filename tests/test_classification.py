import pytest

from business.plaid_sync.classification import (
    CARD_ISSUER,
    CARD_NETWORK,
    KEYWORDS,
    PAYMENT,
    TRANSFER,
    has_link_keyword,
    has_transfer_category_marker,
    is_transfer_category,
    is_transfer_like,
    is_transfer_name,
    terms_for,
)
from business.plaid_sync.mappers import derive_kind
from business.plaid_sync.models import TransactionKind


def test_link_keyword_is_case_insensitive():
    assert has_link_keyword("ONLINE BANKING TRANSFER")
    assert has_link_keyword("Mastercard autopay")
    assert not has_link_keyword("Tim Hortons #123")


def test_link_keyword_checks_every_name():
    assert has_link_keyword("Tim Hortons", "VISA Payment")
    assert not has_link_keyword(None, "", "Grocery Store")


def test_transfer_category_markers():
    assert has_transfer_category_marker("TRANSFER_IN_ACCOUNT_TRANSFER")
    assert has_transfer_category_marker(None, "LOAN_PAYMENTS_CREDIT_CARD_PAYMENT")
    assert not has_transfer_category_marker("FOOD_AND_DRINK", None)


def test_transfer_category_from_legacy_path_and_pfc():
    assert is_transfer_category(["Transfer", "Debit"], None, None)
    assert is_transfer_category(None, "LOAN_PAYMENTS", None)
    assert is_transfer_category(None, "GENERAL_MERCHANDISE", "LOAN_PAYMENTS_CAR_PAYMENT")
    assert not is_transfer_category(["Food and Drink", "Restaurants"], "FOOD_AND_DRINK", None)


def test_transfer_name_signals():
    assert is_transfer_name("Interac e-Transfer to J. Smith")
    assert is_transfer_name("PAYMENT - THANK YOU VISA")
    assert is_transfer_name("TD pymt")


def test_payment_word_needs_a_card_issuer():
    assert not is_transfer_name("Gym membership payment")
    # "td" inside another word is not the issuer
    assert not is_transfer_name("Outdoor gear payment")
    assert not is_transfer_name(None)


def test_transfer_like_combines_name_and_category():
    assert is_transfer_like("Coffee", pfc_primary="TRANSFER_OUT")
    assert is_transfer_like("Transfer to savings")
    assert not is_transfer_like("Coffee", ["Food and Drink"], "FOOD_AND_DRINK", "FOOD_AND_DRINK_COFFEE")


def test_keywords_match_whole_words_only():
    assert has_link_keyword("Transfers between accounts")
    assert not has_link_keyword("Visalia Farmers Market")
    assert not has_link_keyword("Transferwise Ltd")


def _vocabulary_names():
    names = []
    for term in KEYWORDS:
        names += [term.upper(), f"Sent {term} today"]
    for payment in terms_for(PAYMENT):
        for card in terms_for(CARD_NETWORK, CARD_ISSUER):
            names += [f"{payment} {card}", f"{card.upper()} {payment}"]
    return names


@pytest.mark.parametrize("name", _vocabulary_names())
def test_mapper_transfer_names_always_earn_link_keyword(name):
    if is_transfer_name(name):
        assert has_link_keyword(name)


def test_payment_to_any_card_is_a_transfer_name():
    for payment in terms_for(PAYMENT):
        for card in terms_for(CARD_NETWORK, CARD_ISSUER):
            assert is_transfer_name(f"{payment} {card}"), (payment, card)


@pytest.mark.parametrize(
    "name",
    ["Bill Pay Hydro One", "Online Banking Payment", "PAYMENT THANK YOU", "Amex"],
)
def test_link_keyword_without_transfer_typing(name):
    # Bills and bare card mentions score as link hints but stay expenses
    assert has_link_keyword(name)
    assert not is_transfer_name(name)
    assert derive_kind(amount=100.0, name=name) is TransactionKind.EXPENSE


@pytest.mark.parametrize("term", terms_for(TRANSFER))
def test_transfer_terms_type_the_entry_and_earn_keyword(term):
    name = f"Interac {term} to J. Smith"
    assert has_link_keyword(name)
    assert derive_kind(amount=40.0, name=name) is TransactionKind.TRANSFER
