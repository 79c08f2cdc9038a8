"""Transfer and bill-payment vocabulary shared by the record mapper and the transfer linker.

Every keyword lives in ``KEYWORDS`` under one role and is matched by one rule:
case-insensitive, on word boundaries, with an optional plural ``s``.

The linker's keyword signal fires on any ``LINK_ROLES`` term. The mapper's name
test is a strict subset of it: a transfer term on its own, or a payment term
together with a card network or issuer. Both parts of that test are link
keywords, so a name the mapper types TRANSFER always earns the linker's keyword
points. The reverse does not hold ("Bill Pay Hydro One" is a bill, not a
movement between the user's own accounts).
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

TRANSFER = "transfer"
PAYMENT = "payment"
ONLINE_BANKING = "online_banking"
CARD_NETWORK = "card_network"
CARD_ISSUER = "card_issuer"

KEYWORDS: dict[str, str] = {
    "transfer": TRANSFER,
    "e-transfer": TRANSFER,
    "etransfer": TRANSFER,
    "payment": PAYMENT,
    "pymt": PAYMENT,
    "pmt": PAYMENT,
    "bill pay": PAYMENT,
    "online banking": ONLINE_BANKING,
    "internet banking": ONLINE_BANKING,
    "credit card": CARD_NETWORK,
    "visa": CARD_NETWORK,
    "mastercard": CARD_NETWORK,
    "amex": CARD_NETWORK,
    "cibc": CARD_ISSUER,
    "rbc": CARD_ISSUER,
    "td": CARD_ISSUER,
    "bmo": CARD_ISSUER,
    "scotiabank": CARD_ISSUER,
    "tangerine": CARD_ISSUER,
}

LINK_ROLES = frozenset({TRANSFER, PAYMENT, ONLINE_BANKING, CARD_NETWORK})
CARD_ROLES = frozenset({CARD_NETWORK, CARD_ISSUER})

TRANSFER_PRIMARY_CATEGORIES = ("TRANSFER_IN", "TRANSFER_OUT")
LOAN_PAYMENT_CATEGORIES = (
    "LOAN_PAYMENTS_CREDIT_CARD_PAYMENT",
    "LOAN_PAYMENTS_MORTGAGE_PAYMENT",
    "LOAN_PAYMENTS_CAR_PAYMENT",
    "LOAN_PAYMENTS_PERSONAL_LOAN_PAYMENT",
)
TRANSFER_CATEGORY_MARKERS = TRANSFER_PRIMARY_CATEGORIES + LOAN_PAYMENT_CATEGORIES


def terms_for(*roles: str) -> tuple[str, ...]:
    return tuple(term for term, role in KEYWORDS.items() if role in roles)


def _compile(terms: Iterable[str]) -> re.Pattern:
    # Longest first so "e-transfer" wins over "transfer" in the alternation
    alternation = "|".join(re.escape(term) for term in sorted(terms, key=len, reverse=True))
    return re.compile(r"\b(?:" + alternation + r")s?\b", re.IGNORECASE)


_PATTERNS = {role: _compile(terms_for(role)) for role in set(KEYWORDS.values())}


def matched_roles(name: Optional[str]) -> set[str]:
    """Roles of every vocabulary term found in ``name``."""
    if not name:
        return set()
    return {role for role, pattern in _PATTERNS.items() if pattern.search(name)}


def has_link_keyword(*names: Optional[str]) -> bool:
    """True if any name carries a transfer, payment, banking or card-network term."""
    return any(matched_roles(name) & LINK_ROLES for name in names)


def has_transfer_category_marker(*categories: Optional[str]) -> bool:
    """True if any personal-finance category carries a transfer or loan-payment marker."""
    return any(
        category and any(marker in category for marker in TRANSFER_CATEGORY_MARKERS)
        for category in categories
    )


def is_transfer_category(
    category_path: Optional[Iterable[str]],
    pfc_primary: Optional[str],
    pfc_detailed: Optional[str],
) -> bool:
    """Provider category signals for a transfer or bill/loan payment."""
    if category_path and "Transfer" in list(category_path):
        return True
    primary = pfc_primary or ""
    detailed = pfc_detailed or ""
    if primary in TRANSFER_PRIMARY_CATEGORIES or primary == "LOAN_PAYMENTS":
        return True
    if "LOAN_PAYMENTS" in detailed or "CREDIT_CARD_PAYMENT" in detailed:
        return True
    return has_transfer_category_marker(primary, detailed)


def is_transfer_name(name: Optional[str]) -> bool:
    """Name signals: transfer language, or a payment made to a card network/issuer."""
    roles = matched_roles(name)
    if TRANSFER in roles:
        return True
    return PAYMENT in roles and bool(roles & CARD_ROLES)


def is_transfer_like(
    name: Optional[str],
    category_path: Optional[Iterable[str]] = None,
    pfc_primary: Optional[str] = None,
    pfc_detailed: Optional[str] = None,
) -> bool:
    return is_transfer_category(category_path, pfc_primary, pfc_detailed) or is_transfer_name(name)
