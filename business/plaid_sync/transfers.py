"""Transfer detection between a user's accounts.

Two ledger entries are treated as the two sides of one money movement when they
sit on different accounts, their amounts (nearly) cancel out, and they are dated
within a few days of each other. Category and keyword signals only break ties;
the amount and date gates are hard requirements.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, Protocol

from business.plaid_sync.classification import has_link_keyword, has_transfer_category_marker
from business.plaid_sync.models import TransactionKind
from database.supabase import ledger_entry as ledger_repo
from utils.constants import TRANSFER_LINK_THRESHOLD, TRANSFER_LINK_WINDOW_DAYS

logger = logging.getLogger(__name__)


class LinkableEntry(Protocol):
    id: str
    account_id: str
    date: date
    amount: float
    kind: str
    name: str
    personal_finance_category: Optional[str]
    personal_finance_category_detailed: Optional[str]


@dataclass(frozen=True)
class LinkPolicy:
    """Scoring weights for transfer pairs.

    The weights have no calibration data behind them; they are kept stable so
    confidences stay comparable across runs.
    """

    threshold: int = TRANSFER_LINK_THRESHOLD
    window_days: int = TRANSFER_LINK_WINDOW_DAYS
    exact_amount_epsilon: float = 0.02
    near_amount_ratio: float = 0.01
    exact_amount_score: int = 50
    near_amount_score: int = 40
    # Index = day gap
    date_scores: tuple[int, ...] = field(default=(25, 20, 15, 10))
    category_score: int = 10
    keyword_score: int = 5
    max_score: int = 100

    def __post_init__(self):
        # Every day inside the window must earn date points
        if not 0 <= self.window_days < len(self.date_scores):
            raise ValueError(
                f"window_days must be between 0 and {len(self.date_scores) - 1}, got {self.window_days}"
            )


DEFAULT_POLICY = LinkPolicy()


def _amount_score(amount_a: float, amount_b: float, policy: LinkPolicy) -> int:
    total = abs(amount_a + amount_b)
    if total < policy.exact_amount_epsilon:
        return policy.exact_amount_score
    magnitude = abs(amount_a)
    if magnitude > 0 and total / magnitude < policy.near_amount_ratio:
        return policy.near_amount_score
    return 0


def _date_score(days_apart: int, policy: LinkPolicy) -> int:
    if days_apart < len(policy.date_scores):
        return policy.date_scores[days_apart]
    return 0


def _is_transfer_typed(entry: LinkableEntry) -> bool:
    return entry.kind == TransactionKind.TRANSFER.value or has_transfer_category_marker(
        entry.personal_finance_category, entry.personal_finance_category_detailed
    )


def compute_link_confidence(
    a: LinkableEntry, b: LinkableEntry, policy: LinkPolicy = DEFAULT_POLICY
) -> int:
    """Confidence (0-100) that ``a`` and ``b`` are the two sides of one transfer."""
    if a.account_id == b.account_id:
        return 0

    score = _amount_score(a.amount, b.amount, policy)
    if score == 0:
        return 0

    days_apart = abs((a.date - b.date).days)
    if days_apart > policy.window_days:
        return 0
    score += _date_score(days_apart, policy)

    if _is_transfer_typed(a) or _is_transfer_typed(b):
        score += policy.category_score

    if has_link_keyword(a.name, b.name):
        score += policy.keyword_score

    return min(score, policy.max_score)


def detect_transfers(user_id: str, policy: Optional[LinkPolicy] = None) -> int:
    """Link unlinked, settled entries of a user to their best transfer counterpart.

    Returns the number of newly linked pairs. Entries that are already linked are
    never candidates, so running this twice in a row links nothing the second time.
    """
    policy = policy or DEFAULT_POLICY
    unlinked = ledger_repo.list_unlinked_settled_entries(user_id)

    by_date: dict[date, list] = defaultdict(list)
    for entry in unlinked:
        by_date[entry.date].append(entry)

    linked: set[str] = set()
    linked_count = 0

    for entry in unlinked:
        if entry.id in linked:
            continue

        # (score, days apart, discovery order, candidate)
        candidates = []
        for offset in range(-policy.window_days, policy.window_days + 1):
            for candidate in by_date.get(entry.date + timedelta(days=offset), ()):
                if candidate.id == entry.id or candidate.id in linked:
                    continue
                if candidate.account_id == entry.account_id:
                    continue
                confidence = compute_link_confidence(entry, candidate, policy)
                if confidence >= policy.threshold:
                    candidates.append((confidence, abs(offset), len(candidates), candidate))

        if not candidates:
            continue

        confidence, _, _, best = min(candidates, key=lambda c: (-c[0], c[1], c[2]))
        if not ledger_repo.link_transfer_pair(entry.id, best.id, confidence):
            continue

        linked.add(entry.id)
        linked.add(best.id)
        linked_count += 1
        logger.info(
            f"Linked transfer {entry.plaid_transaction_id} <-> {best.plaid_transaction_id} "
            f"(confidence {confidence})"
        )

    return linked_count
