from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class PlaidItemStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"
    PENDING_REAUTH = "PENDING_REAUTH"
    REVOKED = "REVOKED"


class SyncType(str, Enum):
    INITIAL = "INITIAL"
    INCREMENTAL = "INCREMENTAL"
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"


class SyncStatus(str, Enum):
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TransactionKind(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class AccountType(str, Enum):
    DEPOSITORY = "depository"
    CREDIT = "credit"
    LOAN = "loan"
    INVESTMENT = "investment"
    BROKERAGE = "brokerage"
    OTHER = "other"


@dataclass
class SyncResult:
    added: int = 0
    modified: int = 0
    removed: int = 0
    accounts_updated: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "modified": self.modified,
            "removed": self.removed,
            "accounts_updated": self.accounts_updated,
        }


@dataclass
class PageCounts:
    """Ledger changes applied from a single change-feed page."""

    added: int = 0
    modified: int = 0
    removed: int = 0
    skipped: int = 0


@dataclass
class SchedulerRunSummary:
    items: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: bool = False
    duration_ms: int = 0
