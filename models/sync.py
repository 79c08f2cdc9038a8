from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel


class ConnectItemRequest(BaseModel):
    public_token: str
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None


class PlaidItemResponse(BaseModel):
    id: str
    item_id: str
    institution_id: Optional[str]
    institution_name: Optional[str]
    status: str  # ACTIVE | ERROR | PENDING_REAUTH | REVOKED
    last_sync_at: Optional[datetime]
    last_error: Optional[str]
    consent_expires_at: Optional[datetime]
    created_at: Optional[datetime]


class AccountResponse(BaseModel):
    id: str
    plaid_account_id: str
    name: str
    official_name: Optional[str]
    mask: Optional[str]
    type: str
    subtype: Optional[str]
    current_balance: Optional[float]
    available_balance: Optional[float]
    limit_amount: Optional[float]
    iso_currency_code: str
    last_balance_update: Optional[datetime]


class PlaidItemDetailResponse(PlaidItemResponse):
    accounts: List[AccountResponse]


class PlaidItemsResponse(BaseModel):
    items: List[PlaidItemResponse]


class SyncResultResponse(BaseModel):
    added: int
    modified: int
    removed: int
    accounts_updated: int


class ItemSyncResponse(SyncResultResponse):
    plaid_item_id: str


class SyncAllResponse(BaseModel):
    items: List[ItemSyncResponse]
    started_at: datetime
    finished_at: datetime


class SyncRunResponse(BaseModel):
    id: str
    plaid_item_id: str
    institution_name: Optional[str]
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


class SyncLogsResponse(BaseModel):
    runs: List[SyncRunResponse]


class TransferDetectionResponse(BaseModel):
    linked: int


class SchedulerStatusResponse(BaseModel):
    enabled: bool
    running: bool
    syncing: bool


class PlaidStatusResponse(BaseModel):
    configured: bool
    environment: str


class LinkTokenResponse(BaseModel):
    link_token: str
    expiration: Optional[datetime] = None


class LedgerEntryResponse(BaseModel):
    id: str
    account_id: str
    plaid_transaction_id: str
    date: date
    authorized_date: Optional[date]
    amount: float  # positive = money out
    kind: str  # INCOME | EXPENSE | TRANSFER
    name: str
    merchant_name: Optional[str]
    plaid_category: Optional[str]
    personal_finance_category: Optional[str]
    iso_currency_code: str
    pending: bool
    notes: Optional[str]
    category_override: Optional[str]
    tags: List[str]
    is_reviewed: bool
    linked_entry_id: Optional[str]
    linked_confidence: Optional[int]


class LedgerEntriesResponse(BaseModel):
    entries: List[LedgerEntryResponse]


class LedgerAnnotationRequest(BaseModel):
    notes: Optional[str] = None
    category_override: Optional[str] = None
    tags: Optional[List[str]] = None
    is_reviewed: Optional[bool] = None
