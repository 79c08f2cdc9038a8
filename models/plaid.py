from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class AccountBalance(BaseModel):
    available: Optional[float] = None
    current: Optional[float] = None
    limit: Optional[float] = None
    iso_currency_code: Optional[str] = None
    unofficial_currency_code: Optional[str] = None


class Account(BaseModel):
    account_id: str
    balances: AccountBalance
    mask: Optional[str] = None
    name: str
    official_name: Optional[str] = None
    type: str
    subtype: Optional[str] = None


class PersonalFinanceCategory(BaseModel):
    primary: Optional[str] = None
    detailed: Optional[str] = None


class Transaction(BaseModel):
    """One record from the /transactions/sync change feed."""

    transaction_id: str
    account_id: str
    amount: float  # positive = money out, negative = money in
    date: date
    authorized_date: Optional[date] = None
    name: str
    merchant_name: Optional[str] = None
    category: Optional[List[str]] = None
    category_id: Optional[str] = None
    personal_finance_category: Optional[PersonalFinanceCategory] = None
    payment_channel: Optional[str] = None
    pending: bool = False
    pending_transaction_id: Optional[str] = None
    iso_currency_code: Optional[str] = None
    unofficial_currency_code: Optional[str] = None


class RemovedTransaction(BaseModel):
    transaction_id: str
    account_id: Optional[str] = None


class ChangeFeedPage(BaseModel):
    added: List[Transaction] = Field(default_factory=list)
    modified: List[Transaction] = Field(default_factory=list)
    removed: List[RemovedTransaction] = Field(default_factory=list)
    next_cursor: str
    has_more: bool


class PlaidErrorPayload(BaseModel):
    error_type: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    display_message: Optional[str] = None
    request_id: Optional[str] = None


class PublicTokenExchange(BaseModel):
    item_id: str
    access_token: str


class LinkToken(BaseModel):
    link_token: str
    expiration: Optional[datetime] = None
