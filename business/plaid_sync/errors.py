from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from business.plaid_sync.models import PlaidItemStatus
from database.supabase.orm import DB_ERRORS
from integrations.plaid import PlaidAPIError, parse_plaid_error

# Plaid error codes that require the user to re-authenticate with their bank
REAUTH_ERROR_CODES = frozenset(
    {
        "ITEM_LOGIN_REQUIRED",
        "INVALID_CREDENTIALS",
        "INVALID_MFA",
        "ITEM_LOCKED",
        "USER_SETUP_REQUIRED",
        "MFA_NOT_SUPPORTED",
        "INSUFFICIENT_CREDENTIALS",
    }
)

# Plaid error codes that mean the connection is gone and must be re-created
CONSENT_ERROR_CODES = frozenset(
    {
        "ITEM_CONSENT_REVOKED",
        "ITEM_PRODUCT_NOT_READY",
        "ITEM_NOT_FOUND",
    }
)


class SyncError(Exception):
    """Base class for errors surfaced by the sync core."""


class PlaidItemNotFoundError(SyncError):
    """The requested Plaid item does not exist (or is not visible to the caller)."""


class ReauthRequiredError(SyncError):
    pass


class ConsentRevokedError(SyncError):
    pass


class TransientProviderError(SyncError):
    """Any other provider failure; the item stays eligible for the next scheduled pass."""


class PersistenceError(SyncError):
    pass


@dataclass(frozen=True)
class ErrorClassification:
    target_status: PlaidItemStatus
    message: str
    error_code: Optional[str] = None


def classify_sync_error(error: BaseException) -> ErrorClassification:
    """Map any sync failure to the item status it should leave behind.

    Total: unknown provider codes and non-provider exceptions land in ERROR.
    """
    payload = parse_plaid_error(error)
    if payload is not None and payload.error_code:
        detail = payload.display_message or payload.error_message or payload.error_code
        if payload.error_code in REAUTH_ERROR_CODES:
            return ErrorClassification(
                PlaidItemStatus.PENDING_REAUTH,
                f"Re-authentication required: {detail}",
                payload.error_code,
            )
        if payload.error_code in CONSENT_ERROR_CODES:
            return ErrorClassification(
                PlaidItemStatus.REVOKED,
                f"Consent revoked: {detail}",
                payload.error_code,
            )
        return ErrorClassification(
            PlaidItemStatus.ERROR,
            payload.error_message or str(error) or "Sync failed",
            payload.error_code,
        )
    return ErrorClassification(PlaidItemStatus.ERROR, str(error) or "Sync failed")


def describe_error(error: BaseException) -> str:
    """Error text recorded on a failed sync run."""
    payload = parse_plaid_error(error)
    if payload is not None and payload.error_code:
        if payload.error_message:
            return f"{payload.error_code}: {payload.error_message}"
        return payload.error_code
    return str(error) or type(error).__name__


def to_sync_error(error: BaseException, classification: ErrorClassification) -> BaseException:
    """Build the taxonomy error to raise for a classified failure.

    Errors that are neither provider nor persistence failures are returned unchanged.
    """
    if isinstance(error, SyncError):
        return error
    if classification.target_status is PlaidItemStatus.PENDING_REAUTH:
        return ReauthRequiredError(classification.message)
    if classification.target_status is PlaidItemStatus.REVOKED:
        return ConsentRevokedError(classification.message)
    if isinstance(error, PlaidAPIError) or classification.error_code:
        return TransientProviderError(classification.message)
    if isinstance(error, DB_ERRORS):
        return PersistenceError(classification.message)
    return error
