import json
import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, List, Optional

import plaid
from cryptography.fernet import Fernet, InvalidToken
from plaid.api import plaid_api
from plaid.configuration import Environment
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import (
    ItemPublicTokenExchangeRequest,
)
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_sync_request import (
    TransactionsSyncRequest,
)

from models.plaid import (
    Account,
    AccountBalance,
    ChangeFeedPage,
    LinkToken,
    PlaidErrorPayload,
    PublicTokenExchange,
    RemovedTransaction,
    Transaction,
)
from utils.constants import (
    ENCRYPTION_KEY,
    PLAID_CLIENT_ID,
    PLAID_CLIENT_NAME,
    PLAID_COUNTRY_CODES,
    PLAID_ENV,
    PLAID_SECRET,
    PLAID_SYNC_PAGE_SIZE,
)

logger = logging.getLogger(__name__)


class PlaidError(Exception):
    """Base exception for Plaid integration errors"""

    pass


class PlaidConfigurationError(PlaidError):
    """Raised when Plaid configuration is missing or invalid"""

    pass


class PlaidTokenError(PlaidError):
    """Raised when token operations fail"""

    pass


class PlaidAPIError(PlaidError):
    """Raised when Plaid API calls fail.

    ``payload`` carries Plaid's structured error body when the failure came from
    the API itself; transport failures leave it as None.
    """

    def __init__(self, message: str, payload: Optional[PlaidErrorPayload] = None) -> None:
        super().__init__(message)
        self.payload = payload

    @property
    def error_code(self) -> Optional[str]:
        return self.payload.error_code if self.payload else None


def parse_plaid_error(error: BaseException) -> Optional[PlaidErrorPayload]:
    """Extract Plaid's error body from an ApiException, if it has one."""
    if isinstance(error, PlaidAPIError):
        return error.payload
    body = getattr(error, "body", None)
    if not body:
        return None
    try:
        data = json.loads(body) if isinstance(body, (str, bytes)) else dict(body)
    except (ValueError, TypeError):
        return None
    if not data.get("error_code") or not data.get("error_type"):
        return None
    return PlaidErrorPayload(**data)


def is_plaid_configured() -> bool:
    """True when credentials and the token encryption key are all set"""
    return bool(PLAID_CLIENT_ID and PLAID_SECRET and ENCRYPTION_KEY)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _to_dict(obj: Any) -> dict[str, Any]:
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


class PlaidClient:
    """Plaid API client with encryption and error handling"""

    def __init__(self) -> None:
        self.client_id = PLAID_CLIENT_ID
        self.secret = PLAID_SECRET
        self.page_size = PLAID_SYNC_PAGE_SIZE

        # Map environment string to Plaid Environment enum
        env_upper = PLAID_ENV.upper()
        if env_upper == "SANDBOX":
            self.env = Environment.Sandbox
        elif env_upper == "PRODUCTION":
            self.env = Environment.Production
        else:
            logger.warning(
                f"Unknown Plaid environment '{PLAID_ENV}', defaulting to Sandbox"
            )
            self.env = Environment.Sandbox

        if not all([self.client_id, self.secret]):
            raise PlaidConfigurationError(
                "Missing Plaid credentials in environment variables"
            )

        configuration = plaid.Configuration(
            host=self.env,
            api_key={
                "clientId": self.client_id,
                "secret": self.secret,
            },
        )

        api_client = plaid.ApiClient(configuration)
        self.plaid_client = plaid_api.PlaidApi(api_client)

        if not ENCRYPTION_KEY:
            raise PlaidConfigurationError("ENCRYPTION_KEY environment variable not set")

        self.fernet = Fernet(
            ENCRYPTION_KEY.encode()
            if isinstance(ENCRYPTION_KEY, str)
            else ENCRYPTION_KEY
        )

        logger.info(f"Plaid client initialized for environment: {PLAID_ENV}")

    def encrypt_token(self, token: str) -> str:
        """Encrypt access token before storing"""
        try:
            encrypted = self.fernet.encrypt(token.encode())
            return encrypted.decode()
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to encrypt token: {e}")
            raise PlaidTokenError(f"Token encryption failed: {e}") from e

    def decrypt_token(self, encrypted_token: str) -> str:
        """Decrypt access token from storage"""
        try:
            decrypted = self.fernet.decrypt(encrypted_token.encode())
            return decrypted.decode()
        except (InvalidToken, TypeError, ValueError) as e:
            logger.error(f"Failed to decrypt token: {e}")
            raise PlaidTokenError(f"Token decryption failed: {e}") from e

    def create_link_token(
        self, user_id: str, access_token: Optional[str] = None
    ) -> LinkToken:
        """Create a link token for Plaid Link initialization.

        With ``access_token`` the token opens Link in update mode, which is how a
        user repairs an item that needs re-authentication.
        """
        try:
            request_payload: dict[str, Any] = {
                "client_name": PLAID_CLIENT_NAME,
                "country_codes": [CountryCode(code.strip()) for code in PLAID_COUNTRY_CODES],
                "language": "en",
                "user": LinkTokenCreateRequestUser(client_user_id=user_id),
            }
            if access_token:
                request_payload["access_token"] = access_token
            else:
                request_payload["products"] = [Products("transactions")]

            request = LinkTokenCreateRequest(**request_payload)
            response = self.plaid_client.link_token_create(request)
            mode = "update" if access_token else "new"
            logger.info(f"Link token ({mode}) created for user: {user_id}")
            return LinkToken(link_token=response.link_token, expiration=response.expiration)
        except Exception as e:
            logger.error(f"Failed to create link token for user {user_id}: {e}")
            raise PlaidAPIError(
                f"Failed to create link token: {e}", parse_plaid_error(e)
            ) from e

    def exchange_public_token(self, public_token: str) -> PublicTokenExchange:
        """Exchange a Link public token for a long-lived access token"""
        try:
            request = ItemPublicTokenExchangeRequest(public_token=public_token)
            response = self.plaid_client.item_public_token_exchange(request)
            logger.info(f"Public token exchanged for item {response.item_id}")
            return PublicTokenExchange(
                item_id=response.item_id, access_token=response.access_token
            )
        except Exception as e:
            logger.error(f"Failed to exchange public token: {e}")
            raise PlaidAPIError(
                f"Failed to exchange public token: {e}", parse_plaid_error(e)
            ) from e

    def get_consent_expiration(self, access_token: str) -> Optional[datetime]:
        """Return the item's consent expiration time, if the institution sets one"""
        try:
            request = ItemGetRequest(access_token=access_token)
            response = self.plaid_client.item_get(request)
            return getattr(response.item, "consent_expiration_time", None)
        except Exception as e:
            logger.error(f"Failed to get item details: {e}")
            raise PlaidAPIError(
                f"Failed to get item details: {e}", parse_plaid_error(e)
            ) from e

    def get_accounts(self, access_token: str) -> List[Account]:
        """Get accounts with their latest balances for one item"""
        try:
            request = AccountsGetRequest(access_token=access_token)
            response = self.plaid_client.accounts_get(request)

            accounts = []
            for account in response.accounts:
                balances = account.balances
                accounts.append(
                    Account(
                        account_id=account.account_id,
                        balances=AccountBalance(
                            available=balances.get("available"),
                            current=balances.get("current"),
                            limit=balances.get("limit"),
                            iso_currency_code=balances.get("iso_currency_code"),
                            unofficial_currency_code=balances.get("unofficial_currency_code"),
                        ),
                        mask=account.get("mask"),
                        name=account.name,
                        official_name=account.get("official_name"),
                        type=str(_enum_value(account.type)),
                        subtype=_enum_value(account.get("subtype")),
                    )
                )

            logger.info(f"Retrieved {len(accounts)} accounts")
            return accounts

        except Exception as e:
            logger.error(f"Failed to get accounts: {e}")
            raise PlaidAPIError(
                f"Failed to retrieve accounts: {e}", parse_plaid_error(e)
            ) from e

    def transactions_sync_page(
        self, access_token: str, cursor: Optional[str] = None
    ) -> ChangeFeedPage:
        """Fetch a single /transactions/sync page.

        The cursor is forwarded verbatim; None requests the item's full history.
        """
        try:
            request_payload: dict[str, Any] = {
                "access_token": access_token,
                "count": self.page_size,
            }
            if cursor:
                request_payload["cursor"] = cursor

            request = TransactionsSyncRequest(**request_payload)
            response = self.plaid_client.transactions_sync(request)

            return ChangeFeedPage(
                added=[Transaction.model_validate(_to_dict(t)) for t in response.added or []],
                modified=[Transaction.model_validate(_to_dict(t)) for t in response.modified or []],
                removed=[
                    RemovedTransaction.model_validate(_to_dict(r))
                    for r in response.removed or []
                ],
                next_cursor=response.next_cursor,
                has_more=bool(response.has_more),
            )
        except Exception as e:
            logger.error(f"Failed to sync transactions page: {e}")
            raise PlaidAPIError(
                f"Failed to sync transactions page: {e}", parse_plaid_error(e)
            ) from e

    def remove_item(self, access_token: str) -> bool:
        """Invalidate the access token on Plaid's side"""
        try:
            request = ItemRemoveRequest(access_token=access_token)
            self.plaid_client.item_remove(request)
            return True
        except Exception as e:
            logger.error(f"Failed to remove item: {e}")
            raise PlaidAPIError(
                f"Failed to remove item: {e}", parse_plaid_error(e)
            ) from e


@lru_cache(maxsize=1)
def get_plaid_client() -> PlaidClient:
    """Process-wide Plaid client, created on first use."""
    return PlaidClient()
