"""
PayPal Payouts Integration Service.

Handles the PayPal Payouts API interactions:
- OAuth2 client-credentials token
- Batch payout creation (one item per payout)
- Error classification into retryable / non-retryable failures

API Docs: https://developer.paypal.com/docs/api/payments.payouts-batch/
"""
import httpx
import logging
import uuid
from decimal import Decimal
from typing import Optional, List, Dict, Any, Sequence

from payout_ledger.config import settings
from payout_ledger.models.payout import Payout


logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = {"INSUFFICIENT_FUNDS", "TRANSPORT_ERROR"}


class DisbursementFailure(Exception):
    """The processor rejected the batch; nothing was paid."""

    def __init__(self, name: str, message: str, status_code: int = 0, details: Dict = None):
        self.name = name
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(f"PayPal payout error {name} ({status_code}): {message}")

    @property
    def retryable(self) -> bool:
        return self.name in RETRYABLE_ERRORS


def format_amount(amount: int) -> str:
    """Minor units to PayPal's decimal string: 1294 -> '12.94'."""
    return str((Decimal(amount) / Decimal(100)).quantize(Decimal("0.01")))


def build_payout_items(payouts: Sequence[Payout]) -> List[Dict[str, Any]]:
    """One PayPal item per payout with a positive amount."""
    items = []
    for payout in payouts:
        if payout.amount <= 0:
            logger.debug(f"Skipping payout {payout.id} with amount {payout.amount}")
            continue
        items.append({
            "recipient_type": "EMAIL",
            "amount": {
                "value": format_amount(payout.amount),
                "currency": payout.currency.upper(),
            },
            "note": f"payeeId: {payout.payee_id}",
            "sender_item_id": payout.id,
            "receiver": payout.payout_email,
        })
    return items


class PaypalPayoutService:
    """Client for the PayPal Payouts API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.PAYPAL_API_URL).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        self.timeout = timeout or settings.PAYPAL_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        logger.error(f"PayPal API error: {response.status_code} - {response.text}")
        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            error_data = {}
        # OAuth errors use error/error_description, API errors name/message
        name = error_data.get("name") or error_data.get("error") or "UNHANDLED_ERROR"
        message = error_data.get("message") or error_data.get("error_description") or response.text
        raise DisbursementFailure(
            name=name,
            message=message,
            status_code=response.status_code,
            details={"debug_id": error_data.get("debug_id"), "details": error_data.get("details", [])},
        )

    async def _get_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )
        self._raise_for_error(response)
        token = response.json().get("access_token")
        if not token:
            raise DisbursementFailure("invalid_client", "No access_token in PayPal auth response", response.status_code)
        return token

    async def dispatch_batch(
        self,
        payouts: Sequence[Payout],
        email_subject: Optional[str] = None,
        email_message: Optional[str] = None,
    ) -> str:
        """
        Send one payout batch and return PayPal's payout_batch_id.

        Raises:
            DisbursementFailure: PayPal rejected the batch or was unreachable
        """
        items = build_payout_items(payouts)
        if not items:
            raise DisbursementFailure("VALIDATION_ERROR", "No payouts with a positive amount to disburse")

        body = {
            "sender_batch_header": {
                "sender_batch_id": f"paypal_payout_{uuid.uuid4()}",
                "email_subject": email_subject or settings.PAYPAL_PAYOUT_EMAIL_SUBJECT,
                "email_message": email_message or settings.PAYPAL_PAYOUT_EMAIL_MESSAGE,
            },
            "items": items,
        }

        try:
            async with self._client() as client:
                token = await self._get_token(client)
                response = await client.post(
                    "/v1/payments/payouts",
                    json=body,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                    },
                )
                self._raise_for_error(response)
        except httpx.HTTPError as e:
            logger.error(f"PayPal payout transport error: {e}")
            raise DisbursementFailure("TRANSPORT_ERROR", str(e)) from e

        data = response.json()
        batch_id = data.get("batch_header", {}).get("payout_batch_id")
        if not batch_id:
            raise DisbursementFailure("UNHANDLED_ERROR", "No payout_batch_id in PayPal response", response.status_code)

        logger.info(f"PayPal payout batch {batch_id} created with {len(items)} items")
        return batch_id
