"""
PhonePe payment gateway client.

Provides:
- Pay-page initiation (returns the redirect URL)
- Callback signature verification and payload decoding
- Transaction status polling

Requests are signed with ``X-VERIFY = sha256(payload_b64 + endpoint + salt_key)
+ "###" + salt_index``. Amounts go to PhonePe in paise.
"""

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.currency import rupees_to_paise
from libs.common.logging import get_logger

logger = get_logger(__name__)

PAY_ENDPOINT = "/pg/v1/pay"
STATUS_ENDPOINT = "/pg/v1/status/{merchant_id}/{transaction_id}"

# PhonePe state → internal payment status value
GATEWAY_STATE_MAP = {
    "COMPLETED": "success",
    "PENDING": "pending",
}


@dataclass
class PaymentInitiation:
    """Result of initiating a pay-page payment."""

    transaction_id: str
    redirect_url: str
    request_payload: dict
    response_data: dict


@dataclass
class CallbackData:
    """Decoded callback/status payload."""

    merchant_transaction_id: Optional[str]
    provider_reference: Optional[str]
    amount_paise: Optional[int]
    state: Optional[str]
    response_code: Optional[str]
    raw: dict


class PhonePeError(Exception):
    """Base exception for PhonePe API errors."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


def map_gateway_state(state: Optional[str]) -> str:
    """COMPLETED → success, PENDING → pending, anything else → failed."""
    return GATEWAY_STATE_MAP.get((state or "").upper(), "failed")


def encode_payload(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def sign(payload_b64: str, suffix: str, salt_key: str, salt_index: str) -> str:
    digest = hashlib.sha256(f"{payload_b64}{suffix}{salt_key}".encode("utf-8"))
    return f"{digest.hexdigest()}###{salt_index}"


def decode_callback_payload(payload_b64: str) -> CallbackData:
    """Decode a base64 JSON callback. Raises ValueError on malformed input."""
    try:
        decoded = json.loads(base64.b64decode(payload_b64, validate=True))
    except (ValueError, TypeError) as e:
        raise ValueError(f"Malformed callback payload: {e}") from e
    if not isinstance(decoded, dict):
        raise ValueError("Malformed callback payload: expected an object")

    data = decoded.get("data") or {}
    if not isinstance(data, dict):
        raise ValueError("Malformed callback payload: data must be an object")
    return CallbackData(
        merchant_transaction_id=data.get("merchantTransactionId"),
        provider_reference=data.get("transactionId"),
        amount_paise=data.get("amount"),
        state=data.get("state") or decoded.get("code"),
        response_code=data.get("responseCode"),
        raw=decoded,
    )


class PhonePeClient:
    """Async client for the PhonePe PG v1 API."""

    def __init__(
        self,
        merchant_id: str = None,
        salt_key: str = None,
        salt_index: str = None,
        base_url: str = None,
        callback_url: str = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        settings = get_settings()
        self.merchant_id = merchant_id or settings.PHONEPE_MERCHANT_ID
        self.salt_key = salt_key or settings.PHONEPE_SALT_KEY
        self.salt_index = salt_index or settings.PHONEPE_SALT_INDEX
        self.base_url = (base_url or settings.PHONEPE_BASE_URL).rstrip("/")
        self.callback_url = callback_url or settings.PHONEPE_CALLBACK_URL
        self.frontend_url = settings.FRONTEND_URL
        if not self.salt_key:
            raise ValueError("PHONEPE_SALT_KEY is required")
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        headers: dict,
        json_data: dict = None,
    ) -> dict:
        """Make an async request to the PhonePe API."""
        url = f"{self.base_url}{endpoint}"

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            try:
                response = await client.request(
                    method=method, url=url, headers=headers, json=json_data
                )
            except httpx.HTTPError as e:
                logger.error("PhonePe transport error on %s: %s", endpoint, e)
                raise PhonePeError(message=f"PhonePe unreachable: {e}") from e

            try:
                data = response.json()
            except ValueError:
                data = {"message": response.text}

            if not response.is_success:
                logger.error(
                    "PhonePe API error: %s - %s", response.status_code, data
                )
                raise PhonePeError(
                    message=data.get("message", "Unknown PhonePe error"),
                    status_code=response.status_code,
                    response_data=data,
                )

            return data

    def x_verify(self, payload_b64: str, endpoint: str) -> str:
        return sign(payload_b64, endpoint, self.salt_key, self.salt_index)

    def verify_callback(self, payload_b64: str, x_verify_header: str) -> bool:
        """Constant-time check of a callback's ``X-VERIFY`` header."""
        expected = sign(payload_b64, "", self.salt_key, self.salt_index)
        return hmac.compare_digest(
            expected.encode("utf-8"), (x_verify_header or "").encode("utf-8")
        )

    # =========================================================================
    # Payment Methods
    # =========================================================================

    async def initiate_payment(
        self,
        *,
        order_id: str,
        amount: Decimal,
        transaction_id: str,
        phone: Optional[str] = None,
    ) -> PaymentInitiation:
        """
        Start a pay-page payment.

        Args:
            order_id: Store order id (sent as merchantUserId and in the return URL)
            amount: Amount in rupees
            transaction_id: Our unique merchant transaction id
            phone: Optional customer mobile number

        Returns:
            PaymentInitiation with the redirect URL

        Raises:
            PhonePeError: If PhonePe rejects the request
        """
        payload = {
            "merchantId": self.merchant_id,
            "merchantTransactionId": transaction_id,
            "merchantUserId": order_id,
            "amount": rupees_to_paise(amount),
            "redirectUrl": f"{self.frontend_url}/payment-status?orderId={order_id}",
            "redirectMode": "REDIRECT",
            "callbackUrl": self.callback_url,
            "mobileNumber": phone,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        payload_b64 = encode_payload(payload)

        data = await self._request(
            "POST",
            PAY_ENDPOINT,
            headers={
                "Content-Type": "application/json",
                "X-VERIFY": self.x_verify(payload_b64, PAY_ENDPOINT),
            },
            json_data={"request": payload_b64},
        )

        if not data.get("success"):
            raise PhonePeError(
                message=data.get("message", "PhonePe initiation failed"),
                response_data=data,
            )

        redirect_url = (
            ((data.get("data") or {}).get("instrumentResponse") or {})
            .get("redirectInfo", {})
            .get("url")
        )
        if not redirect_url:
            raise PhonePeError(
                message="PhonePe response missing redirect URL", response_data=data
            )

        return PaymentInitiation(
            transaction_id=transaction_id,
            redirect_url=redirect_url,
            request_payload=payload,
            response_data=data,
        )

    async def check_status(self, transaction_id: str) -> CallbackData:
        """Poll PhonePe for a transaction's current state."""
        endpoint = STATUS_ENDPOINT.format(
            merchant_id=self.merchant_id, transaction_id=transaction_id
        )
        data = await self._request(
            "GET",
            endpoint,
            headers={
                "Content-Type": "application/json",
                "X-VERIFY": self.x_verify("", endpoint),
                "X-MERCHANT-ID": self.merchant_id,
            },
        )
        inner = data.get("data") or {}
        if not isinstance(inner, dict):
            raise PhonePeError(
                message="PhonePe status response malformed", response_data=data
            )
        return CallbackData(
            merchant_transaction_id=inner.get("merchantTransactionId", transaction_id),
            provider_reference=inner.get("transactionId"),
            amount_paise=inner.get("amount"),
            state=inner.get("state") or data.get("code"),
            response_code=inner.get("responseCode"),
            raw=data,
        )


def get_phonepe_client() -> PhonePeClient:
    """Get a PhonePeClient instance (FastAPI dependency)."""
    return PhonePeClient()
