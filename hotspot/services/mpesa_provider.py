"""
M-Pesa Daraja Payment Provider Implementation.

Lipa Na M-Pesa Online (STK push), transaction status queries and callback
parsing. NO DICTIONARIES leave this module - results are typed dataclasses.
"""

import base64
import hashlib
import hmac
import time
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError
from structlog import get_logger

from hotspot.config import Settings
from hotspot.exceptions import (
    InvalidCallbackError,
    PaymentProviderError,
    WebhookVerificationError,
)
from hotspot.models.mpesa import StkCallbackPayload
from hotspot.services.payment_provider import (
    CallbackEvent,
    ChargeRequest,
    ChargeResult,
    VerificationResult,
)

logger = get_logger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 60


class MpesaProvider:
    """
    M-Pesa Daraja provider implementation.

    Implements the PaymentProvider protocol for Safaricom M-Pesa.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize M-Pesa provider.

        Args:
            settings: Credentials, shortcode and callback URL
            client: Optional shared HTTP client (created on demand otherwise)
        """
        self.settings = settings
        self.base_url = settings.mpesa_base_url
        self.shortcode = settings.mpesa_shortcode
        self.webhook_secret = settings.webhook_secret
        self._client = client
        self._owns_client = client is None
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.settings.mpesa_request_timeout
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_access_token(self) -> str:
        """OAuth client-credentials token, cached until shortly before it expires."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        try:
            response = await self.client.get(
                f"{self.base_url}/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=(self.settings.mpesa_consumer_key, self.settings.mpesa_consumer_secret),
            )
        except httpx.HTTPError as exc:
            logger.error("mpesa_token_request_failed", error=str(exc))
            raise PaymentProviderError(f"Token request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error("mpesa_token_rejected", status_code=response.status_code)
            raise PaymentProviderError(f"Token request rejected: {response.status_code}")

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise PaymentProviderError("Token response without access_token")

        expires_in = int(data.get("expires_in", 3599))
        self._access_token = token
        self._token_expires_at = time.monotonic() + max(
            expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0
        )
        return token

    def _password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.settings.mpesa_passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        token = await self._get_access_token()
        try:
            response = await self.client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"Request to {path} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise PaymentProviderError(
                f"Non-JSON response from {path}: {response.status_code}"
            ) from exc

        if response.status_code >= 400:
            logger.error(
                "mpesa_api_error",
                path=path,
                status_code=response.status_code,
                error=body.get("errorMessage"),
            )
            raise PaymentProviderError(
                f"API error {response.status_code}: {body.get('errorMessage', 'unknown')}"
            )
        return body

    async def initiate_charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Send an STK push to the customer's phone.

        Raises:
            PaymentProviderError: If Daraja rejects the request
        """
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": request.amount,
            "PartyA": request.phone_number,
            "PartyB": self.shortcode,
            "PhoneNumber": request.phone_number,
            "CallBackURL": self.settings.mpesa_callback_url,
            "AccountReference": request.account_reference,
            "TransactionDesc": request.description,
        }

        logger.info(
            "mpesa_stk_push_requested",
            reference=request.account_reference,
            amount=request.amount,
        )
        body = await self._post("/mpesa/stkpush/v1/processrequest", payload)

        if str(body.get("ResponseCode")) != "0" or not body.get("CheckoutRequestID"):
            logger.warning(
                "mpesa_stk_push_rejected",
                reference=request.account_reference,
                response_code=body.get("ResponseCode"),
                description=body.get("ResponseDescription"),
            )
            raise PaymentProviderError(
                f"STK push rejected: {body.get('ResponseDescription', 'no description')}"
            )

        logger.info(
            "mpesa_stk_push_sent",
            reference=request.account_reference,
            checkout_request_id=body["CheckoutRequestID"],
        )
        return ChargeResult(
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID"),
            customer_message=body.get("CustomerMessage"),
        )

    async def verify_transaction(self, provider_txn_id: str) -> VerificationResult:
        """Transaction status query. Any failure yields success=False."""
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionID": provider_txn_id,
        }
        try:
            body = await self._post("/mpesa/transactionstatus/v1/query", payload)
        except PaymentProviderError as exc:
            logger.error(
                "mpesa_transaction_verification_failed",
                provider_txn_id=provider_txn_id,
                error=exc.message,
            )
            return VerificationResult(success=False)

        result_code = body.get("ResultCode", body.get("ResponseCode"))
        result_code = None if result_code is None else str(result_code)
        return VerificationResult(
            success=result_code == "0",
            result_code=result_code,
            result_description=body.get("ResultDesc", body.get("ResponseDescription")),
        )

    def verify_signature(self, payload: bytes, signature: str | None) -> None:
        """
        Check the hex HMAC-SHA256 of the raw body.

        Without a configured secret or a signature header there is nothing
        to check and the callback is accepted.
        """
        if not signature or not self.webhook_secret:
            return

        expected = hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, signature.strip().lower()):
            logger.warning("mpesa_webhook_invalid_signature")
            raise WebhookVerificationError("invalid_signature")

    def parse_callback(self, payload: dict[str, Any]) -> CallbackEvent:
        """
        Parse Body.stkCallback.

        Raises:
            InvalidCallbackError: If required fields are missing or mistyped
        """
        try:
            callback = StkCallbackPayload.model_validate(payload).Body.stkCallback
        except ValidationError as exc:
            raise InvalidCallbackError(str(exc.errors()[0]["msg"])) from exc

        amount = callback.item("Amount")
        receipt = callback.item("MpesaReceiptNumber")
        phone = callback.item("PhoneNumber")

        try:
            parsed_amount = int(float(amount)) if amount is not None else None
        except (TypeError, ValueError) as exc:
            raise InvalidCallbackError(f"Amount is not numeric: {amount!r}") from exc

        return CallbackEvent(
            result_code=callback.ResultCode,
            result_description=callback.ResultDesc,
            checkout_request_id=callback.CheckoutRequestID,
            amount=parsed_amount,
            provider_txn_id=str(receipt) if receipt is not None else None,
            phone_number=str(phone) if phone is not None else None,
        )
