"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class ChargeRequest:
    """
    Provider-agnostic charge request.

    Asks the provider to prompt the customer's phone for payment.
    """

    amount: int
    phone_number: str
    account_reference: str  # our payment reference, echoed back by the provider
    description: str


@dataclass(frozen=True)
class ChargeResult:
    """
    Provider-agnostic charge result.

    Returned once the provider accepted the charge request (not once it is paid).
    """

    checkout_request_id: str
    merchant_request_id: str | None
    customer_message: str | None


@dataclass(frozen=True)
class CallbackEvent:
    """
    Provider-agnostic payment notification.

    Parsed from the provider's asynchronous callback.
    """

    result_code: int
    result_description: str
    checkout_request_id: str | None
    amount: int | None
    provider_txn_id: str | None
    phone_number: str | None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


@dataclass(frozen=True)
class VerificationResult:
    """Result of a transaction status query."""

    success: bool
    result_code: str | None = None
    result_description: str | None = None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any mobile-money provider must implement this interface.
    This keeps the access gateway provider-agnostic.
    """

    async def initiate_charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Ask the provider to charge the customer.

        Args:
            request: Charge details

        Returns:
            Provider identifiers for the pending charge

        Raises:
            PaymentProviderError: If the provider rejects the request
        """
        ...

    async def verify_transaction(self, provider_txn_id: str) -> VerificationResult:
        """
        Query the provider for a completed transaction.

        Args:
            provider_txn_id: Provider transaction/receipt ID

        Returns:
            Verification result; transport failures yield success=False
        """
        ...

    def verify_signature(self, payload: bytes, signature: str | None) -> None:
        """
        Verify the callback signature.

        Raises:
            WebhookVerificationError: If the signature does not match
        """
        ...

    def parse_callback(self, payload: dict[str, Any]) -> CallbackEvent:
        """
        Parse a callback document.

        Raises:
            InvalidCallbackError: If the payload is structurally invalid
        """
        ...
