"""
Checkout Service - payment initiation and status polling.

Initiation: validate device -> fraud gate -> pending payment -> optional STK push.
"""

import time
import uuid
from dataclasses import dataclass

from structlog import get_logger

from hotspot.config import Settings
from hotspot.exceptions import (
    DuplicateReferenceError,
    HighRiskError,
    InvalidRequestError,
    PaymentProviderError,
    RateLimitedError,
)
from hotspot.models.api import FraudReason, PaymentStatus
from hotspot.models.domain import DeviceInfo, FraudCheckRequest, Payment
from hotspot.services.fraud_gate import FraudGate
from hotspot.services.payment_ledger import PaymentLedger
from hotspot.services.payment_provider import ChargeRequest, PaymentProvider
from hotspot.validators import normalize_device, normalize_ip

logger = get_logger(__name__)

REFERENCE_ATTEMPTS = 5


def generate_reference() -> str:
    """8 upper-case hex characters."""
    return uuid.uuid4().hex[:8].upper()


def _peer_address(client_ip: str | None) -> str | None:
    """client_ip when it is an IP literal (test clients and proxies may send names)."""
    if not client_ip:
        return None
    try:
        return normalize_ip(client_ip)
    except InvalidRequestError:
        return None


@dataclass(frozen=True)
class CheckoutResult:
    """A created payment plus what the customer has to do next."""

    payment: Payment
    till: str
    instructions: str
    expires_in: int
    stk_push_sent: bool


class CheckoutService:
    """Creates payments for devices and reports their status."""

    def __init__(
        self,
        fraud_gate: FraudGate,
        ledger: PaymentLedger,
        settings: Settings,
        provider: PaymentProvider | None = None,
    ) -> None:
        self.fraud_gate = fraud_gate
        self.ledger = ledger
        self.settings = settings
        self.provider = provider

    async def initiate(
        self,
        mac: str | None = None,
        ip: str | None = None,
        amount: int | None = None,
        device_info: DeviceInfo | None = None,
        phone_number: str | None = None,
        client_ip: str | None = None,
    ) -> CheckoutResult:
        """
        Start a payment for a device.

        client_ip is the address the request came from; it is used for the
        device IP when none was declared and is what the IP attempt cap counts.

        Raises:
            InvalidRequestError: bad identifiers or amount
            RateLimitedError: an attempt cap was hit
            HighRiskError: risk score reached the threshold
        """
        peer_ip = _peer_address(client_ip)
        mac, ip = normalize_device(mac, ip or peer_ip)
        request_ip = peer_ip or ip

        amount = self.settings.default_payment_amount if amount is None else amount
        if not self.settings.min_payment_amount <= amount <= self.settings.max_payment_amount:
            raise InvalidRequestError(
                f"amount must be between {self.settings.min_payment_amount} "
                f"and {self.settings.max_payment_amount}"
            )

        decision = await self.fraud_gate.evaluate(
            FraudCheckRequest(amount=amount, ip=request_ip, mac=mac, device_info=device_info)
        )
        if not decision.allowed:
            reason = decision.reason or FraudReason.HIGH_RISK_SCORE
            await self.fraud_gate.report_suspicious_activity(
                reason.value, ip=request_ip, mac=mac, risk_score=decision.risk_score
            )
            logger.warning(
                "payment_blocked_by_fraud_gate",
                ip=request_ip,
                mac=mac,
                reason=reason.value,
                risk_score=decision.risk_score,
            )
            if reason in (FraudReason.IP_RATE_LIMIT, FraudReason.MAC_RATE_LIMIT):
                raise RateLimitedError(reason.value, decision.risk_score)
            raise HighRiskError(reason.value, decision.risk_score)

        payment = await self._create_payment(amount, mac, ip, device_info)

        stk_push_sent = False
        if phone_number:
            stk_push_sent = await self._send_stk_push(payment, phone_number)

        till = self.settings.mpesa_shortcode
        logger.info(
            "payment_initiated",
            reference=payment.reference,
            amount=amount,
            mac=mac,
            ip=ip,
            stk_push_sent=stk_push_sent,
        )
        return CheckoutResult(
            payment=payment,
            till=till,
            instructions=f"Send KES {amount} to Till {till} using reference {payment.reference}",
            expires_in=self.settings.match_window_seconds,
            stk_push_sent=stk_push_sent,
        )

    async def _create_payment(
        self, amount: int, mac: str | None, ip: str | None, device_info: DeviceInfo | None
    ) -> Payment:
        for attempt in range(1, REFERENCE_ATTEMPTS + 1):
            reference = generate_reference()
            try:
                return await self.ledger.create(
                    reference, amount, mac=mac, ip=ip, device_info=device_info
                )
            except DuplicateReferenceError:
                logger.warning("payment_reference_collision", reference=reference, attempt=attempt)
        raise DuplicateReferenceError(reference)

    async def _send_stk_push(self, payment: Payment, phone_number: str) -> bool:
        if self.provider is None:
            logger.info("stk_push_disabled", reference=payment.reference)
            return False
        try:
            charge = await self.provider.initiate_charge(
                ChargeRequest(
                    amount=payment.amount,
                    phone_number=phone_number,
                    account_reference=payment.reference,
                    description=f"Internet Access - {payment.reference}",
                )
            )
        except PaymentProviderError as exc:
            # The till path still works with the reference.
            logger.error("stk_push_failed", reference=payment.reference, error=exc.message)
            return False

        await self.ledger.link_checkout(payment.reference, charge.checkout_request_id)
        return True

    async def get_status(self, reference: str) -> Payment:
        """
        Current payment state.

        Pending payments older than the match window are expired on read.

        Raises:
            PaymentNotFoundError: unknown reference
        """
        payment = await self.ledger.get(reference)
        if payment.status == PaymentStatus.PENDING and self._past_window(payment):
            payment = await self.ledger.expire(reference)
        return payment

    def expires_at(self, payment: Payment) -> int:
        """Epoch ms at which an unpaid payment stops being matchable."""
        return payment.created_at + self.settings.match_window_seconds * 1000

    def _past_window(self, payment: Payment) -> bool:
        return int(time.time() * 1000) > self.expires_at(payment)
