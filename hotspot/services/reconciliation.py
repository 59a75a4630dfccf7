"""
Webhook Reconciliation - turns provider callbacks into access.

Callback -> payment resolution -> confirm -> (grant || session).

The provider answers asynchronously and may deliver the same callback more
than once. Only the caller that wins PaymentLedger.confirm activates access,
and a receipt confirms at most one payment: a redelivery that amount-matches
a different pending payment is reported as a duplicate."""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

from structlog import get_logger

from hotspot.config import Settings
from hotspot.exceptions import (
    InvalidCallbackError,
    InvalidRequestError,
    ReceiptAlreadyUsedError,
    VerificationFailedError,
    WebhookVerificationError,
)
from hotspot.models.api import PaymentStatus
from hotspot.models.domain import Payment
from hotspot.observability.logging import log_context
from hotspot.observability.metrics import metrics
from hotspot.observability.tracing import get_tracer
from hotspot.services.access_orchestrator import AccessOrchestrator
from hotspot.services.payment_ledger import PaymentLedger
from hotspot.services.payment_provider import CallbackEvent, PaymentProvider
from hotspot.services.session_registry import SessionRegistry

logger = get_logger(__name__)
tracer = get_tracer(__name__)


@dataclass(frozen=True)
class CallbackOutcome:
    """What a callback did. Every outcome is acknowledged to the provider."""

    outcome: str  # confirmed | duplicate | rejected | unmatched | failed | ignored
    reference: str | None = None


class WebhookReconciler:
    """Handles provider callbacks and manual reconciliation."""

    def __init__(
        self,
        ledger: PaymentLedger,
        orchestrator: AccessOrchestrator,
        sessions: SessionRegistry,
        provider: PaymentProvider,
        settings: Settings,
    ) -> None:
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.sessions = sessions
        self.provider = provider
        self.settings = settings

    async def handle_callback(
        self,
        raw_body: bytes,
        signature: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> CallbackOutcome:
        """
        Process one provider callback.

        Raises:
            WebhookVerificationError: signature mismatch
            InvalidCallbackError: body is not a parseable callback
        """
        with tracer.start_as_current_span("webhook_reconcile") as span:
            try:
                self.provider.verify_signature(raw_body, signature)
            except WebhookVerificationError:
                metrics.record_webhook("invalid_signature")
                raise

            try:
                document = payload if payload is not None else json.loads(raw_body)
                if not isinstance(document, dict):
                    raise InvalidCallbackError("callback body is not an object")
                event = self.provider.parse_callback(document)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                metrics.record_webhook("invalid_payload")
                raise InvalidCallbackError(f"body is not JSON: {exc}") from exc
            except InvalidCallbackError:
                metrics.record_webhook("invalid_payload")
                raise

            span.set_attribute("result_code", event.result_code)
            if event.checkout_request_id:
                span.set_attribute("checkout_request_id", event.checkout_request_id)

            if not event.succeeded:
                outcome = await self._handle_failure(event)
            else:
                outcome = await self._handle_success(event)

            if outcome.reference:
                span.set_attribute("reference", outcome.reference)
            span.set_attribute("outcome", outcome.outcome)

        metrics.record_webhook(outcome.outcome)
        return outcome

    async def _handle_failure(self, event: CallbackEvent) -> CallbackOutcome:
        logger.info(
            "payment_callback_failed",
            result_code=event.result_code,
            description=event.result_description,
            checkout_request_id=event.checkout_request_id,
        )
        if not event.checkout_request_id:
            return CallbackOutcome(outcome="ignored")

        payment = await self.ledger.find_by_checkout_id(event.checkout_request_id)
        if payment is None or payment.status != PaymentStatus.PENDING:
            return CallbackOutcome(outcome="ignored")

        await self.ledger.fail(payment.reference)
        return CallbackOutcome(outcome="failed", reference=payment.reference)

    async def _handle_success(self, event: CallbackEvent) -> CallbackOutcome:
        payment = await self._resolve_payment(event)
        if payment is None:
            logger.warning(
                "payment_callback_unmatched",
                amount=event.amount,
                phone_number=event.phone_number,
                provider_txn_id=event.provider_txn_id,
                checkout_request_id=event.checkout_request_id,
            )
            return CallbackOutcome(outcome="unmatched")

        receipt = event.provider_txn_id
        if receipt:
            owner = await self.ledger.claim_receipt(receipt, payment.reference)
            if owner != payment.reference:
                logger.warning(
                    "payment_callback_receipt_reused",
                    provider_txn_id=receipt,
                    reference=payment.reference,
                    owner=owner,
                )
                return CallbackOutcome(outcome="duplicate", reference=owner)

        result = await self.ledger.confirm(
            payment.reference,
            provider_txn_id=receipt,
            phone_number=event.phone_number,
        )
        if not result.newly_confirmed:
            if result.payment.status == PaymentStatus.CONFIRMED:
                return CallbackOutcome(outcome="duplicate", reference=payment.reference)
            if receipt:
                await self.ledger.release_receipt(receipt, payment.reference)
            return CallbackOutcome(outcome="rejected", reference=payment.reference)

        with log_context(reference=payment.reference, provider_txn_id=event.provider_txn_id):
            await self._activate(result.payment)
        return CallbackOutcome(outcome="confirmed", reference=payment.reference)

    async def _resolve_payment(self, event: CallbackEvent) -> Payment | None:
        """Checkout index first; amount matching only when no checkout link exists."""
        if event.checkout_request_id:
            payment = await self.ledger.find_by_checkout_id(event.checkout_request_id)
            if payment is not None:
                return payment

        if event.amount is None:
            return None
        # Ambiguous when two devices pay the same amount inside the window.
        return await self.ledger.find_recent_pending_by_amount(event.amount)

    async def _activate(self, payment: Payment) -> None:
        """Grant access and open the session concurrently. Failures are logged, not raised."""
        if not payment.has_device:
            logger.warning("payment_confirmed_without_device", reference=payment.reference)
            return

        ttl = self.settings.session_ttl_seconds
        device = {"mac": payment.mac, "ip": payment.ip, "ttl_seconds": ttl}
        grant_result, session_result = await asyncio.gather(
            self.orchestrator.grant(payment.reference, **device),
            self.sessions.create(payment.reference, **device),
            return_exceptions=True,
        )

        for step, result in (("grant", grant_result), ("session", session_result)):
            if isinstance(result, BaseException):
                metrics.record_error(type(result).__name__, f"activate_{step}")
                logger.error(
                    "access_activation_failed",
                    reference=payment.reference,
                    step=step,
                    error=str(result),
                )

        logger.info("access_activated", reference=payment.reference, mac=payment.mac, ip=payment.ip)

    async def reconcile(self, reference: str, provider_txn_id: str) -> Payment:
        """
        Manually confirm a payment whose callback never arrived.

        Raises:
            PaymentNotFoundError: unknown reference
            InvalidRequestError: payment already failed or expired, or the receipt
                already confirmed another payment (ReceiptAlreadyUsedError)
            VerificationFailedError: provider does not know the transaction
        """
        payment = await self.ledger.get(reference)
        if payment.status == PaymentStatus.CONFIRMED:
            logger.info("reconcile_already_confirmed", reference=reference)
            return payment
        if payment.is_terminal:
            raise InvalidRequestError(
                f"payment {reference} is {payment.status.value} and cannot be reconciled"
            )

        verification = await self.provider.verify_transaction(provider_txn_id)
        if not verification.success:
            logger.warning(
                "reconcile_verification_failed",
                reference=reference,
                provider_txn_id=provider_txn_id,
                result_code=verification.result_code,
            )
            raise VerificationFailedError(reference, provider_txn_id)

        owner = await self.ledger.claim_receipt(provider_txn_id, reference)
        if owner != reference:
            raise ReceiptAlreadyUsedError(provider_txn_id, owner)

        result = await self.ledger.confirm(reference, provider_txn_id=provider_txn_id)
        if result.newly_confirmed:
            await self._activate(result.payment)
        elif result.payment.status != PaymentStatus.CONFIRMED:
            await self.ledger.release_receipt(provider_txn_id, reference)
        logger.info(
            "payment_reconciled",
            reference=reference,
            provider_txn_id=provider_txn_id,
            newly_confirmed=result.newly_confirmed,
        )
        return result.payment
