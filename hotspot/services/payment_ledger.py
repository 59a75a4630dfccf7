"""
Payment Ledger - payment records and their status transitions.

All transitions out of `pending` go through a WATCH/MULTI compare-and-set on
the payment key, so concurrent confirmations (duplicate provider callbacks,
a callback racing a manual reconciliation) resolve to exactly one winner.
"""

import time
from dataclasses import replace

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError
from structlog import get_logger

from hotspot.config import Settings
from hotspot.exceptions import (
    DependencyUnavailableError,
    DuplicateReferenceError,
    InvalidRequestError,
    PaymentNotFoundError,
)
from hotspot.models.api import PaymentStatus
from hotspot.models.domain import ConfirmResult, DeviceInfo, Payment
from hotspot.observability.metrics import metrics
from hotspot.store import keys

logger = get_logger(__name__)

CAS_RETRIES = 5


def _now_ms() -> int:
    """Current wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


class PaymentLedger:
    """
    Creates, looks up and transitions Payment records.

    Key layout:
    - payment:{reference}              JSON record, 1h TTL (24h once confirmed)
    - pending:{amount}:{created_at}    reference, match-window TTL
    - checkout:{checkout_request_id}   reference, match-window TTL
    """

    def __init__(self, store: Redis, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    @property
    def match_window_ms(self) -> int:
        return self.settings.match_window_seconds * 1000

    async def create(
        self,
        reference: str,
        amount: int,
        mac: str | None = None,
        ip: str | None = None,
        device_info: DeviceInfo | None = None,
    ) -> Payment:
        """
        Create a pending payment and its pending-index entry.

        Raises:
            InvalidRequestError: no device identity, or amount out of bounds
            DuplicateReferenceError: reference already in use
            DependencyUnavailableError: store unreachable
        """
        if not mac and not ip:
            raise InvalidRequestError("a device MAC or IP address is required")
        if amount <= 0:
            raise InvalidRequestError(f"amount must be positive, got {amount}")
        if amount > self.settings.max_payment_amount:
            raise InvalidRequestError(
                f"amount must not exceed {self.settings.max_payment_amount}, got {amount}"
            )

        payment = Payment(
            reference=reference,
            amount=amount,
            status=PaymentStatus.PENDING,
            created_at=_now_ms(),
            mac=mac,
            ip=ip,
            device_info=device_info,
        )

        try:
            created = await self.store.set(
                keys.payment(reference),
                payment.to_json(),
                ex=self.settings.pending_payment_ttl_seconds,
                nx=True,
            )
            if not created:
                raise DuplicateReferenceError(reference)
            # Written after the primary record; if this fails the record simply
            # becomes unmatchable by amount and expires on its own.
            await self.store.set(
                keys.pending(amount, payment.created_at),
                reference,
                ex=self.settings.match_window_seconds,
            )
        except RedisError as exc:
            logger.error("payment_create_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        metrics.record_payment_transition(PaymentStatus.PENDING.value)
        logger.info("payment_created", reference=reference, amount=amount, mac=mac, ip=ip)
        return payment

    async def find_by_reference(self, reference: str) -> Payment | None:
        """Payment for reference, or None when unknown or expired from the store."""
        try:
            raw = await self.store.get(keys.payment(reference))
        except RedisError as exc:
            logger.error("payment_lookup_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc
        return Payment.from_json(raw) if raw else None

    async def get(self, reference: str) -> Payment:
        """Payment for reference. Raises PaymentNotFoundError when unknown."""
        payment = await self.find_by_reference(reference)
        if payment is None:
            raise PaymentNotFoundError(reference)
        return payment

    async def find_recent_pending_by_amount(self, amount: int) -> Payment | None:
        """
        Oldest payment of this amount created inside the match window that is still pending.

        Amount alone cannot tell two same-amount payments apart; this is a
        best-effort fallback for callbacks that do not echo a reference.
        """
        now = _now_ms()
        try:
            candidates: list[tuple[int, str]] = []
            async for key in self.store.scan_iter(match=keys.pending_pattern(amount)):
                created_at = keys.pending_created_at(key)
                if created_at is not None and now - created_at < self.match_window_ms:
                    candidates.append((created_at, key))

            for _, key in sorted(candidates):
                reference = await self.store.get(key)
                if not reference:
                    continue
                payment = await self.find_by_reference(reference)
                if payment is not None and payment.status == PaymentStatus.PENDING:
                    return payment
        except RedisError as exc:
            logger.error("pending_payment_lookup_failed", amount=amount, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        return None

    async def link_checkout(self, reference: str, checkout_request_id: str) -> None:
        """Remember which payment an STK push belongs to."""
        try:
            await self.store.set(
                keys.checkout(checkout_request_id),
                reference,
                ex=self.settings.match_window_seconds,
            )
        except RedisError as exc:
            # Amount matching still covers this payment.
            logger.error(
                "checkout_link_failed",
                reference=reference,
                checkout_request_id=checkout_request_id,
                error=str(exc),
            )

    async def find_by_checkout_id(self, checkout_request_id: str) -> Payment | None:
        """Payment linked to an STK push, or None."""
        try:
            reference = await self.store.get(keys.checkout(checkout_request_id))
        except RedisError as exc:
            raise DependencyUnavailableError("store", str(exc)) from exc
        if not reference:
            return None
        return await self.find_by_reference(reference)

    async def claim_receipt(self, provider_txn_id: str, reference: str) -> str:
        """
        Bind a provider receipt to reference; the first payment to claim it keeps it.

        Returns the owning reference. Anything other than reference means the
        receipt was already spent on another payment.
        """
        key = keys.receipt(provider_txn_id)
        try:
            claimed = await self.store.set(
                key, reference, ex=self.settings.confirmed_payment_ttl_seconds, nx=True
            )
            owner = reference if claimed else await self.store.get(key)
        except RedisError as exc:
            logger.error("receipt_claim_failed", provider_txn_id=provider_txn_id, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc
        return owner or reference

    async def release_receipt(self, provider_txn_id: str, reference: str) -> None:
        """Undo claim_receipt for a payment that could not be confirmed."""
        key = keys.receipt(provider_txn_id)
        try:
            if await self.store.get(key) == reference:
                await self.store.delete(key)
        except RedisError as exc:
            logger.error("receipt_release_failed", provider_txn_id=provider_txn_id, error=str(exc))

    async def confirm(
        self,
        reference: str,
        provider_txn_id: str | None = None,
        phone_number: str | None = None,
        confirmed_at: int | None = None,
    ) -> ConfirmResult:
        """
        Transition pending -> confirmed.

        Idempotent: an already-confirmed payment is returned unchanged with
        newly_confirmed=False, keeping the first confirmation's data.
        """

        def transition(payment: Payment) -> Payment:
            return replace(
                payment,
                status=PaymentStatus.CONFIRMED,
                provider_txn_id=provider_txn_id,
                phone_number=phone_number,
                confirmed_at=confirmed_at if confirmed_at is not None else _now_ms(),
            )

        payment, changed = await self._compare_and_set(
            reference, transition, self.settings.confirmed_payment_ttl_seconds
        )
        if changed:
            logger.info(
                "payment_confirmed",
                reference=reference,
                provider_txn_id=provider_txn_id,
                amount=payment.amount,
            )
        elif payment.status == PaymentStatus.CONFIRMED:
            logger.info("payment_already_confirmed", reference=reference)
        else:
            logger.warning(
                "payment_confirm_rejected_terminal",
                reference=reference,
                status=payment.status.value,
            )
        return ConfirmResult(payment=payment, newly_confirmed=changed)

    async def expire(self, reference: str) -> Payment:
        """Transition pending -> expired. No-op on terminal payments."""
        payment, changed = await self._compare_and_set(
            reference,
            lambda p: replace(p, status=PaymentStatus.EXPIRED),
            self.settings.pending_payment_ttl_seconds,
        )
        if changed:
            logger.info("payment_expired", reference=reference)
        return payment

    async def fail(self, reference: str) -> Payment:
        """Transition pending -> failed. No-op on terminal payments."""
        payment, changed = await self._compare_and_set(
            reference,
            lambda p: replace(p, status=PaymentStatus.FAILED),
            self.settings.pending_payment_ttl_seconds,
        )
        if changed:
            logger.info("payment_failed", reference=reference)
        return payment

    async def _compare_and_set(
        self, reference, transition, ttl_seconds: int
    ) -> tuple[Payment, bool]:
        """
        Apply transition to a pending payment under WATCH.

        Returns the stored payment and whether this call changed it. Terminal
        payments are returned as read. Raises PaymentNotFoundError or
        DependencyUnavailableError.
        """
        key = keys.payment(reference)
        try:
            async with self.store.pipeline(transaction=True) as pipe:
                for _ in range(CAS_RETRIES):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        if raw is None:
                            raise PaymentNotFoundError(reference)

                        current = Payment.from_json(raw)
                        if current.is_terminal:
                            await pipe.unwatch()
                            return current, False

                        updated = transition(current)
                        pipe.multi()
                        pipe.set(key, updated.to_json(), ex=ttl_seconds)
                        pipe.delete(keys.pending(current.amount, current.created_at))
                        await pipe.execute()
                    except WatchError:
                        logger.info("payment_cas_retry", reference=reference)
                        continue

                    metrics.record_payment_transition(updated.status.value)
                    return updated, True
        except RedisError as exc:
            logger.error("payment_transition_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        raise DependencyUnavailableError("store", f"contention on payment {reference}")
