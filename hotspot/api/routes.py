"""
API Routes - payment initiation, status polling and provider callbacks.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from redis.asyncio import Redis
from redis.exceptions import RedisError
from structlog import get_logger

from hotspot.api.dependencies import (
    get_checkout_service,
    get_reconciler,
    get_store,
    require_admin,
)
from hotspot.exceptions import (
    DependencyUnavailableError,
    HighRiskError,
    HotspotError,
    InvalidCallbackError,
    InvalidRequestError,
    PaymentNotFoundError,
    RateLimitedError,
    VerificationFailedError,
    WebhookVerificationError,
)
from hotspot.models.api import (
    HealthResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentStatusResponse,
    ReconcileRequest,
    WebhookAck,
)
from hotspot.models.domain import DeviceInfo, Payment
from hotspot.services.checkout import CheckoutService
from hotspot.services.reconciliation import WebhookReconciler

logger = get_logger(__name__)

router = APIRouter()

MIN_REFERENCE_LENGTH = 6
SIGNATURE_HEADER = "X-Mpesa-Signature"


def _status_response(payment: Payment, checkout: CheckoutService) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        reference=payment.reference,
        status=payment.status,
        amount=payment.amount,
        created_at=payment.created_at,
        confirmed_at=payment.confirmed_at,
        expires_at=checkout.expires_at(payment),
    )


def _validate_reference(reference: str) -> str:
    reference = reference.strip().upper()
    if len(reference) < MIN_REFERENCE_LENGTH or not reference.isalnum():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="invalid_reference",
        )
    return reference


@router.post("/api/payments/initiate", response_model=InitiatePaymentResponse)
async def initiate_payment(
    body: InitiatePaymentRequest,
    request: Request,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> InitiatePaymentResponse:
    """
    Start a payment for the requesting device.

    Returns till instructions; optionally prompts the phone via STK push.
    """
    device_info = DeviceInfo.from_dict(body.device_info.model_dump()) if body.device_info else None
    client_ip = request.client.host if request.client else None

    try:
        result = await checkout.initiate(
            mac=body.mac,
            ip=body.ip,
            amount=body.amount,
            device_info=device_info,
            phone_number=body.phone_number,
            client_ip=client_ip,
        )
    except InvalidRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except RateLimitedError as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many payment attempts. Please try again later.",
        ) from exc
    except HighRiskError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Payment request rejected",
        ) from exc
    except DependencyUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment service temporarily unavailable",
        ) from exc

    return InitiatePaymentResponse(
        reference=result.payment.reference,
        amount=result.payment.amount,
        till=result.till,
        instructions=result.instructions,
        expires_in=result.expires_in,
        stk_push_sent=result.stk_push_sent,
    )


@router.get("/api/payments/{reference}/status", response_model=PaymentStatusResponse)
async def get_payment_status(
    reference: str,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> PaymentStatusResponse:
    """Poll a payment. Pending payments past the match window come back expired."""
    reference = _validate_reference(reference)
    try:
        payment = await checkout.get_status(reference)
    except PaymentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DependencyUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return _status_response(payment, checkout)


@router.post("/api/payments/webhook/mpesa", response_model=WebhookAck)
async def mpesa_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
) -> WebhookAck:
    """
    M-Pesa STK push callback.

    Always acknowledged, except for a bad signature (401) or an
    unparseable body (400).
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        outcome = await reconciler.handle_callback(raw_body, signature)
    except WebhookVerificationError as exc:
        logger.warning("webhook_rejected", reason=exc.message)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc
    except InvalidCallbackError as exc:
        logger.warning("webhook_invalid_payload", error=exc.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except HotspotError as exc:
        # The provider does not redeliver on errors; acknowledge and keep the evidence.
        logger.error(
            "webhook_processing_failed",
            error=str(exc),
            body=raw_body[:2048].decode(errors="replace"),
        )
        return WebhookAck()

    logger.info("webhook_processed", outcome=outcome.outcome, reference=outcome.reference)
    return WebhookAck()


@router.post(
    "/api/payments/{reference}/reconcile",
    response_model=PaymentStatusResponse,
    dependencies=[Depends(require_admin)],
)
async def reconcile_payment(
    reference: str,
    body: ReconcileRequest,
    reconciler: WebhookReconciler = Depends(get_reconciler),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> PaymentStatusResponse:
    """
    Manually confirm a payment whose callback was lost.

    Requires: X-Admin-Key.
    """
    reference = _validate_reference(reference)
    try:
        payment = await reconciler.reconcile(reference, body.provider_txn_id)
    except PaymentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidRequestError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc
    except VerificationFailedError as exc:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(exc)) from exc
    except DependencyUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return _status_response(payment, checkout)


@router.get("/health", response_model=HealthResponse)
async def health_check(store: Redis = Depends(get_store)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies store connectivity.
    """
    try:
        await store.ping()
        return HealthResponse(
            status="healthy",
            store="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except RedisError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "store": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
