"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

_PHONE_RE = re.compile(r"^2547\d{8}$|^2541\d{8}$")


class PaymentStatus(str, Enum):
    """Payment lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


class FraudReason(str, Enum):
    """Why the fraud gate denied a request."""

    IP_RATE_LIMIT = "ip_rate_limit"
    MAC_RATE_LIMIT = "mac_rate_limit"
    HIGH_RISK_SCORE = "high_risk_score"


# ============================================================================
# Payment Models
# ============================================================================


class ScreenModel(BaseModel):
    """Declared screen size."""

    width: int
    height: int


class DeviceInfoModel(BaseModel):
    """Browser-reported fingerprint."""

    user_agent: str | None = Field(None, max_length=512)
    screen: ScreenModel | None = None
    timezone: str | None = Field(None, max_length=64)


class InitiatePaymentRequest(BaseModel):
    """POST /api/payments/initiate request body."""

    amount: int | None = Field(None, gt=0)
    mac: str | None = Field(None, max_length=17)
    ip: str | None = Field(None, max_length=45)
    phone_number: str | None = Field(
        None, description="Subscriber MSISDN (2547XXXXXXXX) for an STK push prompt"
    )
    device_info: DeviceInfoModel | None = None

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str | None) -> str | None:
        """Only Kenyan MSISDNs in international format are accepted."""
        if v is not None and not _PHONE_RE.match(v):
            raise ValueError("phone_number must look like 2547XXXXXXXX")
        return v


class InitiatePaymentResponse(BaseModel):
    """Instructions for completing a payment."""

    reference: str
    amount: int
    till: str
    instructions: str
    expires_in: int
    stk_push_sent: bool = False


class PaymentStatusResponse(BaseModel):
    """GET /api/payments/{reference}/status response."""

    reference: str
    status: PaymentStatus
    amount: int
    created_at: int
    confirmed_at: int | None = None
    expires_at: int


class ReconcileRequest(BaseModel):
    """POST /api/payments/{reference}/reconcile request body."""

    provider_txn_id: str = Field(..., min_length=1, max_length=64)


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str


class WebhookAck(BaseModel):
    """Acknowledgement body expected by the provider."""

    ResultCode: int = 0
    ResultDesc: str = "Accepted"


# ============================================================================
# Admin Models
# ============================================================================


class SessionModel(BaseModel):
    """Active session as seen by admins."""

    reference: str
    mac: str | None = None
    ip: str | None = None
    ttl_seconds: int
    created_at: int
    last_seen_at: int | None = None


class GrantModel(BaseModel):
    """Active access grant as seen by admins."""

    reference: str
    mac: str | None = None
    ip: str | None = None
    ttl_seconds: int
    granted_at: int


class SessionsResponse(BaseModel):
    """GET /api/admin/sessions response."""

    sessions: list[SessionModel]
    grants: list[GrantModel]
    total: int


class RevokeResponse(BaseModel):
    """DELETE /api/admin/sessions/{reference} response."""

    reference: str
    message: str
    enforcer_failures: dict[str, str] = Field(default_factory=dict)


class ExtendSessionRequest(BaseModel):
    """POST /api/admin/sessions/{reference}/extend request body."""

    additional_seconds: int = Field(..., gt=0, le=7 * 86400)


class SuspiciousActivityModel(BaseModel):
    """A stored suspicious-activity report."""

    reason: str
    timestamp: int
    ip: str | None = None
    mac: str | None = None
    risk_score: int | None = None


class SuspiciousActivitiesResponse(BaseModel):
    """GET /api/admin/suspicious response."""

    activities: list[SuspiciousActivityModel]
    total: int


class StatsResponse(BaseModel):
    """GET /api/admin/stats response."""

    active_sessions: int
    active_grants: int
    pending_removals: int
    suspicious_activities: int
    redis_memory: str | None = None


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    store: str
    timestamp: str
