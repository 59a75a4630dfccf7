"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
Records persisted in the store round-trip through to_json/from_json.
"""

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from hotspot.models.api import FraudReason, PaymentStatus

TERMINAL_STATUSES = frozenset(
    {PaymentStatus.CONFIRMED, PaymentStatus.EXPIRED, PaymentStatus.FAILED}
)


@dataclass(frozen=True)
class ScreenInfo:
    """Declared screen dimensions in pixels."""

    width: int
    height: int


@dataclass(frozen=True)
class DeviceInfo:
    """Client-declared device fingerprint. Opaque to everything but the fraud gate."""

    user_agent: str | None = None
    screen: ScreenInfo | None = None
    timezone: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DeviceInfo | None":
        if not data:
            return None
        screen = data.get("screen")
        return cls(
            user_agent=data.get("user_agent"),
            screen=ScreenInfo(int(screen["width"]), int(screen["height"])) if screen else None,
            timezone=data.get("timezone"),
        )


@dataclass(frozen=True)
class DeviceIdentifier:
    """A validated MAC or IP address, safe to hand to an enforcement backend."""

    kind: Literal["mac", "ip"]
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Payment:
    """Immutable payment snapshot. Status changes produce a new instance."""

    reference: str
    amount: int
    status: PaymentStatus
    created_at: int  # epoch milliseconds
    mac: str | None = None
    ip: str | None = None
    device_info: DeviceInfo | None = None
    provider_txn_id: str | None = None
    phone_number: str | None = None
    confirmed_at: int | None = None

    def __post_init__(self) -> None:
        """Validate payment constraints."""
        if self.amount <= 0:
            raise ValueError(f"Payment amount must be positive: {self.amount}")
        if not self.reference:
            raise ValueError("Reference cannot be empty")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_device(self) -> bool:
        return bool(self.mac or self.ip)

    def to_json(self) -> str:
        data = asdict(self)
        data["status"] = self.status.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "Payment":
        data = json.loads(raw)
        return cls(
            reference=data["reference"],
            amount=int(data["amount"]),
            status=PaymentStatus(data["status"]),
            created_at=int(data["created_at"]),
            mac=data.get("mac"),
            ip=data.get("ip"),
            device_info=DeviceInfo.from_dict(data.get("device_info")),
            provider_txn_id=data.get("provider_txn_id"),
            phone_number=data.get("phone_number"),
            confirmed_at=data.get("confirmed_at"),
        )


@dataclass(frozen=True)
class ConfirmResult:
    """Outcome of PaymentLedger.confirm. Only newly_confirmed results may grant access."""

    payment: Payment
    newly_confirmed: bool


@dataclass(frozen=True)
class AccessGrant:
    """Authoritative record that a device is currently allowed through."""

    reference: str
    ttl_seconds: int
    granted_at: int
    mac: str | None = None
    ip: str | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "AccessGrant":
        data = json.loads(raw)
        return cls(
            reference=data["reference"],
            ttl_seconds=int(data["ttl_seconds"]),
            granted_at=int(data["granted_at"]),
            mac=data.get("mac"),
            ip=data.get("ip"),
        )


@dataclass(frozen=True)
class Session:
    """Logical record of an authorized device, independent of enforcement."""

    reference: str
    ttl_seconds: int
    created_at: int
    mac: str | None = None
    ip: str | None = None
    last_seen_at: int | None = None

    @property
    def identifiers(self) -> list[str]:
        return [value for value in (self.mac, self.ip) if value]

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "Session":
        data = json.loads(raw)
        return cls(
            reference=data["reference"],
            ttl_seconds=int(data["ttl_seconds"]),
            created_at=int(data["created_at"]),
            mac=data.get("mac"),
            ip=data.get("ip"),
            last_seen_at=data.get("last_seen_at"),
        )


@dataclass(frozen=True)
class RemovalRecord:
    """Persisted deferred removal of a grant from its enforcers."""

    reference: str
    expires_at: int  # epoch seconds
    enforcers: tuple[str, ...]
    mac: str | None = None
    ip: str | None = None

    def to_json(self) -> str:
        data = asdict(self)
        data["enforcers"] = list(self.enforcers)
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "RemovalRecord":
        data = json.loads(raw)
        return cls(
            reference=data["reference"],
            expires_at=int(data["expires_at"]),
            enforcers=tuple(data.get("enforcers", [])),
            mac=data.get("mac"),
            ip=data.get("ip"),
        )


@dataclass(frozen=True)
class FraudCheckRequest:
    """Input to the fraud gate."""

    amount: int
    ip: str | None = None
    mac: str | None = None
    device_info: DeviceInfo | None = None


@dataclass(frozen=True)
class FraudDecision:
    """Fraud gate verdict."""

    allowed: bool
    risk_score: int
    reason: FraudReason | None = None
    checks: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class EnforcementReport:
    """Per-enforcer outcome of a grant or revoke."""

    reference: str
    operation: Literal["apply", "remove"]
    succeeded: tuple[str, ...] = ()
    failures: tuple[tuple[str, str], ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failure_map(self) -> dict[str, str]:
        return dict(self.failures)
