"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class HotspotError(Exception):
    """Base exception for all hotspot gateway errors."""

    pass


class InvalidRequestError(HotspotError):
    """Raised when a request lacks a device identity or carries a bad amount."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid request: {message}")


class DuplicateReferenceError(HotspotError):
    """Raised when a payment reference is already taken."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Payment reference already exists: {reference}")


class PaymentNotFoundError(HotspotError):
    """Raised when a payment reference is unknown (or already expired from the store)."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Payment not found: {reference}")


class AccessDeniedError(HotspotError):
    """Base for fraud gate denials."""

    def __init__(self, reason: str, risk_score: int) -> None:
        self.reason = reason
        self.risk_score = risk_score
        super().__init__(f"Access request denied: {reason} (risk score {risk_score})")


class RateLimitedError(AccessDeniedError):
    """Raised when an IP or MAC exceeded its hourly attempt cap."""

    pass


class HighRiskError(AccessDeniedError):
    """Raised when the accumulated risk score reached the threshold."""

    pass


class ReceiptAlreadyUsedError(InvalidRequestError):
    """Raised when a provider receipt already confirmed a different payment."""

    def __init__(self, provider_txn_id: str, owner: str) -> None:
        self.provider_txn_id = provider_txn_id
        self.owner = owner
        super().__init__(f"receipt {provider_txn_id} already confirmed payment {owner}")


class VerificationFailedError(HotspotError):
    """Raised when the provider does not confirm a transaction during manual reconciliation."""

    def __init__(self, reference: str, provider_txn_id: str) -> None:
        self.reference = reference
        self.provider_txn_id = provider_txn_id
        super().__init__(
            f"Provider verification failed for {reference} (transaction {provider_txn_id})"
        )


class EnforcerError(HotspotError):
    """Raised by a network enforcer when a backend call fails or times out."""

    def __init__(self, enforcer: str, message: str) -> None:
        self.enforcer = enforcer
        self.message = message
        super().__init__(f"Enforcer {enforcer} failed: {message}")


class EnforcementPartialFailureError(HotspotError):
    """One or more enforcers failed while the store-level grant still stands."""

    def __init__(self, reference: str, operation: str, failures: dict[str, str]) -> None:
        self.reference = reference
        self.operation = operation
        self.failures = failures
        names = ", ".join(sorted(failures))
        super().__init__(f"Enforcement {operation} partially failed for {reference}: {names}")


class DependencyUnavailableError(HotspotError):
    """Raised when the key/value store cannot be reached on a critical path."""

    def __init__(self, dependency: str, message: str) -> None:
        self.dependency = dependency
        self.message = message
        super().__init__(f"{dependency} unavailable: {message}")


class PaymentProviderError(HotspotError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(HotspotError):
    """Raised when webhook signature verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class InvalidCallbackError(HotspotError):
    """Raised when a provider callback is structurally unparseable."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid callback payload: {message}")


class AuthenticationError(HotspotError):
    """Raised when the admin key is missing or wrong."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
