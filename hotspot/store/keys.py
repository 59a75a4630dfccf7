"""
Store key namespaces.

Every component owns one or more prefixes below. Prefixes are stable wire
format shared with other deployments of the gateway; do not rename them.
"""

PAYMENT_PREFIX = "payment:"
PENDING_PREFIX = "pending:"
CHECKOUT_PREFIX = "checkout:"
RECEIPT_PREFIX = "receipt:"
GRANT_PREFIX = "radius:"
SESSION_PREFIX = "session:"
ACTIVE_PREFIX = "active:"
IP_ATTEMPTS_PREFIX = "ip_attempts:"
MAC_ATTEMPTS_PREFIX = "mac_attempts:"
RAPID_PREFIX = "rapid:"
SUSPICIOUS_PREFIX = "fraud:suspicious:"
REMOVAL_PREFIX = "removal:"
REMOVALS_DUE = "removals:due"


def payment(reference: str) -> str:
    return f"{PAYMENT_PREFIX}{reference}"


def pending(amount: int, created_at: int) -> str:
    return f"{PENDING_PREFIX}{amount}:{created_at}"


def pending_pattern(amount: int) -> str:
    return f"{PENDING_PREFIX}{amount}:*"


def pending_created_at(key: str) -> int | None:
    """created_at (epoch ms) encoded in a pending index key."""
    try:
        return int(key.rsplit(":", 1)[1])
    except (IndexError, ValueError):
        return None


def checkout(checkout_request_id: str) -> str:
    return f"{CHECKOUT_PREFIX}{checkout_request_id}"


def receipt(provider_txn_id: str) -> str:
    return f"{RECEIPT_PREFIX}{provider_txn_id}"


def grant(reference: str) -> str:
    return f"{GRANT_PREFIX}{reference}"


def session(reference: str) -> str:
    return f"{SESSION_PREFIX}{reference}"


def active(identifier: str) -> str:
    return f"{ACTIVE_PREFIX}{identifier}"


def ip_attempts(ip: str) -> str:
    return f"{IP_ATTEMPTS_PREFIX}{ip}"


def mac_attempts(mac: str) -> str:
    return f"{MAC_ATTEMPTS_PREFIX}{mac}"


def rapid(identifier: str) -> str:
    return f"{RAPID_PREFIX}{identifier}"


def suspicious(timestamp: int) -> str:
    return f"{SUSPICIOUS_PREFIX}{timestamp}"


def removal(reference: str) -> str:
    return f"{REMOVAL_PREFIX}{reference}"
