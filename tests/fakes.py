"""
Test doubles shared across the suite.

- FakeEnforcer: records apply/remove calls, injectable failures
- DarajaStub: canned Daraja API responses for httpx.MockTransport
- stk_callback: callback documents shaped like Daraja's
"""

import json
from collections.abc import Callable
from typing import Any

import httpx

from hotspot.exceptions import EnforcerError
from hotspot.models.domain import DeviceIdentifier

ADMIN_KEY = "test-admin-key"
TEST_MAC = "aa:bb:cc:dd:ee:ff"
TEST_IP = "10.0.0.23"
CHECKOUT_ID = "ws_CO_191220191020363925"


class FakeEnforcer:
    """
    Enforcer that records calls instead of touching the network.

    Set fail_apply / fail_remove to make the next calls raise EnforcerError.
    Set crash to raise an unexpected exception type.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.applied: list[tuple[str, int]] = []
        self.removed: list[str] = []
        self.active: set[str] = set()
        self.fail_apply = False
        self.fail_remove = False
        self.crash = False

    async def apply(self, identifier: DeviceIdentifier, ttl_seconds: int) -> None:
        if self.crash:
            raise RuntimeError("backend exploded")
        if self.fail_apply:
            raise EnforcerError(self.name, "apply refused")
        self.applied.append((identifier.value, ttl_seconds))
        self.active.add(identifier.value)

    async def remove(self, identifier: DeviceIdentifier) -> None:
        if self.fail_remove:
            raise EnforcerError(self.name, "remove refused")
        self.removed.append(identifier.value)
        self.active.discard(identifier.value)


def mock_response(data: dict[str, Any], status_code: int = 200) -> httpx.Response:
    """Create a mock httpx Response."""
    return httpx.Response(
        status_code=status_code,
        content=json.dumps(data).encode(),
        headers={"content-type": "application/json"},
    )


class DarajaStub:
    """Routes Daraja paths to canned responses and records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {
            "/oauth/v1/generate": lambda _: mock_response(
                {"access_token": "test-token", "expires_in": "3599"}
            ),
            "/mpesa/stkpush/v1/processrequest": lambda _: mock_response(
                {
                    "MerchantRequestID": "29115-34620561-1",
                    "CheckoutRequestID": CHECKOUT_ID,
                    "ResponseCode": "0",
                    "ResponseDescription": "Success. Request accepted for processing",
                    "CustomerMessage": "Success. Request accepted for processing",
                }
            ),
            "/mpesa/transactionstatus/v1/query": lambda _: mock_response(
                {"ResultCode": "0", "ResultDesc": "The service request is processed successfully."}
            ),
        }

    def respond(self, path: str, data: dict[str, Any], status_code: int = 200) -> None:
        self.routes[path] = lambda _: mock_response(data, status_code)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return mock_response({"errorMessage": "not found"}, 404)
        return route(request)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


def stk_callback(
    result_code: int = 0,
    amount: int | float | None = 20,
    receipt: str | None = "QKX1ABC234",
    checkout_request_id: str | None = CHECKOUT_ID,
    phone: int | None = 254712345678,
) -> dict[str, Any]:
    """Build an STK push callback document as Daraja sends it."""
    callback: dict[str, Any] = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully."
        if result_code == 0
        else "Request cancelled by user",
    }
    if result_code == 0:
        items: list[dict[str, Any]] = []
        if amount is not None:
            items.append({"Name": "Amount", "Value": amount})
        if receipt is not None:
            items.append({"Name": "MpesaReceiptNumber", "Value": receipt})
        items.append({"Name": "TransactionDate", "Value": 20191219102115})
        if phone is not None:
            items.append({"Name": "PhoneNumber", "Value": phone})
        callback["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": callback}}
