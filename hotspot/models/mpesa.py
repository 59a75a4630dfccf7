"""
M-Pesa Daraja Models - STK push callback payload.

NO DICTIONARIES - callback items are parsed into typed models.
"""

from typing import Any

from pydantic import BaseModel, Field


class CallbackItem(BaseModel):
    """One Name/Value metadata entry."""

    Name: str
    Value: Any = None


class MetadataList(BaseModel):
    """Metadata list present on successful callbacks."""

    Item: list[CallbackItem] = Field(default_factory=list)


class StkCallback(BaseModel):
    """Body.stkCallback of an STK push result."""

    MerchantRequestID: str | None = None
    CheckoutRequestID: str | None = None
    ResultCode: int
    ResultDesc: str = ""
    CallbackMetadata: MetadataList | None = None

    def item(self, name: str) -> Any:
        """Value of the metadata item called name, or None."""
        if self.CallbackMetadata is None:
            return None
        for entry in self.CallbackMetadata.Item:
            if entry.Name == name:
                return entry.Value
        return None


class CallbackBody(BaseModel):
    """Body wrapper."""

    stkCallback: StkCallback


class StkCallbackPayload(BaseModel):
    """Top-level inbound callback document."""

    Body: CallbackBody

