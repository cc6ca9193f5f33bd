"""Payloads exchanged with Mercado Pago."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NotificationData(BaseModel):
    id: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> str | None:  # noqa: ANN401
        """The provider sends numeric ids in some payload versions."""
        return None if v is None else str(v)


class WebhookNotification(BaseModel):
    """Inbound webhook body. Only ``type``/``action`` and ``data.id`` matter."""

    model_config = ConfigDict(extra="allow")

    id: int | str | None = None
    type: str | None = None
    action: str | None = None
    live_mode: bool | None = None
    date_created: str | None = None
    data: NotificationData = Field(default_factory=NotificationData)

    @property
    def resource_id(self) -> str | None:
        return self.data.id


class Payer(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | str | None = None
    email: str | None = None


class PaymentRecord(BaseModel):
    """Authoritative payment state as returned by ``GET /v1/payments/{id}``."""

    model_config = ConfigDict(extra="allow")

    id: int | str
    status: str
    status_detail: str | None = None
    transaction_amount: Decimal
    currency_id: str
    payment_method_id: str | None = None
    payer: Payer = Field(default_factory=Payer)
    metadata: dict[str, Any] = Field(default_factory=dict)
    external_reference: str | None = None

    @property
    def transaction_id(self) -> str:
        return str(self.id)


class WebhookHealthResponse(BaseModel):
    status: str
    timestamp: str
