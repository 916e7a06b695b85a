from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field

from paycore.integrations.payment_gateways.base import PaymentStatus, WebhookEventType
from paycore.schemas.common import ORMModel


class PaymentStart(ORMModel):
    # Amount and currency are checked by PaymentRequest.validate so that every
    # problem is reported together as one invalid_request error.
    order_id: int | str
    amount: Decimal
    currency: str
    billing: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    capture_immediately: bool = True
    customer_email: str | None = None
    return_url: str | None = None
    cancel_url: str | None = None
    gateway_id: str | None = None
    payment_data: dict[str, Any] = Field(default_factory=dict)


class PaymentCapture(ORMModel):
    amount: Decimal | None = None


class PaymentRefund(ORMModel):
    amount: Decimal
    reason: str = Field(default="", max_length=255)


class PaymentResultRead(ORMModel):
    success: bool
    status: PaymentStatus
    gateway_id: str
    transaction_id: str | None
    gateway_transaction_id: str | None
    amount: Decimal | None
    currency: str | None
    message: str | None
    processed_at: datetime


class PaymentStatusRead(ORMModel):
    transaction_id: str
    status: PaymentStatus


class WebhookResultRead(ORMModel):
    success: bool
    event_type: WebhookEventType
    transaction_id: str | None
    gateway_transaction_id: str | None
    message: str | None
    actions: list[dict[str, Any]]
    processed_at: datetime


class GatewayRead(ORMModel):
    gateway_id: str
    display_name: str
    supported_currencies: list[str]
    supports_authorize: bool
    supports_capture: bool
    supports_refund: bool
    supports_void: bool
    is_default: bool
