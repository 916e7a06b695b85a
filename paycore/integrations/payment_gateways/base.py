"""
Payment Gateway Base Classes and Interfaces

Defines the contract every payment gateway adapter implements, and the
normalized value objects that cross it.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from .exceptions import PaymentException

TRANSACTION_ID_SEPARATOR = "_"

OrderId = Union[int, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compose_transaction_id(gateway_id: str, native_id: str) -> str:
    """Build the persisted "{gateway_id}_{native_id}" form of a transaction id."""
    prefix = f"{gateway_id}{TRANSACTION_ID_SEPARATOR}"
    if native_id.startswith(prefix):
        return native_id
    return f"{prefix}{native_id}"


def split_transaction_id(transaction_id: str) -> Tuple[Optional[str], str]:
    """Split on the first separator; returns (None, id) when there is none."""
    if TRANSACTION_ID_SEPARATOR not in transaction_id:
        return None, transaction_id
    gateway_id, native_id = transaction_id.split(TRANSACTION_ID_SEPARATOR, 1)
    return gateway_id or None, native_id


class PaymentStatus(str, Enum):
    """Canonical payment status vocabulary."""
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"
    VOIDED = "voided"


class WebhookEventType(str, Enum):
    """Normalized webhook event types."""
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_CANCELLED = "payment.cancelled"
    PAYMENT_REFUNDED = "payment.refunded"
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_DISPUTED = "payment.disputed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PaymentRequest:
    """Everything needed to initiate a payment for one order."""
    order_id: OrderId
    amount: Decimal
    currency: str
    billing: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    capture_immediately: bool = True
    customer_email: Optional[str] = None
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            try:
                amount = Decimal(str(self.amount))
            except (InvalidOperation, ValueError):
                amount = Decimal("NaN")
            object.__setattr__(self, "amount", amount)
        if not self.description:
            object.__setattr__(self, "description", f"Order #{self.order_id}")

    def validate(self) -> List[str]:
        """Return every validation error; an empty list means the request is valid."""
        errors: List[str] = []

        if self.amount.is_nan() or self.amount <= 0:
            errors.append("Payment amount must be greater than 0")

        if not self.currency:
            errors.append("Currency is required")
        elif len(self.currency) != 3 or not self.currency.isalpha():
            errors.append("Currency must be a 3-letter ISO code")

        if self.order_id is None or str(self.order_id).strip() == "":
            errors.append("Valid order ID is required")
        elif isinstance(self.order_id, int) and self.order_id <= 0:
            errors.append("Valid order ID is required")

        return errors

    def amount_in_minor_units(self) -> int:
        """Amount in the smallest currency unit (cents, agorot)."""
        return int((self.amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class PaymentIntent:
    """Gateway-issued handle for an in-progress payment."""
    gateway_id: str
    gateway_intent_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    order_id: Optional[OrderId] = None
    client_secret: Optional[str] = None
    payment_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    gateway_data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def transaction_id(self) -> str:
        return compose_transaction_id(self.gateway_id, self.gateway_intent_id)


@dataclass
class PaymentResult:
    """Normalized outcome of a lifecycle operation."""
    success: bool
    status: PaymentStatus
    gateway_id: str
    gateway_transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
    processed_at: datetime = field(default_factory=_utcnow)

    @property
    def transaction_id(self) -> Optional[str]:
        if not self.gateway_transaction_id:
            return None
        return compose_transaction_id(self.gateway_id, self.gateway_transaction_id)


@dataclass
class PaymentWebhookResult:
    """Outcome of parsing an inbound webhook, plus an audit trail of side effects."""
    success: bool
    event_type: WebhookEventType
    transaction_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    actions: List[Dict[str, Any]] = field(default_factory=list)
    processed_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def succeeded(
        cls,
        event_type: WebhookEventType,
        *,
        transaction_id: Optional[str] = None,
        gateway_transaction_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        message: str = "Webhook processed successfully",
    ) -> "PaymentWebhookResult":
        return cls(
            success=True,
            event_type=event_type,
            transaction_id=transaction_id,
            gateway_transaction_id=gateway_transaction_id,
            data=data or {},
            message=message,
        )

    @classmethod
    def failed(
        cls,
        message: str,
        *,
        event_type: WebhookEventType = WebhookEventType.UNKNOWN,
        data: Optional[Dict[str, Any]] = None,
    ) -> "PaymentWebhookResult":
        return cls(success=False, event_type=event_type, data=data or {}, message=message)

    def add_action(self, action: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.actions.append(
            {
                "action": action,
                "details": details or {},
                "timestamp": _utcnow().isoformat(),
            }
        )

    def is_payment_completed(self) -> bool:
        return self.event_type in (WebhookEventType.PAYMENT_SUCCEEDED, WebhookEventType.PAYMENT_CAPTURED)

    def is_payment_failed(self) -> bool:
        return self.event_type in (WebhookEventType.PAYMENT_FAILED, WebhookEventType.PAYMENT_CANCELLED)


class PaymentGateway(ABC):
    """Abstract base class for payment gateway adapters.

    Every operation raises PaymentException when it cannot complete; adapters
    translate their native errors before they cross this boundary.
    """

    @abstractmethod
    def get_gateway_id(self) -> str:
        """Stable lowercase key, also used as the transaction-id prefix."""

    @abstractmethod
    def get_display_name(self) -> str:
        pass

    @abstractmethod
    def get_supported_currencies(self) -> Set[str]:
        pass

    @abstractmethod
    def supports_authorization(self) -> bool:
        pass

    @abstractmethod
    def supports_capture(self) -> bool:
        pass

    @abstractmethod
    def supports_refunds(self) -> bool:
        pass

    @abstractmethod
    def supports_void(self) -> bool:
        pass

    @abstractmethod
    async def create_payment_intent(self, request: PaymentRequest) -> PaymentIntent:
        """
        Create a payment intent/session for processing.

        Args:
            request: Payment details and amount

        Returns:
            The created PaymentIntent

        Raises:
            PaymentException: If the intent cannot be created
        """

    @abstractmethod
    async def process_payment(self, intent: PaymentIntent, gateway_data: Dict[str, Any]) -> PaymentResult:
        """
        Process a payment for a previously created intent.

        Args:
            intent: The intent to process
            gateway_data: Gateway-specific payment data (tokens, payment method ids)

        Returns:
            PaymentResult of the processing

        Raises:
            PaymentException: If processing fails
        """

    @abstractmethod
    async def capture_payment(self, transaction_id: str, amount: Optional[Decimal] = None) -> PaymentResult:
        """
        Capture a previously authorized payment.

        Args:
            transaction_id: Transaction to capture
            amount: Amount to capture (None for the full authorized amount)
        """

    @abstractmethod
    async def refund_payment(self, transaction_id: str, amount: Decimal, reason: str = "") -> PaymentResult:
        """
        Refund a captured payment, fully or partially.

        Args:
            transaction_id: Transaction to refund
            amount: Amount to refund
            reason: Refund reason
        """

    @abstractmethod
    async def void_payment(self, transaction_id: str) -> PaymentResult:
        """Cancel an authorized but not yet captured payment."""

    @abstractmethod
    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        """Current status of a payment as reported by the gateway."""

    @abstractmethod
    async def handle_webhook(self, payload: Dict[str, Any]) -> PaymentWebhookResult:
        """Parse an inbound webhook notification."""

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """
        Turn a raw webhook request into the payload handle_webhook expects.

        Adapters that sign their webhooks override this to verify the
        signature first.

        Raises:
            PaymentException: If the body is not a JSON object
        """
        try:
            payload = json.loads(body or b"{}")
        except ValueError as exc:
            raise PaymentException.invalid_request(f"Malformed webhook payload: {exc}") from exc
        if not isinstance(payload, dict):
            raise PaymentException.invalid_request("Webhook payload must be a JSON object")
        return payload

    async def health_check(self) -> bool:
        """
        Check if the payment gateway is healthy.

        Returns:
            True if gateway is responding correctly
        """
        # Default implementation - override in subclasses
        return True

    def supports_currency(self, currency: str) -> bool:
        return currency.upper() in {c.upper() for c in self.get_supported_currencies()}

    def transaction_id_for(self, native_id: str) -> str:
        return compose_transaction_id(self.get_gateway_id(), native_id)

    def native_transaction_id(self, transaction_id: str) -> str:
        prefix = f"{self.get_gateway_id()}{TRANSACTION_ID_SEPARATOR}"
        if transaction_id.startswith(prefix):
            return transaction_id[len(prefix):]
        return transaction_id

    def get_info(self) -> Dict[str, Any]:
        return {
            "gateway_id": self.get_gateway_id(),
            "display_name": self.get_display_name(),
            "supported_currencies": sorted(self.get_supported_currencies()),
            "supports_authorize": self.supports_authorization(),
            "supports_capture": self.supports_capture(),
            "supports_refund": self.supports_refunds(),
            "supports_void": self.supports_void(),
        }
