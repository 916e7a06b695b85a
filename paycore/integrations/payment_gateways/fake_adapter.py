"""
Configurable in-memory payment gateway for development and testing.

Simulates a gateway without any external calls. It keeps intents and
transactions in memory, so it enforces the same lifecycle rules a real
gateway would (no double capture, no refund above the captured amount), and
it can be switched to decline at runtime.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from .base import (
    PaymentGateway,
    PaymentIntent,
    PaymentRequest,
    PaymentResult,
    PaymentStatus,
    PaymentWebhookResult,
    WebhookEventType,
)
from .exceptions import PaymentErrorCode, PaymentException

logger = logging.getLogger(__name__)

_DECLINES = {
    PaymentErrorCode.CARD_DECLINED: PaymentException.card_declined,
    PaymentErrorCode.INSUFFICIENT_FUNDS: PaymentException.insufficient_funds,
}


@dataclass
class FakeTransaction:
    """Gateway-side record of one payment."""
    native_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    amount_captured: Decimal = Decimal("0")
    amount_refunded: Decimal = Decimal("0")
    capture_immediately: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount_captured - self.amount_refunded


class FakeGateway(PaymentGateway):
    """In-memory payment gateway."""

    def __init__(
        self,
        gateway_id: str = "fake",
        display_name: str = "Test Gateway",
        currencies: Iterable[str] = ("USD", "EUR", "ILS"),
        *,
        authorization: bool = True,
        capture: bool = True,
        refunds: bool = True,
        void: bool = True,
    ) -> None:
        self.gateway_id = gateway_id.lower()
        self.display_name = display_name
        self.currencies = {c.upper() for c in currencies}
        self._capabilities = {
            "authorization": authorization,
            "capture": capture,
            "refunds": refunds,
            "void": void,
        }
        self.should_succeed: bool = True
        self.failure_code: PaymentErrorCode = PaymentErrorCode.CARD_DECLINED
        self.failure_reason: str = "Card declined"
        self.transactions: Dict[str, FakeTransaction] = {}
        self.calls: List[Dict[str, Any]] = []

    def configure(
        self,
        should_succeed: bool,
        failure_code: PaymentErrorCode = PaymentErrorCode.CARD_DECLINED,
        failure_reason: str = "Card declined",
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_code = failure_code
        self.failure_reason = failure_reason

    def get_gateway_id(self) -> str:
        return self.gateway_id

    def get_display_name(self) -> str:
        return self.display_name

    def get_supported_currencies(self) -> Set[str]:
        return set(self.currencies)

    def supports_authorization(self) -> bool:
        return self._capabilities["authorization"]

    def supports_capture(self) -> bool:
        return self._capabilities["capture"]

    def supports_refunds(self) -> bool:
        return self._capabilities["refunds"]

    def supports_void(self) -> bool:
        return self._capabilities["void"]

    def call_count(self, method: str) -> int:
        return sum(1 for call in self.calls if call["method"] == method)

    async def create_payment_intent(self, request: PaymentRequest) -> PaymentIntent:
        self.calls.append({"method": "create_payment_intent", "order_id": request.order_id})

        currency = request.currency.upper()
        if currency not in self.currencies:
            raise PaymentException.invalid_currency(request.currency)

        native_id = f"pi{uuid4().hex[:16]}"
        self.transactions[native_id] = FakeTransaction(
            native_id=native_id,
            amount=request.amount,
            currency=currency,
            capture_immediately=request.capture_immediately,
            metadata=dict(request.metadata, order_id=request.order_id),
        )
        return PaymentIntent(
            gateway_id=self.gateway_id,
            gateway_intent_id=native_id,
            amount=request.amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            order_id=request.order_id,
            client_secret=f"{native_id}_secret",
            metadata=dict(request.metadata),
        )

    async def process_payment(self, intent: PaymentIntent, gateway_data: Dict[str, Any]) -> PaymentResult:
        self.calls.append(
            {"method": "process_payment", "intent_id": intent.gateway_intent_id, "gateway_data": gateway_data}
        )
        txn = self._get(intent.gateway_intent_id)

        if not self.should_succeed:
            txn.status = PaymentStatus.FAILED
            logger.info("Fake gateway declined %s: %s", txn.native_id, self.failure_reason)
            return self._result(
                txn,
                success=False,
                message=self.failure_reason,
                raw={"failure_code": self.failure_code.value},
            )

        if txn.capture_immediately or not self.supports_authorization():
            txn.status = PaymentStatus.CAPTURED
            txn.amount_captured = txn.amount
        else:
            txn.status = PaymentStatus.AUTHORIZED
        return self._result(txn, success=True, message="Payment processed successfully")

    async def capture_payment(self, transaction_id: str, amount: Optional[Decimal] = None) -> PaymentResult:
        self.calls.append({"method": "capture_payment", "transaction_id": transaction_id, "amount": amount})
        self._raise_if_declining()
        txn = self._get(transaction_id)

        if txn.status == PaymentStatus.CAPTURED:
            raise PaymentException.already_captured(transaction_id)
        if txn.status != PaymentStatus.AUTHORIZED:
            raise PaymentException.gateway_error(f"cannot capture a payment in status {txn.status.value}")

        capture_amount = txn.amount if amount is None else Decimal(amount)
        if capture_amount > txn.amount:
            raise PaymentException.invalid_amount(capture_amount)

        txn.amount_captured = capture_amount
        txn.status = PaymentStatus.CAPTURED
        return self._result(txn, success=True, amount=capture_amount, message="Payment captured successfully")

    async def refund_payment(self, transaction_id: str, amount: Decimal, reason: str = "") -> PaymentResult:
        self.calls.append(
            {"method": "refund_payment", "transaction_id": transaction_id, "amount": amount, "reason": reason}
        )
        self._raise_if_declining()
        txn = self._get(transaction_id)

        if txn.status == PaymentStatus.REFUNDED:
            raise PaymentException.already_refunded(transaction_id)
        if txn.status != PaymentStatus.CAPTURED:
            raise PaymentException.gateway_error(f"cannot refund a payment in status {txn.status.value}")

        amount = Decimal(amount)
        if amount > txn.refundable_amount:
            raise PaymentException.refund_amount_exceeds(amount, txn.refundable_amount)

        txn.amount_refunded += amount
        if txn.refundable_amount == 0:
            txn.status = PaymentStatus.REFUNDED
        return PaymentResult(
            success=True,
            status=PaymentStatus.REFUNDED,
            gateway_id=self.gateway_id,
            gateway_transaction_id=txn.native_id,
            amount=amount,
            currency=txn.currency,
            message="Payment refunded successfully",
            raw={"reason": reason, "amount_refunded": str(txn.amount_refunded)},
        )

    async def void_payment(self, transaction_id: str) -> PaymentResult:
        self.calls.append({"method": "void_payment", "transaction_id": transaction_id})
        self._raise_if_declining()
        txn = self._get(transaction_id)

        if txn.status == PaymentStatus.CAPTURED:
            raise PaymentException.already_captured(transaction_id)
        if txn.status not in (PaymentStatus.AUTHORIZED, PaymentStatus.PENDING):
            raise PaymentException.gateway_error(f"cannot void a payment in status {txn.status.value}")

        txn.status = PaymentStatus.VOIDED
        return self._result(txn, success=True, message="Payment voided successfully")

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        self.calls.append({"method": "get_payment_status", "transaction_id": transaction_id})
        return self._get(transaction_id).status

    async def handle_webhook(self, payload: Dict[str, Any]) -> PaymentWebhookResult:
        """Accepts ``{"event_type": "payment.succeeded", "transaction_id": "..."}``."""
        self.calls.append({"method": "handle_webhook", "payload": payload})

        raw_event = payload.get("event_type")
        raw_id = payload.get("transaction_id")
        if not raw_event or not raw_id:
            return PaymentWebhookResult.failed("Invalid webhook payload", data=payload)

        try:
            event_type = WebhookEventType(raw_event)
        except ValueError:
            event_type = WebhookEventType.UNKNOWN

        native_id = self.native_transaction_id(str(raw_id))
        return PaymentWebhookResult.succeeded(
            event_type,
            transaction_id=self.transaction_id_for(native_id),
            gateway_transaction_id=native_id,
            data=payload,
        )

    def _get(self, transaction_id: str) -> FakeTransaction:
        txn = self.transactions.get(self.native_transaction_id(transaction_id))
        if txn is None:
            raise PaymentException.transaction_not_found(transaction_id)
        return txn

    def _raise_if_declining(self) -> None:
        if self.should_succeed:
            return
        factory = _DECLINES.get(self.failure_code)
        if factory is not None:
            raise factory(self.failure_reason)
        raise PaymentException.gateway_error(self.failure_reason)

    def _result(
        self,
        txn: FakeTransaction,
        *,
        success: bool,
        message: str,
        amount: Optional[Decimal] = None,
        raw: Optional[Dict[str, Any]] = None,
    ) -> PaymentResult:
        return PaymentResult(
            success=success,
            status=txn.status,
            gateway_id=self.gateway_id,
            gateway_transaction_id=txn.native_id,
            amount=txn.amount if amount is None else amount,
            currency=txn.currency,
            message=message,
            raw=raw or {"status": txn.status.value},
        )
