from __future__ import annotations

from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, Optional, Tuple

from paycore.core.logging import get_logger
from paycore.integrations.payment_gateways.base import (
    OrderId,
    PaymentGateway,
    PaymentRequest,
    PaymentResult,
    PaymentStatus,
    PaymentWebhookResult,
    WebhookEventType,
)
from paycore.integrations.payment_gateways.exceptions import PaymentException
from paycore.models.order import Order, OrderPaymentStatus, OrderStatus
from paycore.repositories.orders import OrderRepository

logger = get_logger(__name__)

OrderFields = Dict[str, Any]

_WEBHOOK_ORDER_FIELDS: Dict[WebhookEventType, OrderFields] = {
    WebhookEventType.PAYMENT_SUCCEEDED: {"status": OrderStatus.CONFIRMED, "payment_status": OrderPaymentStatus.PAID},
    WebhookEventType.PAYMENT_CAPTURED: {"status": OrderStatus.CONFIRMED, "payment_status": OrderPaymentStatus.PAID},
    WebhookEventType.PAYMENT_FAILED: {"status": OrderStatus.CANCELLED, "payment_status": OrderPaymentStatus.FAILED},
    WebhookEventType.PAYMENT_CANCELLED: {"status": OrderStatus.CANCELLED, "payment_status": OrderPaymentStatus.FAILED},
    WebhookEventType.PAYMENT_REFUNDED: {"payment_status": OrderPaymentStatus.REFUNDED},
    WebhookEventType.PAYMENT_AUTHORIZED: {"payment_status": OrderPaymentStatus.AUTHORIZED},
}

_FAILED_ORDER_FIELDS: OrderFields = {"status": OrderStatus.CANCELLED, "payment_status": OrderPaymentStatus.FAILED}


def order_state_for_result(result: PaymentResult) -> Tuple[OrderStatus, OrderPaymentStatus]:
    """Order status pair a processed payment leaves behind.

    An unsuccessful result always maps to CANCELLED/FAILED, whatever status
    the gateway reported.
    """
    if result.success and result.status == PaymentStatus.CAPTURED:
        return OrderStatus.CONFIRMED, OrderPaymentStatus.PAID
    if result.success and result.status == PaymentStatus.AUTHORIZED:
        return OrderStatus.PENDING, OrderPaymentStatus.AUTHORIZED
    if result.success and result.status == PaymentStatus.PENDING:
        return OrderStatus.PENDING, OrderPaymentStatus.PENDING
    return OrderStatus.CANCELLED, OrderPaymentStatus.FAILED


def _positive_amount(amount: Any) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise PaymentException.invalid_amount(amount) from None
    if value.is_nan() or value <= 0:
        raise PaymentException.invalid_amount(amount)
    return value


class PaymentService:
    """Runs payment operations against one gateway and keeps the Order in step.

    Every gateway failure is logged here with its full detail and re-raised
    unchanged; anything that is not a PaymentException is wrapped as a
    processing error. Nothing is retried.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        order_repository: OrderRepository,
        *,
        skip_replayed_webhooks: bool = True,
    ) -> None:
        self.gateway = gateway
        self.order_repository = order_repository
        self.skip_replayed_webhooks = skip_replayed_webhooks

    @property
    def gateway_id(self) -> str:
        return self.gateway.get_gateway_id()

    @contextmanager
    def _logged_errors(self, operation: str, **context: Any) -> Iterator[None]:
        try:
            yield
        except PaymentException as exc:
            logger.error(f"payment.{operation}.failed", gateway_id=self.gateway_id, **context, **exc.to_dict())
            raise
        except Exception as exc:
            logger.exception(f"payment.{operation}.error", gateway_id=self.gateway_id, **context)
            raise PaymentException.processing_error(str(exc)) from exc

    async def process_payment(
        self, request: PaymentRequest, payment_data: Optional[Dict[str, Any]] = None
    ) -> PaymentResult:
        """
        Create an intent, process it, and synchronize the Order from the outcome.

        Validation errors are raised before any gateway call or Order change.
        When the gateway rejects the payment by raising, the Order is still
        marked CANCELLED/FAILED before the error propagates.
        """
        with self._logged_errors("process", order_id=request.order_id):
            errors = request.validate()
            if errors:
                raise PaymentException.invalid_request(errors)

            intent = await self.gateway.create_payment_intent(request)
            logger.info(
                "payment.intent.created",
                gateway_id=self.gateway_id,
                order_id=request.order_id,
                intent_id=intent.gateway_intent_id,
            )

            try:
                result = await self.gateway.process_payment(intent, payment_data or {})
            except Exception:
                await self._update_order(
                    request.order_id,
                    {
                        **_FAILED_ORDER_FIELDS,
                        "payment_method": self.gateway_id,
                        "gateway_transaction_id": intent.transaction_id,
                    },
                )
                raise

            await self._sync_order_from_result(request.order_id, result)

        logger.info(
            "payment.processed",
            gateway_id=self.gateway_id,
            order_id=request.order_id,
            transaction_id=result.transaction_id,
            success=result.success,
            status=result.status.value,
        )
        return result

    async def capture_payment(self, transaction_id: str, amount: Optional[Any] = None) -> PaymentResult:
        with self._logged_errors("capture", transaction_id=transaction_id):
            if not self.gateway.supports_capture():
                raise PaymentException.invalid_request(f"{self.gateway_id} does not support capture")
            capture_amount = None if amount is None else _positive_amount(amount)

            result = await self.gateway.capture_payment(transaction_id, capture_amount)
            if result.success:
                await self._sync_orders_by_transaction(
                    transaction_id,
                    {"status": OrderStatus.CONFIRMED, "payment_status": OrderPaymentStatus.PAID},
                )
        logger.info("payment.captured", gateway_id=self.gateway_id, transaction_id=transaction_id, success=result.success)
        return result

    async def refund_payment(self, transaction_id: str, amount: Any, reason: str = "") -> PaymentResult:
        with self._logged_errors("refund", transaction_id=transaction_id, amount=str(amount)):
            refund_amount = _positive_amount(amount)
            if not self.gateway.supports_refunds():
                raise PaymentException.invalid_request(f"{self.gateway_id} does not support refunds")

            result = await self.gateway.refund_payment(transaction_id, refund_amount, reason)
            if result.success:
                await self._sync_orders_by_transaction(
                    transaction_id, {"payment_status": OrderPaymentStatus.REFUNDED}
                )
        logger.info("payment.refunded", gateway_id=self.gateway_id, transaction_id=transaction_id, amount=str(refund_amount))
        return result

    async def void_payment(self, transaction_id: str) -> PaymentResult:
        with self._logged_errors("void", transaction_id=transaction_id):
            if not self.gateway.supports_void():
                raise PaymentException.invalid_request(f"{self.gateway_id} does not support void")

            result = await self.gateway.void_payment(transaction_id)
            if result.success:
                await self._sync_orders_by_transaction(transaction_id, dict(_FAILED_ORDER_FIELDS))
        logger.info("payment.voided", gateway_id=self.gateway_id, transaction_id=transaction_id)
        return result

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        with self._logged_errors("status", transaction_id=transaction_id):
            return await self.gateway.get_payment_status(transaction_id)

    async def handle_webhook(self, payload: Dict[str, Any]) -> PaymentWebhookResult:
        """
        Parse a webhook through the gateway and apply it to the matching Order.

        Never raises: gateway notifications must always be acknowledged, so
        every failure comes back as an unsuccessful result instead.
        """
        try:
            result = await self.gateway.handle_webhook(payload)
        except PaymentException as exc:
            logger.error("payment.webhook.failed", gateway_id=self.gateway_id, **exc.to_dict())
            return PaymentWebhookResult.failed(f"Webhook processing failed: {exc.message}", data=payload)
        except Exception as exc:
            logger.exception("payment.webhook.error", gateway_id=self.gateway_id)
            return PaymentWebhookResult.failed(f"Webhook processing failed: {exc}", data=payload)

        if not result.success:
            logger.warning("payment.webhook.rejected", gateway_id=self.gateway_id, reason=result.message)
            return result

        transaction_id = result.transaction_id
        if not transaction_id and result.gateway_transaction_id:
            transaction_id = self.gateway.transaction_id_for(result.gateway_transaction_id)
        if not transaction_id:
            return result

        fields = _WEBHOOK_ORDER_FIELDS.get(result.event_type)
        if fields is None:
            logger.info(
                "payment.webhook.ignored",
                gateway_id=self.gateway_id,
                event_type=result.event_type.value,
                transaction_id=transaction_id,
            )
            return result

        try:
            await self._apply_webhook(result, transaction_id, fields)
        except Exception as exc:
            logger.exception(
                "payment.webhook.order_update_failed",
                gateway_id=self.gateway_id,
                transaction_id=transaction_id,
            )
            result.success = False
            result.message = f"Order update failed: {exc}"
        return result

    def get_gateway_info(self) -> Dict[str, Any]:
        return self.gateway.get_info()

    async def _apply_webhook(
        self, result: PaymentWebhookResult, transaction_id: str, fields: OrderFields
    ) -> None:
        orders = await self.order_repository.find_by({"gateway_transaction_id": transaction_id})
        if not orders:
            logger.warning(
                "payment.webhook.order_not_found",
                gateway_id=self.gateway_id,
                transaction_id=transaction_id,
                event_type=result.event_type.value,
            )
            return

        order = orders[0]
        if self.skip_replayed_webhooks and _already_applied(order, fields):
            logger.info("payment.webhook.replayed", order_id=order.id, event_type=result.event_type.value)
            result.add_action("order_unchanged", _action_details(order, fields))
            return

        await self.order_repository.update(order.id, fields)
        result.add_action("order_updated", _action_details(order, fields))
        logger.info(
            "payment.webhook.order_updated",
            order_id=order.id,
            event_type=result.event_type.value,
            transaction_id=transaction_id,
        )

    async def _sync_order_from_result(self, order_id: OrderId, result: PaymentResult) -> None:
        status, payment_status = order_state_for_result(result)
        fields: OrderFields = {"status": status, "payment_status": payment_status}
        if result.gateway_id:
            fields["payment_method"] = result.gateway_id
        if result.transaction_id:
            fields["gateway_transaction_id"] = result.transaction_id
        await self._update_order(order_id, fields)

    async def _update_order(self, order_id: OrderId, fields: OrderFields) -> None:
        order = await self.order_repository.get(order_id)
        if order is None:
            logger.warning("payment.order.not_found", gateway_id=self.gateway_id, order_id=order_id)
            return
        await self.order_repository.update(order_id, fields)
        logger.info(
            "payment.order.synced",
            order_id=order_id,
            status=fields["status"].value,
            payment_status=fields["payment_status"].value,
        )

    async def _sync_orders_by_transaction(self, transaction_id: str, fields: OrderFields) -> None:
        composite_id = self.gateway.transaction_id_for(self.gateway.native_transaction_id(transaction_id))
        orders = await self.order_repository.find_by({"gateway_transaction_id": composite_id})
        if not orders:
            logger.info("payment.order.not_found", gateway_id=self.gateway_id, transaction_id=composite_id)
            return
        for order in orders:
            await self.order_repository.update(order.id, fields)


def _already_applied(order: Order, fields: OrderFields) -> bool:
    return all(getattr(order, name) == value for name, value in fields.items())


def _action_details(order: Order, fields: OrderFields) -> Dict[str, Any]:
    status = fields.get("status", order.status)
    payment_status = fields.get("payment_status", order.payment_status)
    return {
        "order_id": order.id,
        "new_status": getattr(status, "value", status),
        "new_payment_status": getattr(payment_status, "value", payment_status),
    }
