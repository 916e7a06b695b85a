from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from paycore.core.logging import get_logger
from paycore.integrations.payment_gateways.base import (
    PaymentGateway,
    PaymentRequest,
    PaymentResult,
    PaymentStatus,
    PaymentWebhookResult,
    split_transaction_id,
)
from paycore.integrations.payment_gateways.exceptions import PaymentException
from paycore.integrations.payment_gateways.fake_adapter import FakeGateway
from paycore.integrations.payment_gateways.stripe_adapter import StripeAdapter
from paycore.repositories.orders import OrderRepository
from paycore.services.payment_service import PaymentService

if TYPE_CHECKING:
    from paycore.core.config import Settings

logger = get_logger(__name__)


class PaymentManager:
    """Registry of gateways and router for payment operations.

    The first registered gateway becomes the default unless another one is
    registered with ``is_default=True``. Operations addressed by transaction
    id are routed by the id's gateway prefix.
    """

    def __init__(self, order_repository: OrderRepository, *, skip_replayed_webhooks: bool = True) -> None:
        self.order_repository = order_repository
        self.skip_replayed_webhooks = skip_replayed_webhooks
        self._gateways: Dict[str, PaymentGateway] = {}
        self._default_gateway: Optional[str] = None

    def __len__(self) -> int:
        return len(self._gateways)

    @property
    def gateway_count(self) -> int:
        return len(self._gateways)

    @property
    def default_gateway_id(self) -> Optional[str]:
        return self._default_gateway

    def register_gateway(self, gateway: PaymentGateway, is_default: bool = False) -> None:
        gateway_id = gateway.get_gateway_id()
        replaced = gateway_id in self._gateways
        self._gateways[gateway_id] = gateway

        if is_default or self._default_gateway is None:
            self._default_gateway = gateway_id
        logger.info(
            "payment.gateway.registered",
            gateway_id=gateway_id,
            replaced=replaced,
            is_default=self._default_gateway == gateway_id,
        )

    def remove_gateway(self, gateway_id: str) -> None:
        if gateway_id not in self._gateways:
            return

        del self._gateways[gateway_id]
        if self._default_gateway == gateway_id:
            self._default_gateway = next(iter(self._gateways), None)
        logger.info("payment.gateway.removed", gateway_id=gateway_id, default_gateway=self._default_gateway)

    def set_default_gateway(self, gateway_id: str) -> None:
        if gateway_id not in self._gateways:
            raise PaymentException.gateway_not_configured(gateway_id)
        self._default_gateway = gateway_id

    def has_gateway(self, gateway_id: str) -> bool:
        return gateway_id in self._gateways

    def get_gateway(self, gateway_id: Optional[str] = None) -> PaymentGateway:
        gateway_id = gateway_id or self._default_gateway
        if not gateway_id or gateway_id not in self._gateways:
            raise PaymentException.gateway_not_configured(gateway_id)
        return self._gateways[gateway_id]

    def get_best_gateway_for_currency(self, currency: str) -> PaymentGateway:
        for gateway in self._gateways.values():
            if gateway.supports_currency(currency):
                return gateway
        return self.get_gateway()

    def select_gateway(self, gateway_id: Optional[str] = None, currency: Optional[str] = None) -> PaymentGateway:
        if gateway_id:
            return self.get_gateway(gateway_id)
        if currency:
            return self.get_best_gateway_for_currency(currency)
        return self.get_gateway()

    def get_available_gateways(self) -> Dict[str, Dict[str, Any]]:
        return {
            gateway_id: {**gateway.get_info(), "is_default": gateway_id == self._default_gateway}
            for gateway_id, gateway in self._gateways.items()
        }

    def validate_gateway(self, gateway_id: str) -> List[str]:
        """Problems with a registered gateway's configuration; empty means usable."""
        if not self.has_gateway(gateway_id):
            return [f"Gateway '{gateway_id}' is not registered"]

        errors: List[str] = []
        try:
            gateway = self.get_gateway(gateway_id)
            if not gateway.get_supported_currencies():
                errors.append(f"Gateway '{gateway_id}' supports no currencies")
            if not gateway.get_display_name():
                errors.append(f"Gateway '{gateway_id}' has no display name")
        except PaymentException as exc:
            errors.append(f"Gateway '{gateway_id}' configuration error: {exc.message}")
        except Exception as exc:
            errors.append(f"Gateway '{gateway_id}' validation failed: {exc}")
        return errors

    def create_payment_service(self, gateway_id: Optional[str] = None) -> PaymentService:
        return self._service_for(self.get_gateway(gateway_id))

    def extract_gateway_from_transaction_id(self, transaction_id: str) -> Optional[str]:
        gateway_id, _ = split_transaction_id(transaction_id)
        return gateway_id or self._default_gateway

    async def process_payment(
        self,
        request: PaymentRequest,
        payment_data: Optional[Dict[str, Any]] = None,
        preferred_gateway: Optional[str] = None,
    ) -> PaymentResult:
        gateway = self.select_gateway(preferred_gateway, request.currency)
        return await self._service_for(gateway).process_payment(request, payment_data)

    async def capture_payment(self, transaction_id: str, amount: Optional[Decimal] = None) -> PaymentResult:
        return await self._service_for_transaction(transaction_id).capture_payment(transaction_id, amount)

    async def refund_payment(self, transaction_id: str, amount: Decimal, reason: str = "") -> PaymentResult:
        return await self._service_for_transaction(transaction_id).refund_payment(transaction_id, amount, reason)

    async def void_payment(self, transaction_id: str) -> PaymentResult:
        return await self._service_for_transaction(transaction_id).void_payment(transaction_id)

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        return await self._service_for_transaction(transaction_id).get_payment_status(transaction_id)

    async def handle_webhook(self, gateway_id: str, payload: Dict[str, Any]) -> PaymentWebhookResult:
        """Route a parsed webhook to its gateway. Never raises."""
        try:
            gateway = self.get_gateway(gateway_id)
        except PaymentException as exc:
            logger.warning("payment.webhook.unknown_gateway", gateway_id=gateway_id, **exc.to_dict())
            return PaymentWebhookResult.failed(exc.message, data=payload)
        return await self._service_for(gateway).handle_webhook(payload)

    async def handle_webhook_request(
        self, gateway_id: str, body: bytes, headers: Mapping[str, str]
    ) -> PaymentWebhookResult:
        """Verify and parse a raw webhook request, then route it. Never raises."""
        try:
            gateway = self.get_gateway(gateway_id)
            payload = gateway.parse_webhook(body, headers)
        except PaymentException as exc:
            logger.warning("payment.webhook.rejected", gateway_id=gateway_id, **exc.to_dict())
            return PaymentWebhookResult.failed(exc.message)
        return await self._service_for(gateway).handle_webhook(payload)

    @classmethod
    def create_from_config(cls, order_repository: OrderRepository, settings: "Settings") -> "PaymentManager":
        """Build a manager with every gateway the settings enable."""
        manager = cls(order_repository, skip_replayed_webhooks=settings.webhook_skip_replayed)

        if settings.stripe_secret_key:
            manager.register_gateway(
                StripeAdapter(
                    api_key=settings.stripe_secret_key,
                    webhook_secret=settings.stripe_webhook_secret,
                    publishable_key=settings.stripe_publishable_key,
                ),
                is_default=settings.stripe_is_default,
            )

        if settings.fake_gateway_enabled:
            manager.register_gateway(
                FakeGateway(gateway_id=settings.fake_gateway_id, currencies=settings.fake_gateway_currencies)
            )

        if settings.default_gateway:
            manager.set_default_gateway(settings.default_gateway)

        if not len(manager):
            logger.warning("payment.gateway.none_configured")
        return manager

    def _service_for(self, gateway: PaymentGateway) -> PaymentService:
        return PaymentService(gateway, self.order_repository, skip_replayed_webhooks=self.skip_replayed_webhooks)

    def _service_for_transaction(self, transaction_id: str) -> PaymentService:
        return self._service_for(self.get_gateway(self.extract_gateway_from_transaction_id(transaction_id)))
