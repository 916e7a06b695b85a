"""
Shared test configuration and fixtures for the PayCore test suite.
"""

from decimal import Decimal
from typing import Any, Dict

import pytest

from paycore.core.config import clear_settings_cache
from paycore.integrations.payment_gateways.base import PaymentRequest
from paycore.integrations.payment_gateways.fake_adapter import FakeGateway
from paycore.models.order import Order, OrderPaymentStatus, OrderStatus
from paycore.repositories.orders import InMemoryOrderRepository
from paycore.services.payment_manager import PaymentManager
from paycore.services.payment_service import PaymentService


def make_order(order_id: int = 42, **overrides: Any) -> Order:
    fields: Dict[str, Any] = {
        "id": order_id,
        "status": OrderStatus.PENDING,
        "payment_status": OrderPaymentStatus.PENDING,
        "payment_method": None,
        "gateway_transaction_id": None,
        "total_amount": Decimal("28.00"),
        "currency": "ILS",
    }
    fields.update(overrides)
    return Order(**fields)


def make_request(order_id: Any = 42, amount: Any = "28.00", currency: str = "ILS", **overrides: Any) -> PaymentRequest:
    return PaymentRequest(order_id=order_id, amount=amount, currency=currency, **overrides)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Keep settings isolated from the developer's environment and .env file."""
    for name in (
        "DEFAULT_GATEWAY",
        "STRIPE_SECRET_KEY",
        "STRIPE_IS_DEFAULT",
        "FAKE_GATEWAY_ENABLED",
        "FAKE_GATEWAY_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def order_repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository([make_order(42)])


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def payment_service(fake_gateway, order_repository) -> PaymentService:
    return PaymentService(fake_gateway, order_repository)


@pytest.fixture
def payment_manager(fake_gateway, order_repository) -> PaymentManager:
    manager = PaymentManager(order_repository)
    manager.register_gateway(fake_gateway)
    return manager
