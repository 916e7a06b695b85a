"""
Payment gateway integration modules

Provides adapters for payment processing platforms behind one
contract, with a shared error taxonomy.
"""

from .base import (
    PaymentGateway,
    PaymentIntent,
    PaymentRequest,
    PaymentResult,
    PaymentStatus,
    PaymentWebhookResult,
    WebhookEventType,
    compose_transaction_id,
    split_transaction_id,
)
from .exceptions import PaymentErrorCode, PaymentException
from .fake_adapter import FakeGateway
from .stripe_adapter import StripeAdapter

__all__ = [
    "PaymentGateway",
    "PaymentIntent",
    "PaymentRequest",
    "PaymentResult",
    "PaymentStatus",
    "PaymentWebhookResult",
    "WebhookEventType",
    "compose_transaction_id",
    "split_transaction_id",
    "PaymentErrorCode",
    "PaymentException",
    "FakeGateway",
    "StripeAdapter",
]
