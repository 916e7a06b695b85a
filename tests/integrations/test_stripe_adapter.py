"""
Stripe adapter tests.

The Stripe client is replaced by mocks returning plain Stripe-shaped payloads,
so no request ever leaves the process.
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Dict
from unittest.mock import AsyncMock, Mock

import pytest
import stripe

from paycore.integrations.payment_gateways.base import PaymentIntent, PaymentStatus, WebhookEventType
from paycore.integrations.payment_gateways.exceptions import PaymentErrorCode, PaymentException
from paycore.integrations.payment_gateways.stripe_adapter import StripeAdapter
from tests.conftest import make_request


WEBHOOK_SECRET = "whsec_test_123456789"


class StripePayload(dict):
    """Attribute-access dict standing in for a StripeObject."""

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError as exc:
            raise AttributeError(name) from exc

    def to_dict(self) -> Dict[str, Any]:
        return dict(self)


def payment_intent(status: str = "succeeded", **overrides: Any) -> StripePayload:
    values = {
        "id": "pi_123",
        "object": "payment_intent",
        "status": status,
        "amount": 2800,
        "amount_received": 2800 if status == "succeeded" else 0,
        "currency": "ils",
        "client_secret": "pi_123_secret_abc",
        "created": 1700000000,
    }
    values.update(overrides)
    return StripePayload(values)


def card_error(decline_code: str, code: str = "card_declined") -> stripe.CardError:
    return stripe.CardError(
        "Your card was declined.",
        "card",
        code,
        http_status=402,
        json_body={"error": {"type": "card_error", "code": code, "decline_code": decline_code, "message": "Your card was declined."}},
    )


def sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def stripe_adapter():
    adapter = StripeAdapter(api_key="sk_test_123456789", webhook_secret=WEBHOOK_SECRET, publishable_key="pk_test_123")
    adapter.client = Mock()
    return adapter


@pytest.fixture
def intents(stripe_adapter):
    return stripe_adapter.client.v1.payment_intents


class TestStripeAdapterBasic:
    def test_adapter_initialization(self, stripe_adapter):
        assert stripe_adapter.get_gateway_id() == "stripe"
        assert stripe_adapter.get_display_name() == "Stripe"
        assert stripe_adapter.webhook_secret == WEBHOOK_SECRET
        assert stripe_adapter.publishable_key == "pk_test_123"

    def test_requires_secret_key(self):
        with pytest.raises(PaymentException) as exc_info:
            StripeAdapter(api_key="")

        assert exc_info.value.error_code is PaymentErrorCode.GATEWAY_NOT_CONFIGURED

    def test_supported_currencies(self, stripe_adapter):
        assert stripe_adapter.get_supported_currencies() == {"ILS", "USD", "EUR", "GBP"}

    @pytest.mark.parametrize(
        "stripe_status,expected",
        [
            ("requires_payment_method", PaymentStatus.PENDING),
            ("requires_confirmation", PaymentStatus.PENDING),
            ("requires_action", PaymentStatus.PENDING),
            ("processing", PaymentStatus.PENDING),
            ("requires_capture", PaymentStatus.AUTHORIZED),
            ("succeeded", PaymentStatus.CAPTURED),
            ("canceled", PaymentStatus.VOIDED),
            ("something_new", PaymentStatus.FAILED),
        ],
    )
    def test_status_mapping(self, stripe_adapter, stripe_status, expected):
        assert stripe_adapter._map_stripe_status(stripe_status) is expected


class TestStripePayments:
    @pytest.mark.asyncio
    async def test_create_payment_intent(self, stripe_adapter, intents):
        intents.create_async = AsyncMock(return_value=payment_intent("requires_payment_method"))
        request = make_request(order_id=42, amount="28.00", currency="ILS", metadata={"table": 7}, capture_immediately=False)

        intent = await stripe_adapter.create_payment_intent(request)

        params = intents.create_async.call_args.kwargs["params"]
        assert params["amount"] == 2800
        assert params["currency"] == "ils"
        assert params["capture_method"] == "manual"
        assert params["metadata"] == {"table": "7", "order_id": "42"}
        assert intent.gateway_intent_id == "pi_123"
        assert intent.transaction_id == "stripe_pi_123"
        assert intent.client_secret == "pi_123_secret_abc"
        assert intent.status is PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_process_payment_confirms_with_payment_method(self, stripe_adapter, intents):
        intents.confirm_async = AsyncMock(return_value=payment_intent("succeeded"))
        intent = PaymentIntent(gateway_id="stripe", gateway_intent_id="pi_123", amount=Decimal("28.00"), currency="ILS")

        result = await stripe_adapter.process_payment(intent, {"payment_method": "pm_card_visa"})

        intents.confirm_async.assert_awaited_once_with("pi_123", params={"payment_method": "pm_card_visa"})
        assert result.success is True
        assert result.status is PaymentStatus.CAPTURED
        assert result.transaction_id == "stripe_pi_123"
        assert result.amount == Decimal("28")
        assert result.currency == "ILS"
        assert result.raw["id"] == "pi_123"

    @pytest.mark.asyncio
    async def test_process_payment_without_payment_method_reads_intent(self, stripe_adapter, intents):
        intents.retrieve_async = AsyncMock(return_value=payment_intent("requires_payment_method"))
        intent = PaymentIntent(gateway_id="stripe", gateway_intent_id="pi_123", amount=Decimal("28.00"), currency="ILS")

        result = await stripe_adapter.process_payment(intent, {})

        intents.retrieve_async.assert_awaited_once_with("pi_123")
        assert result.success is True
        assert result.status is PaymentStatus.PENDING
        assert result.message == "Payment awaiting customer action"

    @pytest.mark.asyncio
    async def test_process_payment_canceled_intent_fails(self, stripe_adapter, intents):
        intents.retrieve_async = AsyncMock(return_value=payment_intent("canceled"))
        intent = PaymentIntent(gateway_id="stripe", gateway_intent_id="pi_123", amount=Decimal("28.00"), currency="ILS")

        result = await stripe_adapter.process_payment(intent, {})

        assert result.success is False
        assert result.status is PaymentStatus.VOIDED

    @pytest.mark.asyncio
    async def test_capture_strips_prefix_and_converts_amount(self, stripe_adapter, intents):
        intents.capture_async = AsyncMock(return_value=payment_intent("succeeded", amount_received=1500))

        result = await stripe_adapter.capture_payment("stripe_pi_123", Decimal("15.00"))

        intents.capture_async.assert_awaited_once_with("pi_123", params={"amount_to_capture": 1500})
        assert result.success is True
        assert result.amount == Decimal("15")

    @pytest.mark.asyncio
    async def test_refund(self, stripe_adapter):
        stripe_adapter.client.v1.refunds.create_async = AsyncMock(
            return_value=StripePayload(
                {"id": "re_1", "status": "succeeded", "amount": 1000, "currency": "ils", "payment_intent": "pi_123"}
            )
        )

        result = await stripe_adapter.refund_payment("stripe_pi_123", Decimal("10.00"), "customer request")

        params = stripe_adapter.client.v1.refunds.create_async.call_args.kwargs["params"]
        assert params == {"payment_intent": "pi_123", "amount": 1000, "metadata": {"reason": "customer request"}}
        assert result.status is PaymentStatus.REFUNDED
        assert result.transaction_id == "stripe_pi_123"

    @pytest.mark.asyncio
    async def test_void(self, stripe_adapter, intents):
        intents.cancel_async = AsyncMock(return_value=payment_intent("canceled"))

        result = await stripe_adapter.void_payment("stripe_pi_123")

        intents.cancel_async.assert_awaited_once_with("pi_123")
        assert result.success is True
        assert result.status is PaymentStatus.VOIDED

    @pytest.mark.asyncio
    async def test_get_payment_status(self, stripe_adapter, intents):
        intents.retrieve_async = AsyncMock(return_value=payment_intent("requires_capture"))

        assert await stripe_adapter.get_payment_status("stripe_pi_123") is PaymentStatus.AUTHORIZED


class TestStripeErrorMapping:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (card_error("generic_decline"), PaymentErrorCode.CARD_DECLINED),
            (card_error("insufficient_funds"), PaymentErrorCode.INSUFFICIENT_FUNDS),
            (card_error("expired_card", code="expired_card"), PaymentErrorCode.EXPIRED_CARD),
            (card_error("invalid_cvc", code="invalid_cvc"), PaymentErrorCode.INVALID_CARD),
            (stripe.AuthenticationError("Invalid API Key provided"), PaymentErrorCode.AUTHENTICATION_FAILED),
            (stripe.APIConnectionError("Connection reset"), PaymentErrorCode.NETWORK_ERROR),
            (stripe.InvalidRequestError("No such payment_intent", "intent", code="resource_missing"), PaymentErrorCode.TRANSACTION_NOT_FOUND),
            (stripe.APIError("Internal error"), PaymentErrorCode.GATEWAY_ERROR),
        ],
    )
    @pytest.mark.asyncio
    async def test_status_query_errors(self, stripe_adapter, intents, error, expected):
        intents.retrieve_async = AsyncMock(side_effect=error)

        with pytest.raises(PaymentException) as exc_info:
            await stripe_adapter.get_payment_status("stripe_pi_123")

        assert exc_info.value.error_code is expected
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_card_decline_keeps_gateway_detail(self, stripe_adapter, intents):
        intents.confirm_async = AsyncMock(side_effect=card_error("do_not_honor"))
        intent = PaymentIntent(gateway_id="stripe", gateway_intent_id="pi_123", amount=Decimal("28.00"), currency="ILS")

        with pytest.raises(PaymentException) as exc_info:
            await stripe_adapter.process_payment(intent, {"payment_method": "pm_card_visa"})

        assert exc_info.value.gateway_data["decline_code"] == "do_not_honor"
        assert "do_not_honor" not in exc_info.value.get_user_message()

    @pytest.mark.parametrize(
        "error,expected",
        [
            (card_error("expired_card", code="expired_card"), PaymentErrorCode.EXPIRED_CARD),
            (card_error("invalid_cvc", code="invalid_cvc"), PaymentErrorCode.INVALID_CARD),
        ],
    )
    @pytest.mark.asyncio
    async def test_card_problems_keep_gateway_detail(self, stripe_adapter, intents, error, expected):
        intents.confirm_async = AsyncMock(side_effect=error)
        intent = PaymentIntent(gateway_id="stripe", gateway_intent_id="pi_123", amount=Decimal("28.00"), currency="ILS")

        with pytest.raises(PaymentException) as exc_info:
            await stripe_adapter.process_payment(intent, {"payment_method": "pm_card_visa"})

        assert exc_info.value.error_code is expected
        assert exc_info.value.gateway_message == "Your card was declined."
        assert exc_info.value.gateway_data["code"] == error.code

    @pytest.mark.asyncio
    async def test_capture_in_unexpected_state(self, stripe_adapter, intents):
        intents.capture_async = AsyncMock(
            side_effect=stripe.InvalidRequestError("already succeeded", None, code="payment_intent_unexpected_state")
        )

        with pytest.raises(PaymentException) as exc_info:
            await stripe_adapter.capture_payment("stripe_pi_123")

        assert exc_info.value.error_code is PaymentErrorCode.ALREADY_CAPTURED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,expected",
        [
            ("charge_already_refunded", PaymentErrorCode.ALREADY_REFUNDED),
            ("amount_too_large", PaymentErrorCode.REFUND_AMOUNT_EXCEEDS),
        ],
    )
    async def test_refund_errors(self, stripe_adapter, code, expected):
        stripe_adapter.client.v1.refunds.create_async = AsyncMock(
            side_effect=stripe.InvalidRequestError("refund rejected", "amount", code=code)
        )

        with pytest.raises(PaymentException) as exc_info:
            await stripe_adapter.refund_payment("stripe_pi_123", Decimal("99.00"))

        assert exc_info.value.error_code is expected


class TestStripeWebhooks:
    @pytest.mark.parametrize(
        "stripe_event,expected",
        [
            ("payment_intent.succeeded", WebhookEventType.PAYMENT_SUCCEEDED),
            ("payment_intent.payment_failed", WebhookEventType.PAYMENT_FAILED),
            ("payment_intent.canceled", WebhookEventType.PAYMENT_CANCELLED),
            ("payment_intent.amount_capturable_updated", WebhookEventType.PAYMENT_AUTHORIZED),
            ("charge.dispute.created", WebhookEventType.PAYMENT_DISPUTED),
            ("customer.created", WebhookEventType.UNKNOWN),
        ],
    )
    @pytest.mark.asyncio
    async def test_intent_events(self, stripe_adapter, stripe_event, expected):
        event = {"id": "evt_1", "type": stripe_event, "data": {"object": payment_intent()}}

        result = await stripe_adapter.handle_webhook(event)

        assert result.success is True
        assert result.event_type is expected
        assert result.transaction_id == "stripe_pi_123"
        assert result.actions[0]["action"] == "webhook_processed"
        assert result.actions[0]["details"]["stripe_event_id"] == "evt_1"

    @pytest.mark.asyncio
    async def test_charge_event_resolves_owning_intent(self, stripe_adapter):
        event = {
            "id": "evt_2",
            "type": "charge.refunded",
            "data": {"object": {"id": "ch_1", "object": "charge", "payment_intent": "pi_123"}},
        }

        result = await stripe_adapter.handle_webhook(event)

        assert result.event_type is WebhookEventType.PAYMENT_REFUNDED
        assert result.gateway_transaction_id == "pi_123"
        assert result.transaction_id == "stripe_pi_123"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, stripe_adapter):
        result = await stripe_adapter.handle_webhook({"id": "evt_3"})

        assert result.success is False
        assert result.message == "Invalid webhook payload"

    def test_parse_webhook_verifies_signature(self, stripe_adapter):
        body = json.dumps({"id": "evt_1", "object": "event", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_123", "object": "payment_intent"}}})

        event = stripe_adapter.parse_webhook(body.encode(), {"Stripe-Signature": sign(body)})

        assert event["type"] == "payment_intent.succeeded"
        assert event["data"]["object"]["id"] == "pi_123"

    def test_parse_webhook_rejects_bad_signature(self, stripe_adapter):
        body = json.dumps({"id": "evt_1", "object": "event", "type": "payment_intent.succeeded"})

        with pytest.raises(PaymentException) as exc_info:
            stripe_adapter.parse_webhook(body.encode(), {"stripe-signature": sign(body, secret="whsec_other")})

        assert exc_info.value.error_code is PaymentErrorCode.AUTHENTICATION_FAILED

    def test_parse_webhook_rejects_unsigned_body(self, stripe_adapter):
        body = json.dumps({"id": "evt_1", "object": "event", "type": "payment_intent.succeeded"})

        with pytest.raises(PaymentException) as exc_info:
            stripe_adapter.parse_webhook(body.encode(), {})

        assert exc_info.value.error_code is PaymentErrorCode.AUTHENTICATION_FAILED

    def test_parse_webhook_without_secret_reads_json(self):
        adapter = StripeAdapter(api_key="sk_test_123456789")

        assert adapter.parse_webhook(b'{"type": "charge.captured"}', {}) == {"type": "charge.captured"}


class TestStripeHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, stripe_adapter):
        stripe_adapter.client.v1.balance.retrieve_async = AsyncMock(return_value=StripePayload({"object": "balance"}))

        assert await stripe_adapter.health_check() is True
        stripe_adapter.client.v1.balance.retrieve_async.assert_awaited_once_with()

    @pytest.mark.asyncio
    async def test_bad_credentials_report_unhealthy(self, stripe_adapter):
        stripe_adapter.client.v1.balance.retrieve_async = AsyncMock(
            side_effect=stripe.AuthenticationError("Invalid API Key provided")
        )

        assert await stripe_adapter.health_check() is False

    @pytest.mark.asyncio
    async def test_connection_failure_is_translated(self, stripe_adapter):
        stripe_adapter.client.v1.balance.retrieve_async = AsyncMock(side_effect=stripe.APIConnectionError("Connection reset"))

        with pytest.raises(PaymentException) as exc_info:
            await stripe_adapter.health_check()

        assert exc_info.value.error_code is PaymentErrorCode.NETWORK_ERROR
