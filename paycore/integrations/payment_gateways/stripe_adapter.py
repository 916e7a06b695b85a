"""
Stripe Payment Gateway Adapter

Provides integration with the Stripe payment processing platform through
Payment Intents.
"""

import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Mapping, Optional, Set

import stripe
from stripe import (
    APIConnectionError,
    AuthenticationError,
    CardError,
    InvalidRequestError,
    StripeClient,
    StripeError,
)

from .base import (
    PaymentGateway,
    PaymentIntent,
    PaymentRequest,
    PaymentResult,
    PaymentStatus,
    PaymentWebhookResult,
    WebhookEventType,
)
from .exceptions import PaymentException

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"

DEFAULT_CURRENCIES = ("ILS", "USD", "EUR", "GBP")

_INVALID_CARD_CODES = {
    "incorrect_number",
    "invalid_number",
    "invalid_cvc",
    "incorrect_cvc",
    "invalid_expiry_month",
    "invalid_expiry_year",
}


class StripeAdapter(PaymentGateway):
    """Stripe payment gateway adapter."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: Optional[str] = None,
        publishable_key: Optional[str] = None,
        currencies: Iterable[str] = DEFAULT_CURRENCIES,
    ):
        """
        Initialize Stripe adapter.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook secret for signature verification
            publishable_key: Stripe publishable key
            currencies: Currency codes this account accepts
        """
        if not api_key:
            raise PaymentException.gateway_not_configured("stripe")
        self.client = StripeClient(api_key)
        self.webhook_secret = webhook_secret
        self.publishable_key = publishable_key
        self.currencies = {c.upper() for c in currencies}

    def get_gateway_id(self) -> str:
        return "stripe"

    def get_display_name(self) -> str:
        return "Stripe"

    def get_supported_currencies(self) -> Set[str]:
        return set(self.currencies)

    def supports_authorization(self) -> bool:
        return True

    def supports_capture(self) -> bool:
        return True

    def supports_refunds(self) -> bool:
        return True

    def supports_void(self) -> bool:
        return True

    async def create_payment_intent(self, request: PaymentRequest) -> PaymentIntent:
        """
        Create a Stripe PaymentIntent for the request.

        Manual capture is requested when the request does not capture
        immediately, so the intent stops at ``requires_capture``.
        """
        params: Dict[str, Any] = {
            "amount": request.amount_in_minor_units(),
            "currency": request.currency.lower(),
            "description": request.description,
            "metadata": {**_stringify(request.metadata), "order_id": str(request.order_id)},
            "capture_method": "automatic" if request.capture_immediately else "manual",
        }
        if request.customer_email:
            params["receipt_email"] = request.customer_email

        try:
            payment_intent = await self.client.v1.payment_intents.create_async(params=params)
        except StripeError as e:
            raise self._translate_error(e) from e

        return PaymentIntent(
            gateway_id=self.get_gateway_id(),
            gateway_intent_id=payment_intent.id,
            amount=request.amount,
            currency=request.currency.upper(),
            status=self._map_stripe_status(payment_intent.status),
            order_id=request.order_id,
            client_secret=payment_intent.client_secret,
            metadata=dict(request.metadata),
            gateway_data=payment_intent.to_dict(),
        )

    async def process_payment(self, intent: PaymentIntent, gateway_data: Dict[str, Any]) -> PaymentResult:
        """
        Confirm the intent server-side when a payment method is supplied.

        Without a payment method the client confirms through Stripe.js, so the
        intent is only re-read to report its current state.
        """
        payment_method = gateway_data.get("payment_method")
        try:
            if payment_method:
                payment_intent = await self.client.v1.payment_intents.confirm_async(
                    intent.gateway_intent_id,
                    params={"payment_method": payment_method},
                )
            else:
                payment_intent = await self.client.v1.payment_intents.retrieve_async(intent.gateway_intent_id)
        except StripeError as e:
            raise self._translate_error(e) from e

        status = self._map_stripe_status(payment_intent.status)
        # Pending intents still await the customer (Stripe.js confirmation, 3DS)
        success = status in (PaymentStatus.CAPTURED, PaymentStatus.AUTHORIZED, PaymentStatus.PENDING)
        if status == PaymentStatus.PENDING:
            message = "Payment awaiting customer action"
        elif success:
            message = "Payment processed successfully"
        else:
            message = "Payment failed"
        return self._intent_result(
            payment_intent,
            success=success,
            amount=Decimal(payment_intent.amount) / 100,
            message=message,
        )

    async def capture_payment(self, transaction_id: str, amount: Optional[Decimal] = None) -> PaymentResult:
        intent_id = self.native_transaction_id(transaction_id)
        params: Dict[str, Any] = {}
        if amount is not None:
            params["amount_to_capture"] = _to_minor_units(amount)

        try:
            payment_intent = await self.client.v1.payment_intents.capture_async(intent_id, params=params)
        except StripeError as e:
            raise self._translate_error(e, transaction_id=transaction_id, operation="capture") from e

        return self._intent_result(
            payment_intent,
            success=payment_intent.status == "succeeded",
            amount=Decimal(payment_intent.amount_received or 0) / 100,
            message="Payment captured successfully",
        )

    async def refund_payment(self, transaction_id: str, amount: Decimal, reason: str = "") -> PaymentResult:
        intent_id = self.native_transaction_id(transaction_id)
        params: Dict[str, Any] = {
            "payment_intent": intent_id,
            "amount": _to_minor_units(amount),
        }
        if reason:
            params["metadata"] = {"reason": reason}

        try:
            refund = await self.client.v1.refunds.create_async(params=params)
        except StripeError as e:
            raise self._translate_error(
                e, transaction_id=transaction_id, operation="refund", amount=amount
            ) from e

        return PaymentResult(
            success=refund.status in ("succeeded", "pending"),
            status=PaymentStatus.REFUNDED,
            gateway_id=self.get_gateway_id(),
            gateway_transaction_id=refund.payment_intent or intent_id,
            amount=Decimal(refund.amount) / 100,
            currency=refund.currency.upper(),
            message="Payment refunded successfully",
            raw=refund.to_dict(),
        )

    async def void_payment(self, transaction_id: str) -> PaymentResult:
        intent_id = self.native_transaction_id(transaction_id)
        try:
            payment_intent = await self.client.v1.payment_intents.cancel_async(intent_id)
        except StripeError as e:
            raise self._translate_error(e, transaction_id=transaction_id, operation="void") from e

        return self._intent_result(
            payment_intent,
            success=payment_intent.status == "canceled",
            amount=Decimal(payment_intent.amount) / 100,
            message="Payment voided successfully",
        )

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        intent_id = self.native_transaction_id(transaction_id)
        try:
            payment_intent = await self.client.v1.payment_intents.retrieve_async(intent_id)
        except StripeError as e:
            raise self._translate_error(e, transaction_id=transaction_id) from e
        return self._map_stripe_status(payment_intent.status)

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """
        Verify and parse a Stripe webhook payload.

        Once a webhook secret is configured every request must carry a valid
        ``Stripe-Signature`` header; without a secret the body is read as
        plain JSON.
        """
        if not self.webhook_secret:
            return super().parse_webhook(body, headers)

        signature = _header(headers, SIGNATURE_HEADER)
        if not signature:
            logger.error("Stripe webhook rejected: missing signature header")
            raise PaymentException.authentication_failed("Missing webhook signature")

        try:
            event = stripe.Webhook.construct_event(body, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe webhook signature verification failed: {e}")
            raise PaymentException.authentication_failed("Invalid webhook signature") from e
        except ValueError as e:
            raise PaymentException.invalid_request(f"Malformed webhook payload: {e}") from e
        return event.to_dict()

    async def handle_webhook(self, payload: Dict[str, Any]) -> PaymentWebhookResult:
        event_type = payload.get("type")
        obj = (payload.get("data") or {}).get("object") or {}
        if not event_type or not obj:
            return PaymentWebhookResult.failed("Invalid webhook payload", data=payload)

        # charge.* events carry a Charge; the owning intent is on payment_intent
        native_id = obj.get("payment_intent") if obj.get("object") != "payment_intent" else obj.get("id")
        native_id = native_id or obj.get("id")

        result = PaymentWebhookResult.succeeded(
            self._map_webhook_event(event_type),
            transaction_id=self.transaction_id_for(native_id) if native_id else None,
            gateway_transaction_id=native_id,
            data=payload,
        )
        result.add_action(
            "webhook_processed",
            {"stripe_event_id": payload.get("id"), "stripe_event_type": event_type},
        )
        return result

    async def health_check(self) -> bool:
        """
        Check if Stripe API is accessible.

        Returns:
            True if Stripe is responding correctly
        """
        try:
            await self.client.v1.balance.retrieve_async()
            return True
        except AuthenticationError:
            # Authentication error means API is reachable but credentials are wrong
            logger.warning("Stripe health check: Authentication failed")
            return False
        except StripeError as e:
            logger.error(f"Stripe health check failed: {e}")
            raise self._translate_error(e) from e

    def _intent_result(self, payment_intent: Any, *, success: bool, amount: Decimal, message: str) -> PaymentResult:
        return PaymentResult(
            success=success,
            status=self._map_stripe_status(payment_intent.status),
            gateway_id=self.get_gateway_id(),
            gateway_transaction_id=payment_intent.id,
            amount=amount,
            currency=payment_intent.currency.upper(),
            message=message,
            raw=payment_intent.to_dict(),
        )

    def _translate_error(
        self,
        error: StripeError,
        *,
        transaction_id: Optional[str] = None,
        operation: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> PaymentException:
        """Map a Stripe SDK error onto the payment error taxonomy."""
        code = error.code or ""
        details = _error_details(error)
        message = details.get("message") or str(error)
        logger.error(f"Stripe {operation or 'API'} error ({code or type(error).__name__}): {message}")

        if isinstance(error, CardError):
            decline_code = details.get("decline_code") or code
            if decline_code == "insufficient_funds":
                return PaymentException.insufficient_funds(message, details)
            if decline_code == "expired_card" or code == "expired_card":
                return PaymentException.expired_card(message, details)
            if decline_code in _INVALID_CARD_CODES or code in _INVALID_CARD_CODES:
                return PaymentException.invalid_card(message, details)
            return PaymentException.card_declined(message, details)

        if isinstance(error, AuthenticationError):
            return PaymentException.authentication_failed(message)

        if isinstance(error, APIConnectionError):
            return PaymentException.network_error(f"Stripe API request failed: {message}")

        if isinstance(error, InvalidRequestError):
            if code == "resource_missing" and transaction_id:
                return PaymentException.transaction_not_found(transaction_id)
            if code == "payment_intent_unexpected_state" and operation == "capture" and transaction_id:
                return PaymentException.already_captured(transaction_id)
            if code == "charge_already_refunded" and transaction_id:
                return PaymentException.already_refunded(transaction_id)
            if code in ("amount_too_large", "charge_exceeds_source_limit") and amount is not None:
                return PaymentException.refund_amount_exceeds(amount, "the captured amount")

        return PaymentException.gateway_error(message, details)

    def _map_stripe_status(self, stripe_status: str) -> PaymentStatus:
        """Map Stripe status to our PaymentStatus enum."""
        status_mapping = {
            "requires_payment_method": PaymentStatus.PENDING,
            "requires_confirmation": PaymentStatus.PENDING,
            "requires_action": PaymentStatus.PENDING,
            "processing": PaymentStatus.PENDING,
            "requires_capture": PaymentStatus.AUTHORIZED,
            "succeeded": PaymentStatus.CAPTURED,
            "canceled": PaymentStatus.VOIDED,
        }
        return status_mapping.get(stripe_status, PaymentStatus.FAILED)

    def _map_webhook_event(self, stripe_event: str) -> WebhookEventType:
        event_mapping = {
            "payment_intent.succeeded": WebhookEventType.PAYMENT_SUCCEEDED,
            "payment_intent.payment_failed": WebhookEventType.PAYMENT_FAILED,
            "payment_intent.canceled": WebhookEventType.PAYMENT_CANCELLED,
            "payment_intent.amount_capturable_updated": WebhookEventType.PAYMENT_AUTHORIZED,
            "charge.refunded": WebhookEventType.PAYMENT_REFUNDED,
            "charge.captured": WebhookEventType.PAYMENT_CAPTURED,
            "charge.dispute.created": WebhookEventType.PAYMENT_DISPUTED,
        }
        return event_mapping.get(stripe_event, WebhookEventType.UNKNOWN)


def _to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _stringify(metadata: Dict[str, Any]) -> Dict[str, str]:
    # Stripe metadata values must be strings
    return {str(k): v if isinstance(v, str) else json.dumps(v, default=str) for k, v in metadata.items()}


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _error_details(error: StripeError) -> Dict[str, Any]:
    body = error.json_body if isinstance(error.json_body, dict) else {}
    details = body.get("error")
    if isinstance(details, dict):
        return dict(details)
    return {"code": error.code, "message": error.user_message or str(error)}
