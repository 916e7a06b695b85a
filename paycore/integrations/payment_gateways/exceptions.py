"""
Payment Error Taxonomy

A single exception type carrying one code from a closed set, with one factory
per failure kind. Gateway messages and payloads stay on the exception for
server-side logs; end users only ever see get_user_message().
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Union


class PaymentErrorCode(str, Enum):
    """Closed set of payment failure kinds."""
    GATEWAY_NOT_CONFIGURED = "gateway_not_configured"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_CURRENCY = "invalid_currency"
    CARD_DECLINED = "card_declined"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    EXPIRED_CARD = "expired_card"
    INVALID_CARD = "invalid_card"
    PROCESSING_ERROR = "processing_error"
    GATEWAY_ERROR = "gateway_error"
    NETWORK_ERROR = "network_error"
    INVALID_REQUEST = "invalid_request"
    AUTHENTICATION_FAILED = "authentication_failed"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    ALREADY_CAPTURED = "already_captured"
    ALREADY_REFUNDED = "already_refunded"
    REFUND_AMOUNT_EXCEEDS = "refund_amount_exceeds"


_DEFAULT_USER_MESSAGE = "Payment failed. Please try again or contact support."

USER_MESSAGES: Dict[PaymentErrorCode, str] = {
    PaymentErrorCode.CARD_DECLINED: "Your payment was declined. Please try a different payment method.",
    PaymentErrorCode.INSUFFICIENT_FUNDS: "Insufficient funds. Please check your account balance or try a different card.",
    PaymentErrorCode.EXPIRED_CARD: "Your card has expired. Please use a different payment method.",
    PaymentErrorCode.INVALID_CARD: "Invalid card information. Please check your card details and try again.",
    PaymentErrorCode.NETWORK_ERROR: "Network error. Please check your connection and try again.",
    PaymentErrorCode.PROCESSING_ERROR: "Payment processing error. Please try again or contact support.",
    PaymentErrorCode.GATEWAY_ERROR: "Payment processing error. Please try again or contact support.",
    PaymentErrorCode.GATEWAY_NOT_CONFIGURED: "This payment method is currently unavailable.",
    PaymentErrorCode.INVALID_AMOUNT: "The payment amount is invalid.",
    PaymentErrorCode.INVALID_CURRENCY: "This currency is not supported.",
    PaymentErrorCode.INVALID_REQUEST: "The payment request is invalid. Please review your details and try again.",
    PaymentErrorCode.TRANSACTION_NOT_FOUND: "The payment could not be found.",
    PaymentErrorCode.ALREADY_CAPTURED: "This payment has already been completed.",
    PaymentErrorCode.ALREADY_REFUNDED: "This payment has already been refunded.",
    PaymentErrorCode.REFUND_AMOUNT_EXCEEDS: "The refund amount exceeds the amount available for refund.",
}

HTTP_STATUSES: Dict[PaymentErrorCode, int] = {
    PaymentErrorCode.GATEWAY_NOT_CONFIGURED: 503,
    PaymentErrorCode.INVALID_AMOUNT: 422,
    PaymentErrorCode.INVALID_CURRENCY: 422,
    PaymentErrorCode.INVALID_REQUEST: 422,
    PaymentErrorCode.CARD_DECLINED: 402,
    PaymentErrorCode.INSUFFICIENT_FUNDS: 402,
    PaymentErrorCode.EXPIRED_CARD: 402,
    PaymentErrorCode.INVALID_CARD: 402,
    PaymentErrorCode.TRANSACTION_NOT_FOUND: 404,
    PaymentErrorCode.ALREADY_CAPTURED: 409,
    PaymentErrorCode.ALREADY_REFUNDED: 409,
    PaymentErrorCode.REFUND_AMOUNT_EXCEEDS: 409,
    PaymentErrorCode.NETWORK_ERROR: 502,
    PaymentErrorCode.GATEWAY_ERROR: 502,
    PaymentErrorCode.AUTHENTICATION_FAILED: 502,
    PaymentErrorCode.PROCESSING_ERROR: 500,
}


Amount = Union[Decimal, float, int, str]


class PaymentException(Exception):
    """Payment failure carrying a taxonomy code."""

    def __init__(
        self,
        message: str,
        error_code: PaymentErrorCode,
        gateway_message: Optional[str] = None,
        gateway_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = PaymentErrorCode(error_code)
        self.gateway_message = gateway_message or None
        self.gateway_data = gateway_data or {}

    @classmethod
    def gateway_not_configured(cls, gateway_id: Optional[str]) -> "PaymentException":
        return cls(
            f"Payment gateway '{gateway_id or 'unknown'}' is not properly configured",
            PaymentErrorCode.GATEWAY_NOT_CONFIGURED,
        )

    @classmethod
    def invalid_amount(cls, amount: Optional[Amount]) -> "PaymentException":
        return cls(f"Invalid payment amount: {amount}", PaymentErrorCode.INVALID_AMOUNT)

    @classmethod
    def invalid_currency(cls, currency: Optional[str]) -> "PaymentException":
        return cls(f"Unsupported currency: {currency}", PaymentErrorCode.INVALID_CURRENCY)

    @classmethod
    def card_declined(
        cls, gateway_message: str = "", gateway_data: Optional[Dict[str, Any]] = None
    ) -> "PaymentException":
        return cls(
            "Payment was declined by the bank",
            PaymentErrorCode.CARD_DECLINED,
            gateway_message=gateway_message,
            gateway_data=gateway_data,
        )

    @classmethod
    def insufficient_funds(
        cls, gateway_message: str = "", gateway_data: Optional[Dict[str, Any]] = None
    ) -> "PaymentException":
        return cls(
            "Insufficient funds to complete the payment",
            PaymentErrorCode.INSUFFICIENT_FUNDS,
            gateway_message=gateway_message,
            gateway_data=gateway_data,
        )

    @classmethod
    def expired_card(
        cls, gateway_message: str = "", gateway_data: Optional[Dict[str, Any]] = None
    ) -> "PaymentException":
        return cls(
            "The payment card has expired",
            PaymentErrorCode.EXPIRED_CARD,
            gateway_message=gateway_message,
            gateway_data=gateway_data,
        )

    @classmethod
    def invalid_card(
        cls, gateway_message: str = "", gateway_data: Optional[Dict[str, Any]] = None
    ) -> "PaymentException":
        return cls(
            "Invalid card information provided",
            PaymentErrorCode.INVALID_CARD,
            gateway_message=gateway_message,
            gateway_data=gateway_data,
        )

    @classmethod
    def processing_error(
        cls, message: str, gateway_data: Optional[Dict[str, Any]] = None
    ) -> "PaymentException":
        return cls(
            f"Payment processing error: {message}",
            PaymentErrorCode.PROCESSING_ERROR,
            gateway_data=gateway_data,
        )

    @classmethod
    def gateway_error(
        cls, gateway_message: str, gateway_data: Optional[Dict[str, Any]] = None
    ) -> "PaymentException":
        return cls(
            f"Payment gateway error: {gateway_message}",
            PaymentErrorCode.GATEWAY_ERROR,
            gateway_message=gateway_message,
            gateway_data=gateway_data,
        )

    @classmethod
    def network_error(cls, message: str = "Network communication failed") -> "PaymentException":
        return cls(message, PaymentErrorCode.NETWORK_ERROR)

    @classmethod
    def invalid_request(cls, errors: Union[str, Iterable[str]]) -> "PaymentException":
        if not isinstance(errors, str):
            errors = "; ".join(errors)
        return cls(f"Invalid payment request: {errors}", PaymentErrorCode.INVALID_REQUEST)

    @classmethod
    def authentication_failed(cls, gateway_message: str = "") -> "PaymentException":
        return cls(
            "Authentication with the payment gateway failed",
            PaymentErrorCode.AUTHENTICATION_FAILED,
            gateway_message=gateway_message,
        )

    @classmethod
    def transaction_not_found(cls, transaction_id: str) -> "PaymentException":
        return cls(f"Transaction not found: {transaction_id}", PaymentErrorCode.TRANSACTION_NOT_FOUND)

    @classmethod
    def already_captured(cls, transaction_id: str) -> "PaymentException":
        return cls(
            f"Transaction {transaction_id} has already been captured",
            PaymentErrorCode.ALREADY_CAPTURED,
        )

    @classmethod
    def already_refunded(cls, transaction_id: str) -> "PaymentException":
        return cls(
            f"Transaction {transaction_id} has already been refunded",
            PaymentErrorCode.ALREADY_REFUNDED,
        )

    @classmethod
    def refund_amount_exceeds(cls, requested: Amount, available: Amount) -> "PaymentException":
        return cls(
            f"Refund amount {requested} exceeds available amount {available}",
            PaymentErrorCode.REFUND_AMOUNT_EXCEEDS,
        )

    def get_user_message(self) -> str:
        """Short, gateway-agnostic sentence safe to show to the payer."""
        return USER_MESSAGES.get(self.error_code, _DEFAULT_USER_MESSAGE)

    @property
    def http_status(self) -> int:
        return HTTP_STATUSES.get(self.error_code, 500)

    def to_dict(self) -> Dict[str, Any]:
        """Full internal detail for server-side logs."""
        return {
            "message": self.message,
            "error_code": self.error_code.value,
            "gateway_message": self.gateway_message,
            "gateway_data": self.gateway_data,
        }
