from fastapi import Request

from paycore.services.payment_manager import PaymentManager


def get_payment_manager(request: Request) -> PaymentManager:
    return request.app.state.payment_manager
