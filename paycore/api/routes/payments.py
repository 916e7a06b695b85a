from fastapi import APIRouter, Depends, Request

from paycore.api.dependencies.payments import get_payment_manager
from paycore.integrations.payment_gateways.base import PaymentRequest
from paycore.integrations.payment_gateways.exceptions import HTTP_STATUSES
from paycore.schemas.common import ErrorResponse
from paycore.schemas.payment import (
    GatewayRead,
    PaymentCapture,
    PaymentRefund,
    PaymentResultRead,
    PaymentStart,
    PaymentStatusRead,
    WebhookResultRead,
)
from paycore.services.payment_manager import PaymentManager


router = APIRouter(
    prefix="/payments",
    tags=["payments"],
    responses={status: {"model": ErrorResponse} for status in sorted(set(HTTP_STATUSES.values()))},
)


@router.post("/start", response_model=PaymentResultRead)
async def start_payment_endpoint(
    payload: PaymentStart,
    manager: PaymentManager = Depends(get_payment_manager),
) -> PaymentResultRead:
    request = PaymentRequest(
        order_id=payload.order_id,
        amount=payload.amount,
        currency=payload.currency,
        billing=payload.billing,
        metadata=payload.metadata,
        description=payload.description,
        capture_immediately=payload.capture_immediately,
        customer_email=payload.customer_email,
        return_url=payload.return_url,
        cancel_url=payload.cancel_url,
    )
    result = await manager.process_payment(request, payload.payment_data, preferred_gateway=payload.gateway_id)
    return PaymentResultRead.model_validate(result)


@router.get("/gateways", response_model=list[GatewayRead])
async def list_gateways_endpoint(manager: PaymentManager = Depends(get_payment_manager)) -> list[GatewayRead]:
    return [GatewayRead.model_validate(info) for info in manager.get_available_gateways().values()]


@router.post("/webhooks/{gateway_id}", response_model=WebhookResultRead)
async def webhook_endpoint(
    gateway_id: str,
    request: Request,
    manager: PaymentManager = Depends(get_payment_manager),
) -> WebhookResultRead:
    body = await request.body()
    result = await manager.handle_webhook_request(gateway_id, body, request.headers)
    return WebhookResultRead.model_validate(result)


@router.post("/{transaction_id}/capture", response_model=PaymentResultRead)
async def capture_payment_endpoint(
    transaction_id: str,
    payload: PaymentCapture | None = None,
    manager: PaymentManager = Depends(get_payment_manager),
) -> PaymentResultRead:
    amount = payload.amount if payload else None
    result = await manager.capture_payment(transaction_id, amount)
    return PaymentResultRead.model_validate(result)


@router.post("/{transaction_id}/refund", response_model=PaymentResultRead)
async def refund_payment_endpoint(
    transaction_id: str,
    payload: PaymentRefund,
    manager: PaymentManager = Depends(get_payment_manager),
) -> PaymentResultRead:
    result = await manager.refund_payment(transaction_id, payload.amount, payload.reason)
    return PaymentResultRead.model_validate(result)


@router.post("/{transaction_id}/void", response_model=PaymentResultRead)
async def void_payment_endpoint(
    transaction_id: str,
    manager: PaymentManager = Depends(get_payment_manager),
) -> PaymentResultRead:
    result = await manager.void_payment(transaction_id)
    return PaymentResultRead.model_validate(result)


@router.get("/{transaction_id}/status", response_model=PaymentStatusRead)
async def payment_status_endpoint(
    transaction_id: str,
    manager: PaymentManager = Depends(get_payment_manager),
) -> PaymentStatusRead:
    status = await manager.get_payment_status(transaction_id)
    return PaymentStatusRead(transaction_id=transaction_id, status=status)
