from fastapi import APIRouter, BackgroundTasks, Depends
from storefront.application.checkout import CheckoutService
from storefront.application.notifications import NotificationDispatcher
from storefront.application.payments import PaymentVerificationService
from storefront.application.schemas import (
    CreateGatewayOrderRequest,
    GatewayOrderResponse,
    GatewayOrderStatus,
    GatewayOrderStatusResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from storefront.infrastructure.gateway import RazorpayGateway
from .deps import get_checkout_service, get_dispatcher, get_gateway, get_verification_service

router = APIRouter(prefix="/api/payment", tags=["payment"])

@router.post("/create-order", response_model=GatewayOrderResponse)
def create_gateway_order(
    payload: CreateGatewayOrderRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """Open a gateway payment for an existing order. Also used to retry after a cancelled or failed attempt."""
    gateway_order = service.start_payment(
        payload.order_number,
        amount=payload.amount,
        currency=payload.currency,
        notes=payload.notes,
    )
    return GatewayOrderResponse(
        orderId=gateway_order.gateway_order_id,
        amount=gateway_order.amount_minor_units,
        currency=gateway_order.currency,
        keyId=gateway_order.key_id,
    )

@router.post("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    payload: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    service: PaymentVerificationService = Depends(get_verification_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = service.verify(payload)
    if outcome.notify:
        background_tasks.add_task(dispatcher.send_order_confirmation, outcome.order_number)
    return VerifyPaymentResponse(order_number=outcome.order_number, payment_id=outcome.payment_id)

@router.get("/status/{order_id}", response_model=GatewayOrderStatusResponse)
def get_payment_status(order_id: str, gateway: RazorpayGateway = Depends(get_gateway)):
    return GatewayOrderStatusResponse(order=GatewayOrderStatus(**gateway.fetch_order(order_id)))
