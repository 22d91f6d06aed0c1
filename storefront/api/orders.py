from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Header
from sqlalchemy.orm import Session
from storefront.application.checkout import CheckoutService
from storefront.application.notifications import NotificationDispatcher
from storefront.application.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    OrderRead,
    OrderResponse,
    OrderStatusUpdate,
    OrderUpdateResponse,
)
from storefront.core import get_logger
from storefront.infrastructure.repository import OrderRepository
from .deps import get_checkout_service, get_dispatcher, optional_admin, require_db, verify_token

logger = get_logger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

@router.post("/create", response_model=CheckoutResponse, status_code=201)
def create_order(
    payload: CheckoutRequest,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=100),
    service: CheckoutService = Depends(get_checkout_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Place an order. Online orders continue with POST /api/payment/create-order."""
    placed = service.place_order(payload, checkout_token=idempotency_key)
    if placed.notify:
        background_tasks.add_task(dispatcher.send_order_confirmation, placed.order_number)
    return CheckoutResponse(
        order_number=placed.order_number,
        order_id=placed.order_id,
        total=float(placed.total) if placed.total is not None else None,
        payment_status=placed.payment_status,
    )

@router.get("/{order_number}", response_model=OrderResponse)
def get_order(
    order_number: str,
    db: Session = Depends(require_db),
    admin: Optional[dict] = Depends(optional_admin),
):
    """Full contact details for admins; a reduced view for anyone holding the order number."""
    order = OrderRead.model_validate(OrderRepository(db).get_order_by_number(order_number))
    if admin is None:
        order = order.without_contact_details()
    return OrderResponse(order=order)

@router.put("/{order_number}/status", response_model=OrderUpdateResponse)
def update_order_status(
    order_number: str,
    payload: OrderStatusUpdate,
    db: Session = Depends(require_db),
    token: dict = Depends(verify_token),
):
    repo = OrderRepository(db)
    before = repo.get_order_by_number(order_number)
    previous = {"status": before.status, "payment_status": before.payment_status}

    order = repo.update_order_status(
        order_number,
        status=payload.status.value if payload.status else None,
        payment_status=payload.payment_status.value if payload.payment_status else None,
        payment_id=payload.payment_id,
    )
    logger.info(f"Order {order_number} updated")
    repo.record_activity(
        "order_status_changed",
        order_number,
        f"Order {order_number} updated by {token.get('sub')}",
        {
            "previous": previous,
            "status": order.status,
            "payment_status": order.payment_status,
        },
    )
    return OrderUpdateResponse(order=OrderRead.model_validate(order))
