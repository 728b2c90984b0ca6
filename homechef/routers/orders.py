"""Orders router - placement, countdown, chef decisions, status updates, tips."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from homechef.core.deps import get_current_principal, get_db, require_roles
from homechef.core.rate_limit import WRITE_LIMIT, limiter
from homechef.db.enums import OrderStatus, Role
from homechef.schemas.auth import Principal
from homechef.schemas.common import ok
from homechef.schemas.order import (
    CancelRequest,
    CancellationResponse,
    ChefAcceptRequest,
    ChefDeclineRequest,
    CountdownStatus,
    OrderCreate,
    OrderRead,
    StatusUpdateRequest,
)
from homechef.schemas.tip import TipCreate, TipRead
from homechef.services import journey_service, order_service, tip_service
from homechef.services.order_service import PlacedItem
from homechef.utils.pagination import PaginatedResponse, PaginationParams, get_pagination

router = APIRouter(prefix="/orders", tags=["Orders"])


def _order_payload(order) -> dict:
    return OrderRead.model_validate(order).model_dump(mode="json")


@router.post("", status_code=201)
@limiter.limit(WRITE_LIMIT)
def place_order(
    request: Request,
    body: OrderCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.CUSTOMER)),
):
    """Place an order; the free-cancellation countdown starts now."""
    order = order_service.place_order(
        db,
        principal,
        chef_id=body.chef_id,
        items=[PlacedItem(**item.model_dump()) for item in body.items],
        delivery_address=body.delivery_address,
        special_instructions=body.special_instructions,
        payment_id=body.payment_id,
        payment_method=body.payment_method,
    )
    return ok(_order_payload(order), "Order placed")


@router.get("")
def list_orders(
    status: OrderStatus | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Orders the caller participates in (admins see all)."""
    orders, total = order_service.list_orders(
        db, principal, status=status, page=pagination.page, per_page=pagination.per_page
    )
    page = PaginatedResponse.create([_order_payload(o) for o in orders], total, pagination)
    return ok(page.as_dict())


@router.get("/{order_id}")
def get_order(
    order_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = order_service.get_order(db, principal, order_id)
    return ok(_order_payload(order))


@router.post("/{order_id}/confirm")
def confirm_order(
    order_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.CUSTOMER)),
):
    """Send the order to the chef now, giving up the rest of the free window."""
    order = order_service.confirm_order(db, principal, order_id)
    return ok(_order_payload(order), "Order sent to chef")


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: UUID,
    body: CancelRequest | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.CUSTOMER, Role.ADMIN)),
):
    body = body or CancelRequest()
    result = order_service.customer_cancel(db, principal, order_id, body.reason, body.notes)
    response = CancellationResponse(
        type=result.quote.cancellation_type.value,
        penalty=result.quote.penalty,
        refund=result.quote.refund,
        refund_timeline=result.refund_timeline,
        order=OrderRead.model_validate(result.order),
    )
    return ok(response, "Order cancelled")


@router.get("/{order_id}/countdown-status")
def countdown_status(
    order_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = order_service.get_order(db, principal, order_id)
    return ok(CountdownStatus(**order_service.countdown_status(order)))


@router.get("/{order_id}/cancellation-info")
def cancellation_info(
    order_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = order_service.get_order(db, principal, order_id)
    return ok(order_service.cancellation_info(order))


@router.get("/{order_id}/journey")
def order_journey(
    order_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = order_service.get_order(db, principal, order_id)
    return ok(journey_service.get_order_journey(db, order))


@router.post("/{order_id}/chef/accept")
def chef_accept(
    order_id: UUID,
    body: ChefAcceptRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.CHEF)),
):
    order = order_service.chef_accept(
        db, principal, order_id, body.estimated_preparation_time, body.notes
    )
    return ok(_order_payload(order), "Order accepted")


@router.post("/{order_id}/chef/decline")
def chef_decline(
    order_id: UUID,
    body: ChefDeclineRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.CHEF)),
):
    order = order_service.chef_decline(db, principal, order_id, body.reason, body.notes)
    return ok(_order_payload(order), "Order declined")


@router.put("/{order_id}/status")
def update_status(
    order_id: UUID,
    body: StatusUpdateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.CHEF, Role.DELIVERY, Role.ADMIN)),
):
    order = order_service.update_status(
        db,
        principal,
        order_id,
        body.status,
        message=body.message,
        location=body.location.model_dump() if body.location else None,
        proof=body.proof,
    )
    return ok(_order_payload(order), f"Order is now {order.status}")


@router.post("/{order_id}/tip", status_code=201)
@limiter.limit(WRITE_LIMIT)
def add_tip(
    request: Request,
    order_id: UUID,
    body: TipCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.CUSTOMER)),
):
    tip = tip_service.add_tip(
        db, principal, order_id, body.recipient_type, body.amount, body.message
    )
    return ok(TipRead.model_validate(tip), "Tip recorded")
