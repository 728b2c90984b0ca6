"""Delivery partner router - available orders and acceptance."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from homechef.core.deps import get_db, require_roles
from homechef.db.enums import Role
from homechef.schemas.auth import Principal
from homechef.schemas.common import ok
from homechef.schemas.order import OrderRead
from homechef.services import order_service

router = APIRouter(prefix="/delivery", tags=["Delivery"])


@router.get("/orders/available")
def available_orders(
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.DELIVERY)),
):
    """Orders ready for pickup that no partner has accepted yet."""
    orders = order_service.list_available_for_delivery(db, limit=limit)
    return ok([OrderRead.model_validate(o) for o in orders])


@router.post("/orders/{order_id}/accept")
def accept_order(
    order_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.DELIVERY)),
):
    order = order_service.accept_delivery(db, principal, order_id)
    return ok(OrderRead.model_validate(order), "Delivery assigned")
