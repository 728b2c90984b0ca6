"""Payments router - signed callbacks from the payment collaborator."""

import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from homechef.core import signing
from homechef.core.config import settings
from homechef.core.deps import get_db
from homechef.core.errors import Forbidden, InvalidRequest
from homechef.core.validation import validate_payload
from homechef.schemas.common import ok
from homechef.schemas.order import OrderRead
from homechef.schemas.payment import PaymentCallback, TipSettlement
from homechef.schemas.tip import TipRead
from homechef.services import order_service, tip_service

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = logging.getLogger(__name__)


async def _verified_json(request: Request) -> dict:
    """
    Raw-body HMAC check, then JSON decode.

    Raises:
        Forbidden: secret unset, signature missing or wrong
        InvalidRequest: body is not a JSON object
    """
    body = await request.body()
    signature = request.headers.get(signing.SIGNATURE_HEADER)
    if not signing.verify(settings.PAYMENT_CALLBACK_SECRET, body, signature):
        logger.warning("Payment callback with invalid signature from %s", request.client)
        raise Forbidden("Invalid signature")
    try:
        data = json.loads(body)
    except ValueError:
        raise InvalidRequest("Body is not valid JSON")
    if not isinstance(data, dict):
        raise InvalidRequest("Body must be a JSON object")
    return data


@router.post("/callback")
async def payment_callback(request: Request, db: Session = Depends(get_db)):
    """Payment result for an order: emits payment.success or payment.failed."""
    payload = validate_payload(PaymentCallback, await _verified_json(request))
    order = await run_in_threadpool(
        order_service.apply_payment_result,
        db,
        payload.order_id,
        payload.payment_id,
        payload.status == "success",
        payload.amount,
        payload.error_message,
    )
    return ok(OrderRead.model_validate(order), "Payment recorded")


@router.post("/tips/{tip_id}/settlement")
async def tip_settlement(tip_id: UUID, request: Request, db: Session = Depends(get_db)):
    """Settle a pending tip; a completed settlement emits tip.received."""
    payload = validate_payload(TipSettlement, await _verified_json(request))
    tip = await run_in_threadpool(
        tip_service.settle_tip,
        db,
        tip_id,
        payload.status == "completed",
        payload.transfer_id,
    )
    return ok(TipRead.model_validate(tip), "Tip settled")
