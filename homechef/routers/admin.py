"""Admin router - cancellation policy and cancellation analytics."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from homechef.core.deps import get_db, require_roles
from homechef.core.errors import InvalidRequest
from homechef.db.enums import Role
from homechef.schemas.auth import Principal
from homechef.schemas.common import ok
from homechef.schemas.policy import AnalyticsDay, PolicyRead, PolicyUpdate
from homechef.services import cancellation_service

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/cancellation-policy")
def get_policy(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.ADMIN)),
):
    policy = cancellation_service.get_active_policy(db)
    db.commit()
    return ok(PolicyRead.model_validate(policy))


@router.put("/cancellation-policy")
def update_policy(
    body: PolicyUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.ADMIN)),
):
    """Create a new active policy version; existing orders keep theirs."""
    policy = cancellation_service.update_policy(
        db,
        principal.user_id,
        **body.model_dump(exclude_unset=True),
    )
    return ok(PolicyRead.model_validate(policy), f"Cancellation policy v{policy.version} active")


@router.get("/cancellation-analytics")
def cancellation_analytics(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(Role.ADMIN)),
):
    if start_date and end_date and start_date > end_date:
        raise InvalidRequest(
            "start_date must not be after end_date", {"start_date": "after end_date"}
        )
    buckets = cancellation_service.list_analytics(db, start_date, end_date)
    return ok(
        {
            "days": [AnalyticsDay.model_validate(b).model_dump(mode="json") for b in buckets],
            "totals": cancellation_service.summarize(buckets),
        }
    )
