"""Cancellation policy store, penalty computation and daily cancellation analytics."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from homechef.core.clock import utcnow
from homechef.core.config import settings
from homechef.core.errors import InvalidRequest
from homechef.db.enums import CancellationType
from homechef.db.models import CancellationAnalytics, CancellationPolicy


@dataclass(frozen=True)
class PenaltyQuote:
    """Outcome of a cancellation at a given instant."""

    cancellation_type: CancellationType
    penalty: float
    refund: float


def money(value: float) -> float:
    return round(float(value), 2)


def compute_penalty(
    charged_amount: float,
    penalty_rate: float,
    min_penalty: float,
    max_penalty: float,
) -> float:
    """clamp(charged * rate, min, max), never more than what was charged."""
    raw = charged_amount * penalty_rate
    penalty = min(max(raw, min_penalty), max_penalty)
    return money(min(penalty, charged_amount))


def quote_cancellation(
    charged_amount: float,
    policy: CancellationPolicy,
    *,
    free: bool,
) -> PenaltyQuote:
    charged = money(charged_amount)
    if free:
        return PenaltyQuote(CancellationType.FREE, 0.0, charged)
    penalty = compute_penalty(charged, policy.penalty_rate, policy.min_penalty, policy.max_penalty)
    return PenaltyQuote(CancellationType.PENALTY, penalty, money(charged - penalty))


# =============================================================================
# Policy store
# =============================================================================


def get_active_policy(db: Session) -> CancellationPolicy:
    """
    Return the active policy, seeding version 1 from settings on first use.
    """
    policy = db.execute(
        select(CancellationPolicy).where(CancellationPolicy.is_active.is_(True))
    ).scalar_one_or_none()
    if policy:
        return policy

    now = utcnow()
    policy = CancellationPolicy(
        version=1,
        free_window_seconds=settings.FREE_CANCEL_WINDOW_SEC,
        penalty_rate=settings.PENALTY_RATE,
        min_penalty=settings.MIN_PENALTY,
        max_penalty=settings.MAX_PENALTY,
        description="Default cancellation policy",
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(policy)
    db.flush()
    return policy


def update_policy(
    db: Session,
    updated_by: UUID,
    *,
    free_window_seconds: int | None = None,
    penalty_rate: float | None = None,
    min_penalty: float | None = None,
    max_penalty: float | None = None,
    description: str | None = None,
) -> CancellationPolicy:
    """
    Create a new active policy version from the current one plus changes.

    Orders placed earlier keep their captured version.
    """
    current = get_active_policy(db)
    merged = {
        "free_window_seconds": current.free_window_seconds
        if free_window_seconds is None
        else free_window_seconds,
        "penalty_rate": current.penalty_rate if penalty_rate is None else penalty_rate,
        "min_penalty": current.min_penalty if min_penalty is None else min_penalty,
        "max_penalty": current.max_penalty if max_penalty is None else max_penalty,
        "description": current.description if description is None else description,
    }
    if merged["min_penalty"] > merged["max_penalty"]:
        raise InvalidRequest(
            "Minimum penalty must not exceed maximum penalty",
            {"min_penalty": "must be less than or equal to max_penalty"},
        )

    now = utcnow()
    current.is_active = False
    current.updated_at = now
    db.flush()

    policy = CancellationPolicy(
        version=current.version + 1,
        is_active=True,
        updated_by=updated_by,
        created_at=now,
        updated_at=now,
        **merged,
    )
    db.add(policy)
    db.commit()
    db.refresh(policy)
    return policy


# =============================================================================
# Analytics
# =============================================================================


def _insert_for(db: Session):
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


def _bucket(db: Session, day: date) -> CancellationAnalytics:
    """Lock the day's bucket, creating it first if no transaction has yet."""
    insert = _insert_for(db)
    db.execute(
        insert(CancellationAnalytics)
        .values(id=uuid.uuid4(), day=day)
        .on_conflict_do_nothing(index_elements=["day"])
    )
    return db.execute(
        select(CancellationAnalytics)
        .where(CancellationAnalytics.day == day)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()


def record_order_placed(db: Session, at: datetime) -> None:
    """Count a placed order in its day's bucket (caller commits)."""
    bucket = _bucket(db, at.date())
    bucket.total_orders += 1
    bucket.updated_at = utcnow()


def record_cancellation(
    db: Session,
    at: datetime,
    cancellation_type: CancellationType,
    penalty: float,
    seconds_to_cancel: float,
) -> CancellationAnalytics:
    """Fold one terminal cancellation into its day's bucket (caller commits)."""
    bucket = _bucket(db, at.date())
    bucket.total_cancellations += 1
    if cancellation_type == CancellationType.FREE:
        bucket.free_cancellations += 1
    else:
        bucket.penalty_cancellations += 1
        bucket.total_penalty_collected = money(bucket.total_penalty_collected + penalty)
    bucket.total_seconds_to_cancel += max(seconds_to_cancel, 0.0)
    bucket.avg_seconds_to_cancel = bucket.total_seconds_to_cancel / bucket.total_cancellations
    bucket.updated_at = utcnow()
    return bucket


def list_analytics(db: Session, start: date | None, end: date | None) -> list[CancellationAnalytics]:
    query = select(CancellationAnalytics)
    if start:
        query = query.where(CancellationAnalytics.day >= start)
    if end:
        query = query.where(CancellationAnalytics.day <= end)
    return list(db.execute(query.order_by(CancellationAnalytics.day)).scalars())


def summarize(buckets: list[CancellationAnalytics]) -> dict:
    total_orders = sum(b.total_orders for b in buckets)
    cancellations = sum(b.total_cancellations for b in buckets)
    seconds = sum(b.total_seconds_to_cancel for b in buckets)
    return {
        "total_orders": total_orders,
        "total_cancellations": cancellations,
        "free_cancellations": sum(b.free_cancellations for b in buckets),
        "penalty_cancellations": sum(b.penalty_cancellations for b in buckets),
        "total_penalty_collected": money(sum(b.total_penalty_collected for b in buckets)),
        "avg_seconds_to_cancel": seconds / cancellations if cancellations else 0.0,
        "cancellation_rate": cancellations / total_orders if total_orders else 0.0,
    }
