"""
Free-cancellation countdown scheduler.

A min-heap of (countdown_expiry, order_id) polled every COUNTDOWN_TICK_SEC.
Due entries are handed to order_service.expire_countdown, which re-checks the
order under its row lock, so an entry firing late, twice, or after the
customer already cancelled is harmless.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import threading
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from homechef.core.clock import utcnow
from homechef.core.config import settings
from homechef.core.events import OrderEvent
from homechef.db.enums import WebhookEvent
from homechef.db.session import SessionLocal
from homechef.services import order_service

logger = logging.getLogger(__name__)


class CountdownScheduler:
    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory or SessionLocal
        self._heap: list[tuple[datetime, UUID]] = []
        self._scheduled: set[UUID] = set()
        self._lock = threading.Lock()
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def schedule(self, order_id: UUID, expiry: datetime) -> None:
        with self._lock:
            if order_id in self._scheduled:
                return
            self._scheduled.add(order_id)
            heapq.heappush(self._heap, (expiry, order_id))

    def on_event(self, event: OrderEvent) -> None:
        """Event-bus subscriber: start a timer for every placed order."""
        if event.kind != WebhookEvent.ORDER_CREATED.value:
            return
        expiry = datetime.fromisoformat(event.data["countdown_expiry"])
        self.schedule(event.order_id, expiry)

    def _pop_due(self, now: datetime) -> list[UUID]:
        due = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                _, order_id = heapq.heappop(self._heap)
                self._scheduled.discard(order_id)
                due.append(order_id)
        return due

    def fire_due(self) -> int:
        """Expire every due countdown; returns how many orders changed."""
        fired = 0
        for order_id in self._pop_due(utcnow()):
            try:
                with self._session_factory() as db:
                    if order_service.expire_countdown(db, order_id):
                        fired += 1
            except Exception:
                logger.exception("Countdown expiry failed for order %s", order_id)
        return fired

    def recover(self) -> int:
        """
        Reload timers after a restart.

        Overdue orders sort first, so their expiry events go out in
        order-of-expiry on the first tick.
        """
        with self._session_factory() as db:
            pending = order_service.recoverable_countdowns(db)
        for expiry, order_id in pending:
            self.schedule(order_id, expiry)
        if pending:
            logger.info("Recovered %s countdown timers", len(pending))
        return len(pending)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stopping = asyncio.Event()
        await asyncio.to_thread(self.recover)
        self._task = asyncio.create_task(self._run(), name="countdown-scheduler")

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._stopping:
            self._stopping.set()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _run(self) -> None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            try:
                await asyncio.to_thread(self.fire_due)
            except Exception:
                logger.exception("Countdown tick failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=settings.COUNTDOWN_TICK_SEC)
            except asyncio.TimeoutError:
                pass


# Singleton instance
countdown_scheduler = CountdownScheduler()
