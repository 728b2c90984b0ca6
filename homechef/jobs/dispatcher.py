"""
Webhook dispatcher: worker pool, retry sweeper and log cleanup.

Each dispatch runs in three phases so no transaction is held across the
network call:

1. claim the delivery (conditional UPDATE) and load endpoint URL and secret
2. POST the signed payload
3. record the outcome in a fresh session
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from homechef.core.clock import utcnow
from homechef.core.config import settings
from homechef.core.events import OrderEvent
from homechef.db.enums import DeliveryStatus
from homechef.db.models import WebhookDelivery, WebhookEndpoint
from homechef.db.session import SessionLocal
from homechef.jobs.handlers.webhooks import AttemptOutcome, send_webhook
from homechef.services import delivery_service

logger = logging.getLogger(__name__)

PURGE_INTERVAL = timedelta(days=1)


def _default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class _Target:
    """What phase 2 needs, copied out of the claim session."""

    __slots__ = ("url", "secret", "payload", "event_type", "max_attempts", "base_delay_seconds")

    def __init__(self, delivery: WebhookDelivery, endpoint: WebhookEndpoint):
        self.url = endpoint.url
        self.secret = endpoint.secret
        self.payload = dict(delivery.payload)
        self.event_type = delivery.event_type
        self.max_attempts = endpoint.max_attempts
        self.base_delay_seconds = endpoint.base_delay_seconds


class WebhookDispatcher:
    """
    At-least-once webhook delivery.

    Fresh deliveries arrive through on_event (called from whichever thread
    committed the event) and are handed to the worker pool on the
    dispatcher's loop. The sweeper picks up due retries and deliveries whose
    claim expired after a crash.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        workers: int | None = None,
        worker_id: str | None = None,
    ):
        self._session_factory = session_factory or SessionLocal
        self._transport = transport
        self._workers = workers or settings.WEBHOOK_WORKERS
        self.worker_id = worker_id or _default_worker_id()
        self._client: httpx.AsyncClient | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[UUID] | None = None
        self._tasks: list[asyncio.Task] = []
        self._stopping: asyncio.Event | None = None
        self._accepting = False
        self._last_purge: datetime | None = None

    @property
    def running(self) -> bool:
        return self._accepting

    def set_transport(self, transport: httpx.AsyncBaseTransport | None) -> None:
        """Replace the HTTP transport; the client is rebuilt on next use."""
        self._transport = transport
        self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.WEBHOOK_TIMEOUT_SEC,
                follow_redirects=False,
            )
        return self._client

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, *, sweep: bool = True) -> None:
        if self._accepting:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._stopping = asyncio.Event()
        self._accepting = True
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"webhook-worker-{n}")
            for n in range(self._workers)
        ]
        if sweep:
            self._tasks.append(asyncio.create_task(self._sweep_loop(), name="webhook-sweeper"))
        logger.info(
            "Webhook dispatcher started (worker_id=%s, workers=%s)", self.worker_id, self._workers
        )

    async def stop(self, drain_timeout: float | None = None) -> None:
        """Stop accepting work, drain the queue within the budget, then cancel."""
        if not self._accepting:
            await self._close_client()
            return
        self._accepting = False
        timeout = settings.SHUTDOWN_DRAIN_SEC if drain_timeout is None else drain_timeout
        if self._stopping:
            self._stopping.set()
        if self._queue is not None:
            # Enqueues already scheduled on the loop land before the join.
            await asyncio.sleep(0)
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Webhook queue not drained within %ss, %s deliveries left for the sweeper",
                    timeout,
                    self._queue.qsize(),
                )
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self._close_client()
        logger.info("Webhook dispatcher stopped")

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------

    def enqueue(self, delivery_id: UUID) -> bool:
        """Queue a delivery for immediate dispatch; safe from any thread."""
        if not self._accepting or self._loop is None or self._queue is None:
            logger.debug("Dispatcher not running; delivery %s left for the sweeper", delivery_id)
            return False
        self._loop.call_soon_threadsafe(self._queue.put_nowait, delivery_id)
        return True

    def on_event(self, event: OrderEvent) -> None:
        """Event-bus subscriber: queue the deliveries staged with the event."""
        for delivery_id in event.delivery_ids:
            self.enqueue(delivery_id)

    async def _worker(self, number: int) -> None:
        assert self._queue is not None
        while True:
            delivery_id = await self._queue.get()
            try:
                await self.dispatch(delivery_id)
            except Exception:
                logger.exception("Webhook worker %s failed on delivery %s", number, delivery_id)
            finally:
                self._queue.task_done()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def dispatch(self, delivery_id: UUID) -> WebhookDelivery | None:
        """Claim and attempt one delivery. Returns None if it was not claimable."""
        claimed = await asyncio.to_thread(self._claim, delivery_id)
        if not claimed:
            return None
        return await self._attempt(delivery_id)

    def _claim(self, delivery_id: UUID) -> bool:
        with self._session_factory() as db:
            return delivery_service.claim_delivery(db, delivery_id, self.worker_id)

    async def _attempt(self, delivery_id: UUID) -> WebhookDelivery | None:
        target = await asyncio.to_thread(self._load_target, delivery_id)
        if target is None:
            return None
        outcome = await send_webhook(
            self._get_client(),
            target.url,
            target.secret,
            target.payload,
            target.event_type,
            str(delivery_id),
            settings.WEBHOOK_TIMEOUT_SEC,
        )
        return await asyncio.to_thread(self._record, delivery_id, outcome, target)

    def _load_target(self, delivery_id: UUID) -> _Target | None:
        with self._session_factory() as db:
            delivery = db.get(WebhookDelivery, delivery_id)
            if delivery is None:
                return None
            try:
                endpoint = delivery.endpoint
            except ValueError:
                logger.error("Webhook %s secret cannot be decrypted", delivery.webhook_id)
                delivery_service.abandon_delivery(db, delivery, "Endpoint secret unavailable")
                return None
            if endpoint.deleted_at is not None:
                delivery_service.abandon_delivery(db, delivery, "Webhook endpoint deleted")
                return None
            # max_attempts may have been lowered after earlier attempts.
            if delivery.attempt_count >= endpoint.max_attempts:
                delivery_service.abandon_delivery(db, delivery, "Attempt budget exhausted")
                return None
            return _Target(delivery, endpoint)

    def _record(
        self, delivery_id: UUID, outcome: AttemptOutcome, target: _Target
    ) -> WebhookDelivery | None:
        with self._session_factory() as db:
            delivery = db.get(WebhookDelivery, delivery_id)
            if delivery is None:
                return None
            if delivery.status != DeliveryStatus.PENDING.value or delivery.claimed_by != self.worker_id:
                logger.warning(
                    "Delivery %s claim lost before recording (status=%s)",
                    delivery_id,
                    delivery.status,
                )
                return delivery
            if outcome.ok:
                return delivery_service.mark_delivery_succeeded(
                    db, delivery, outcome.status_code, outcome.body
                )
            return delivery_service.mark_delivery_failed(
                db,
                delivery,
                outcome.error or "delivery failed",
                max_attempts=target.max_attempts,
                base_delay_seconds=target.base_delay_seconds,
                status_code=outcome.status_code,
                body=outcome.body,
            )

    # -------------------------------------------------------------------------
    # Sweeper
    # -------------------------------------------------------------------------

    def _claim_due(self) -> list[UUID]:
        with self._session_factory() as db:
            return delivery_service.claim_due_deliveries(
                db, self.worker_id, limit=settings.WEBHOOK_SWEEP_BATCH
            )

    async def sweep_once(self) -> int:
        """Claim and attempt every due delivery; returns how many were attempted."""
        claimed = await asyncio.to_thread(self._claim_due)
        if not claimed:
            return 0
        logger.info("Webhook sweep claimed %s due deliveries", len(claimed))
        semaphore = asyncio.Semaphore(self._workers)

        async def run(delivery_id: UUID) -> None:
            async with semaphore:
                try:
                    await self._attempt(delivery_id)
                except Exception:
                    logger.exception("Webhook sweep failed on delivery %s", delivery_id)

        await asyncio.gather(*(run(d) for d in claimed))
        return len(claimed)

    def _purge(self) -> int:
        with self._session_factory() as db:
            return delivery_service.purge_old_deliveries(db)

    async def purge_if_due(self) -> int:
        now = utcnow()
        if self._last_purge is not None and now - self._last_purge < PURGE_INTERVAL:
            return 0
        self._last_purge = now
        return await asyncio.to_thread(self._purge)

    async def _sweep_loop(self) -> None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            try:
                await self.sweep_once()
                await self.purge_if_due()
            except Exception:
                logger.exception("Webhook sweep pass failed")
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=settings.WEBHOOK_SWEEP_INTERVAL_SEC
                )
            except asyncio.TimeoutError:
                pass


# Singleton instance
dispatcher = WebhookDispatcher()
