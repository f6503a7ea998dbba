"""Approval badge counts and the per-session baseline they are measured against."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parkops.auth import Actor
from parkops.models import REQUEST_PENDING, InventoryRequest, MaintenanceWorkOrder
from parkops.scope import Capability, Role

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 8 * 60 * 60
MAX_ENTRIES = 10_000


@dataclass(frozen=True)
class BadgeCounts:
    visible_count: int
    new_since_baseline: int
    my_open_work_orders: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class BaselineStore:
    """Last-seen approval counts keyed by (session, actor). Process memory only.

    An entry lives for ``ttl_seconds`` after it was last read or written, and
    the store never holds more than ``max_entries``; the entry closest to
    expiry is dropped first. A dropped entry reads as 0.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, max_entries: int = MAX_ENTRIES,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._values: dict[tuple[str, int], tuple[int, float]] = {}  # key -> (count, expires_at)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def get(self, session_key: str, actor_id: int) -> int:
        key = (session_key, actor_id)
        now = self._clock()
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return 0
            value, expires_at = entry
            if expires_at <= now:
                del self._values[key]
                return 0
            self._values[key] = (value, now + self.ttl_seconds)
            return value

    def set(self, session_key: str, actor_id: int, value: int) -> None:
        now = self._clock()
        with self._lock:
            self._values[(session_key, actor_id)] = (value, now + self.ttl_seconds)
            self._evict(now)

    def _evict(self, now: float) -> None:
        """Drop expired entries, then the oldest ones over the cap. Must hold lock."""
        if len(self._values) <= self.max_entries:
            return
        for key in [k for k, (_, expires_at) in self._values.items() if expires_at <= now]:
            del self._values[key]
        while len(self._values) > self.max_entries:
            oldest = min(self._values, key=lambda k: self._values[k][1])
            del self._values[oldest]


def pending_proposal_filter(actor: Actor):
    return (
        actor.scope.location_filter(Capability.ARBITRATE_REASSIGNMENT, None),
        MaintenanceWorkOrder.pending_employee_id.is_not(None),
        MaintenanceWorkOrder.end_date.is_(None),
    )


def pending_request_filter(actor: Actor):
    return (
        actor.scope.location_filter(Capability.DECIDE_INVENTORY_REQUEST, InventoryRequest.location_id),
        InventoryRequest.status == REQUEST_PENDING,
    )


def count_visible(db: Session, actor: Actor) -> int:
    scope = actor.scope
    total = 0
    if scope.has(Capability.ARBITRATE_REASSIGNMENT):
        total += db.execute(
            select(func.count(MaintenanceWorkOrder.id)).where(*pending_proposal_filter(actor))
        ).scalar_one()
    if scope.has(Capability.DECIDE_INVENTORY_REQUEST):
        total += db.execute(
            select(func.count(InventoryRequest.id)).where(*pending_request_filter(actor))
        ).scalar_one()
    return total


def count_my_open_work_orders(db: Session, actor: Actor) -> int:
    return db.execute(
        select(func.count(MaintenanceWorkOrder.id)).where(
            MaintenanceWorkOrder.employee_id == actor.id,
            MaintenanceWorkOrder.end_date.is_(None),
        )
    ).scalar_one()


class NotificationTracker:
    def __init__(self, baselines: BaselineStore | None = None) -> None:
        self.baselines = baselines or BaselineStore()

    def refresh(self, db: Session, actor: Actor) -> BadgeCounts:
        try:
            visible = count_visible(db, actor)
        except SQLAlchemyError:
            logger.warning("badge count unavailable for actor=%s", actor.id, exc_info=True)
            db.rollback()
            visible = 0

        mine = None
        if actor.scope.role is Role.MAINTENANCE:
            try:
                mine = count_my_open_work_orders(db, actor)
            except SQLAlchemyError:
                logger.warning("open work order count unavailable for actor=%s", actor.id, exc_info=True)
                db.rollback()
                mine = 0

        baseline = self.baselines.get(actor.session_key, actor.id)
        return BadgeCounts(
            visible_count=visible,
            new_since_baseline=max(0, visible - baseline),
            my_open_work_orders=mine,
        )

    def mark_seen(self, actor: Actor, visible_count: int) -> None:
        self.baselines.set(actor.session_key, actor.id, visible_count)
