"""Runs workflow transitions as single transactions guarded by conditional updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlalchemy import and_, func, insert as sa_insert, select, update
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from parkops import workflow
from parkops.auth import Actor
from parkops.db import transaction
from parkops.errors import AlreadyProcessedError, NotFoundError, StoreError, WorkflowError
from parkops.models import (
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    RIDE_BROKEN,
    Employee,
    Inventory,
    InventoryRequest,
    Item,
    MaintenanceWorkOrder,
    Ride,
    Vendor,
)
from parkops.scope import Role
from parkops.workflow import Decision

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, PoolTimeoutError, DisconnectionError)


def _get(session: Session, model, row_id: Optional[int], resource: str):
    row = session.get(model, row_id) if row_id is not None else None
    if row is None:
        raise NotFoundError(resource, row_id)
    return row


def _expect_one(result, resource: str, row_id: int, redirect: str = "/approvals") -> None:
    if result.rowcount != 1:
        raise AlreadyProcessedError(resource, row_id, redirect=redirect)


def _conditional_update(session: Session, model, *criteria, **values):
    stmt = (
        update(model)
        .where(*criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt)


def increment_stock(session: Session, vendor_id: int, item_id: int, amount: int) -> None:
    """Add ``amount`` to the (vendor, item) counter, creating it if missing.

    The increment is computed by the store from the current value; nothing is
    read back and overwritten.
    """
    table = Inventory.__table__
    dialect = session.get_bind().dialect.name
    values = {"vendor_id": vendor_id, "item_id": item_id, "count": amount}
    if dialect in ("postgresql", "sqlite"):
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        stmt = insert(table).values(**values).on_conflict_do_update(
            index_elements=[table.c.vendor_id, table.c.item_id],
            set_={"count": table.c["count"] + amount},
        )
        session.execute(stmt)
        return
    if dialect in ("mysql", "mariadb"):
        from sqlalchemy.dialects.mysql import insert

        stmt = insert(table).values(**values).on_duplicate_key_update(count=table.c["count"] + amount)
        session.execute(stmt)
        return
    result = session.execute(
        update(table)
        .where(table.c.vendor_id == vendor_id, table.c.item_id == item_id)
        .values(count=table.c["count"] + amount)
    )
    if result.rowcount == 0:
        session.execute(sa_insert(table).values(**values))


# Maintenance reassignment


def propose(session: Session, order: MaintenanceWorkOrder, actor: Actor,
            new_employee_id: Optional[int] = None) -> MaintenanceWorkOrder:
    candidate = session.get(Employee, new_employee_id) if new_employee_id is not None else None
    workflow.check_propose(actor, order, new_employee_id, candidate)
    result = _conditional_update(
        session,
        MaintenanceWorkOrder,
        MaintenanceWorkOrder.id == order.id,
        MaintenanceWorkOrder.pending_employee_id.is_(None),
        MaintenanceWorkOrder.end_date.is_(None),
        pending_employee_id=new_employee_id,
        assignment_requested_by=actor.id,
    )
    _expect_one(result, "work order", order.id, redirect=f"/maintenance/{order.id}")
    return order


def direct_assign(session: Session, order: MaintenanceWorkOrder, actor: Actor,
                  new_employee_id: Optional[int] = None) -> MaintenanceWorkOrder:
    ride = _get(session, Ride, order.ride_id, "ride")
    candidate = session.get(Employee, new_employee_id) if new_employee_id is not None else None
    workflow.check_direct_assign(actor, order, ride.location_id, new_employee_id, candidate)
    result = _conditional_update(
        session,
        MaintenanceWorkOrder,
        MaintenanceWorkOrder.id == order.id,
        MaintenanceWorkOrder.end_date.is_(None),
        employee_id=new_employee_id,
        pending_employee_id=None,
        assignment_requested_by=None,
    )
    _expect_one(result, "work order", order.id, redirect=f"/maintenance/{order.id}")
    return order


def _decide_proposal(decision: Decision) -> Callable[..., MaintenanceWorkOrder]:
    def apply(session: Session, order: MaintenanceWorkOrder, actor: Actor) -> MaintenanceWorkOrder:
        workflow.check_decide_proposal(actor, order, decision)
        values: dict[str, Any] = {"pending_employee_id": None, "assignment_requested_by": None}
        if decision is Decision.APPROVE:
            values["employee_id"] = MaintenanceWorkOrder.pending_employee_id
        result = _conditional_update(
            session,
            MaintenanceWorkOrder,
            MaintenanceWorkOrder.id == order.id,
            # Only the proposal that was checked, not one that replaced it since.
            MaintenanceWorkOrder.pending_employee_id == order.pending_employee_id,
            MaintenanceWorkOrder.assignment_requested_by == order.assignment_requested_by,
            MaintenanceWorkOrder.end_date.is_(None),
            **values,
        )
        _expect_one(result, "reassignment", order.id)
        return order

    return apply


def complete(session: Session, order: MaintenanceWorkOrder, actor: Actor,
             start_date: Optional[date] = None, end_date: Optional[date] = None,
             cost: Optional[Decimal] = None, ride_status: Optional[str] = None) -> MaintenanceWorkOrder:
    workflow.check_complete(actor, order, start_date, end_date, cost, ride_status)
    result = _conditional_update(
        session,
        MaintenanceWorkOrder,
        MaintenanceWorkOrder.id == order.id,
        MaintenanceWorkOrder.end_date.is_(None),
        start_date=start_date,
        end_date=end_date,
        cost=cost,
        pending_employee_id=None,
        assignment_requested_by=None,
    )
    _expect_one(result, "work order", order.id, redirect=f"/maintenance/{order.id}")
    session.execute(update(Ride).where(Ride.id == order.ride_id).values(ride_status=ride_status))
    return order


# Inventory requests


def edit_request(session: Session, request: InventoryRequest, actor: Actor,
                 requested_count: Optional[int] = None) -> InventoryRequest:
    workflow.check_edit_request(actor, request, requested_count)
    result = _conditional_update(
        session,
        InventoryRequest,
        InventoryRequest.id == request.id,
        InventoryRequest.status == REQUEST_PENDING,
        InventoryRequest.requested_by_id == actor.id,
        requested_count=requested_count,
    )
    _expect_one(result, "inventory request", request.id, redirect="/inventory/requests")
    return request


def _decide_request(decision: Decision) -> Callable[..., InventoryRequest]:
    new_status = REQUEST_APPROVED if decision is Decision.APPROVE else REQUEST_REJECTED

    def apply(session: Session, request: InventoryRequest, actor: Actor) -> InventoryRequest:
        workflow.check_decide_request(actor, request, decision)
        result = _conditional_update(
            session,
            InventoryRequest,
            InventoryRequest.id == request.id,
            InventoryRequest.status == REQUEST_PENDING,
            InventoryRequest.location_id == request.location_id,
            status=new_status,
        )
        _expect_one(result, "inventory request", request.id)
        if decision is Decision.APPROVE:
            increment_stock(session, request.vendor_id, request.item_id, request.requested_count)
        return request

    return apply


# Creation


def report_defect(session: Session, actor: Actor, ride_id: Optional[int] = None,
                  summary: Optional[str] = None, report_date: Optional[date] = None) -> MaintenanceWorkOrder:
    ride = _get(session, Ride, ride_id, "ride")
    workflow.check_report_defect(actor, ride.id, ride.location_id, summary)
    open_orders = func.count(MaintenanceWorkOrder.id)
    assignee_id = session.execute(
        select(Employee.id)
        .outerjoin(
            MaintenanceWorkOrder,
            and_(
                MaintenanceWorkOrder.employee_id == Employee.id,
                MaintenanceWorkOrder.end_date.is_(None),
            ),
        )
        .where(Employee.employee_type == Role.MAINTENANCE.value, Employee.is_active.is_(True))
        .group_by(Employee.id)
        .order_by(open_orders, Employee.id)
        .limit(1)
    ).scalar_one_or_none()
    order = MaintenanceWorkOrder(
        ride_id=ride.id,
        summary=summary.strip(),
        employee_id=assignee_id,
        report_date=report_date or date.today(),
    )
    session.add(order)
    session.execute(update(Ride).where(Ride.id == ride.id).values(ride_status=RIDE_BROKEN))
    return order


def request_restock(session: Session, actor: Actor, vendor_id: Optional[int] = None,
                    item_id: Optional[int] = None, requested_count: Optional[int] = None) -> InventoryRequest:
    vendor = _get(session, Vendor, vendor_id, "vendor")
    _get(session, Item, item_id, "item")
    workflow.check_request_restock(actor, vendor.id, vendor.location_id, requested_count)
    request = InventoryRequest(
        vendor_id=vendor.id,
        item_id=item_id,
        requested_count=requested_count,
        requested_by_id=actor.id,
        location_id=vendor.location_id,
        status=REQUEST_PENDING,
        request_date=date.today(),
    )
    session.add(request)
    return request


@dataclass(frozen=True)
class Transition:
    name: str
    model: type
    resource: str
    apply: Callable[..., Any]


TRANSITIONS: dict[str, Transition] = {
    t.name: t
    for t in (
        Transition("propose", MaintenanceWorkOrder, "work order", propose),
        Transition("direct_assign", MaintenanceWorkOrder, "work order", direct_assign),
        Transition("approve_proposal", MaintenanceWorkOrder, "work order", _decide_proposal(Decision.APPROVE)),
        Transition("reject_proposal", MaintenanceWorkOrder, "work order", _decide_proposal(Decision.REJECT)),
        Transition("complete", MaintenanceWorkOrder, "work order", complete),
        Transition("edit_request", InventoryRequest, "inventory request", edit_request),
        Transition("approve_request", InventoryRequest, "inventory request", _decide_request(Decision.APPROVE)),
        Transition("reject_request", InventoryRequest, "inventory request", _decide_request(Decision.REJECT)),
    )
}

OPERATIONS: dict[str, Callable[..., Any]] = {
    "report_defect": report_defect,
    "request_restock": request_restock,
}


class CommitEngine:
    """Runs one transition, with its side effects, as an all-or-nothing unit."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def commit(self, transition: str, row_id: int, actor: Actor, **params):
        step = TRANSITIONS[transition]

        def run(session: Session):
            row = _get(session, step.model, row_id, step.resource)
            return step.apply(session, row, actor, **params)

        return self._run(transition, row_id, actor, run)

    def create(self, operation: str, actor: Actor, **params):
        apply = OPERATIONS[operation]
        return self._run(operation, None, actor, lambda session: apply(session, actor, **params))

    def _run(self, name: str, row_id: Optional[int], actor: Actor, fn: Callable[[Session], Any]):
        try:
            with transaction(self._session_factory) as session:
                row = fn(session)
                session.flush()
                session.refresh(row)
                session.expunge(row)
        except WorkflowError as exc:
            logger.warning(
                "%s rejected: actor=%s role=%s id=%s code=%s: %s",
                name, actor.id, actor.role, row_id, exc.code, exc.message,
            )
            raise
        except RETRYABLE_ERRORS as exc:
            logger.exception("%s rolled back, store unavailable: id=%s", name, row_id)
            raise StoreError(f"{name} could not be applied, try again", retryable=True) from exc
        except SQLAlchemyError as exc:
            logger.exception("%s rolled back: id=%s", name, row_id)
            raise StoreError(f"{name} could not be applied") from exc
        logger.info("%s applied: actor=%s role=%s id=%s", name, actor.id, actor.role, getattr(row, "id", row_id))
        return row
