from __future__ import annotations

import logging
import time
from datetime import date
from decimal import Decimal
from typing import Any, Iterator, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker

from parkops import workflow
from parkops.auth import Actor, get_actor
from parkops.commit import RETRYABLE_ERRORS, CommitEngine
from parkops.config import settings
from parkops.db import SessionLocal
from parkops.errors import AuthorizationError, NotFoundError, StoreError, WorkflowError
from parkops.logging_config import configure_logging
from parkops.models import (
    Employee,
    Inventory,
    InventoryRequest,
    Item,
    MaintenanceWorkOrder,
    REQUEST_PENDING,
    Ride,
    Vendor,
)
from parkops.notifications import (
    BaselineStore,
    NotificationTracker,
    pending_proposal_filter,
    pending_request_filter,
)
from parkops.scope import Capability, Role

configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(title="Park Operations Approvals")

_tracker = NotificationTracker(
    BaselineStore(ttl_seconds=settings.baseline_ttl_seconds, max_entries=settings.baseline_max_entries)
)


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(session_factory: sessionmaker = Depends(get_session_factory)) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_commit_engine(session_factory: sessionmaker = Depends(get_session_factory)) -> CommitEngine:
    return CommitEngine(session_factory)


def get_notification_tracker() -> NotificationTracker:
    return _tracker


def _paginate_by_offset(query, limit: int, cursor: Optional[int]) -> tuple[list[Any], Optional[int]]:
    offset = cursor or 0
    rows = query.offset(offset).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        next_cursor = offset + limit
        rows = rows[:limit]
    return rows, next_cursor


def _list_meta(limit: int, cursor: Optional[int], next_cursor: Optional[int]) -> dict:
    meta = _meta()
    if next_cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(next_cursor)}
    elif cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(cursor)}
    else:
        meta["page"] = {"limit": limit, "cursor": None}
    return meta


def _require(actor: Actor, capability: Capability, action: str, resource_id: Optional[int] = None) -> None:
    if not actor.scope.has(capability):
        raise AuthorizationError(action, resource_id, reason=f"role {actor.role!r}")


def _employee_name(employee: Optional[Employee]) -> Optional[str]:
    return employee.full_name if employee else None


def _work_order_data(order: MaintenanceWorkOrder) -> dict:
    return {
        "work_order_id": order.id,
        "ride_id": order.ride_id,
        "summary": order.summary,
        "employee_id": order.employee_id,
        "pending_employee_id": order.pending_employee_id,
        "assignment_requested_by": order.assignment_requested_by,
        "reassignment_state": workflow.reassignment_state(order).value,
        "report_date": order.report_date.isoformat(),
        "start_date": order.start_date.isoformat() if order.start_date else None,
        "end_date": order.end_date.isoformat() if order.end_date else None,
        "cost": float(order.cost) if order.cost is not None else None,
        "is_open": workflow.is_open(order),
    }


def _inventory_request_data(request: InventoryRequest) -> dict:
    return {
        "request_id": request.id,
        "vendor_id": request.vendor_id,
        "item_id": request.item_id,
        "requested_count": request.requested_count,
        "requested_by_id": request.requested_by_id,
        "location_id": request.location_id,
        "status": request.status,
        "request_date": request.request_date.isoformat(),
    }


def _stock_count(db: Session, vendor_id: int, item_id: int) -> int:
    count = db.execute(
        select(Inventory.count).where(Inventory.vendor_id == vendor_id, Inventory.item_id == item_id)
    ).scalar_one_or_none()
    return count or 0


def _error_response(exc: WorkflowError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status,
        content={"detail": exc.message, "error": exc.to_dict(), "meta": _meta()},
    )


@app.exception_handler(WorkflowError)
async def handle_workflow_error(request: Request, exc: WorkflowError) -> JSONResponse:
    return _error_response(exc)


@app.exception_handler(SQLAlchemyError)
async def handle_store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("store failure on %s %s", request.method, request.url.path, exc_info=exc)
    retryable = isinstance(exc, RETRYABLE_ERRORS)
    message = "store unavailable, try again" if retryable else "store failure"
    return _error_response(StoreError(message, retryable=retryable))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "%s %s -> %s",
        request.method,
        request.url.path,
        response.status_code,
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "actor_id": request.headers.get("x-actor-id"),
            "actor_role": request.headers.get("x-actor-role"),
        },
    )
    return response


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


@app.get("/notifications", tags=["Approvals"])
def get_notifications(
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    tracker: NotificationTracker = Depends(get_notification_tracker),
) -> dict:
    return {"data": tracker.refresh(db, actor).to_dict(), "meta": _meta()}


@app.get("/approvals", tags=["Approvals"])
def list_approvals(
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    tracker: NotificationTracker = Depends(get_notification_tracker),
) -> dict:
    _require(actor, Capability.VIEW_APPROVALS, "view approvals")

    reassignments = []
    if actor.scope.has(Capability.ARBITRATE_REASSIGNMENT):
        current = aliased(Employee)
        pending = aliased(Employee)
        requester = aliased(Employee)
        rows = db.execute(
            select(MaintenanceWorkOrder, Ride.ride_name, current, pending, requester)
            .join(Ride, Ride.id == MaintenanceWorkOrder.ride_id)
            .outerjoin(current, current.id == MaintenanceWorkOrder.employee_id)
            .join(pending, pending.id == MaintenanceWorkOrder.pending_employee_id)
            .join(requester, requester.id == MaintenanceWorkOrder.assignment_requested_by)
            .where(*pending_proposal_filter(actor))
            .order_by(MaintenanceWorkOrder.report_date, MaintenanceWorkOrder.id)
        ).all()
        reassignments = [
            {
                **_work_order_data(order),
                "ride_name": ride_name,
                "current_employee_name": _employee_name(current_emp),
                "pending_employee_name": _employee_name(pending_emp),
                "requester_name": _employee_name(requester_emp),
            }
            for order, ride_name, current_emp, pending_emp, requester_emp in rows
        ]

    inventory_requests = []
    if actor.scope.has(Capability.DECIDE_INVENTORY_REQUEST):
        rows = db.execute(
            select(
                InventoryRequest,
                Vendor.vendor_name,
                Item.item_name,
                Employee,
                func.coalesce(Inventory.count, 0),
            )
            .join(Vendor, Vendor.id == InventoryRequest.vendor_id)
            .join(Item, Item.id == InventoryRequest.item_id)
            .outerjoin(Employee, Employee.id == InventoryRequest.requested_by_id)
            .outerjoin(
                Inventory,
                and_(
                    Inventory.vendor_id == InventoryRequest.vendor_id,
                    Inventory.item_id == InventoryRequest.item_id,
                ),
            )
            .where(*pending_request_filter(actor))
            .order_by(InventoryRequest.request_date, InventoryRequest.id)
        ).all()
        inventory_requests = [
            {
                **_inventory_request_data(request),
                "vendor_name": vendor_name,
                "item_name": item_name,
                "requester_name": _employee_name(requester_emp),
                "current_count": current_count,
            }
            for request, vendor_name, item_name, requester_emp, current_count in rows
        ]

    visible_count = len(reassignments) + len(inventory_requests)
    tracker.mark_seen(actor, visible_count)
    return {
        "data": {
            "reassignments": reassignments,
            "inventory_requests": inventory_requests,
            "notifications": {"visible_count": visible_count, "new_since_baseline": 0},
        },
        "meta": _meta(),
    }


@app.post("/approve/reassignment/{work_order_id}", tags=["Approvals"])
def approve_reassignment(
    work_order_id: int,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
) -> dict:
    order = engine.commit("approve_proposal", work_order_id, actor)
    return {"data": _work_order_data(order), "meta": _meta()}


@app.post("/reject/reassignment/{work_order_id}", tags=["Approvals"])
def reject_reassignment(
    work_order_id: int,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
) -> dict:
    order = engine.commit("reject_proposal", work_order_id, actor)
    return {"data": _work_order_data(order), "meta": _meta()}


@app.post("/approve/inventory/{request_id}", tags=["Approvals"])
def approve_inventory_request(
    request_id: int,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
    db: Session = Depends(get_db),
) -> dict:
    request = engine.commit("approve_request", request_id, actor)
    # The approval is committed at this point.
    warnings = []
    try:
        current_count = _stock_count(db, request.vendor_id, request.item_id)
    except SQLAlchemyError:
        logger.warning("stock count unavailable after approving request id=%s", request_id, exc_info=True)
        current_count = None
        warnings.append("current_count unavailable")
    return {
        "data": {**_inventory_request_data(request), "current_count": current_count},
        "meta": _meta(warnings=warnings),
    }


@app.post("/reject/inventory/{request_id}", tags=["Approvals"])
def reject_inventory_request(
    request_id: int,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
) -> dict:
    request = engine.commit("reject_request", request_id, actor)
    return {"data": _inventory_request_data(request), "meta": _meta()}


class InventoryRequestCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"vendor_id": 3, "item_id": 12, "requested_count": 40}}}
    vendor_id: int
    item_id: int
    requested_count: Optional[int] = None


class InventoryRequestEdit(BaseModel):
    model_config = {"json_schema_extra": {"example": {"requested_count": 25}}}
    requested_count: Optional[int] = None


@app.post("/inventory/request", tags=["Inventory Requests"])
def create_inventory_request(
    payload: InventoryRequestCreate,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
) -> dict:
    request = engine.create(
        "request_restock",
        actor,
        vendor_id=payload.vendor_id,
        item_id=payload.item_id,
        requested_count=payload.requested_count,
    )
    return {"data": _inventory_request_data(request), "meta": _meta()}


@app.get("/inventory/requests", tags=["Inventory Requests"])
def list_inventory_requests(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> dict:
    _require(actor, Capability.VIEW_INVENTORY_REQUESTS, "view inventory requests")
    query = db.query(InventoryRequest).filter(
        actor.scope.location_filter(Capability.VIEW_INVENTORY_REQUESTS, InventoryRequest.location_id)
    )
    if status is not None:
        query = query.filter(InventoryRequest.status == status)
    query = query.order_by(
        case((InventoryRequest.status == REQUEST_PENDING, 1), else_=2),
        InventoryRequest.request_date.desc(),
        InventoryRequest.id.desc(),
    )
    rows, next_cursor = _paginate_by_offset(query, limit, cursor)
    data = [_inventory_request_data(row) for row in rows]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


@app.get("/inventory/request/edit/{request_id}", tags=["Inventory Requests"])
def get_inventory_request_for_edit(
    request_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> dict:
    row = db.execute(
        select(InventoryRequest, Vendor.vendor_name, Item.item_name)
        .join(Vendor, Vendor.id == InventoryRequest.vendor_id)
        .join(Item, Item.id == InventoryRequest.item_id)
        .where(InventoryRequest.id == request_id)
    ).first()
    if row is None:
        raise NotFoundError("inventory request", request_id)
    request, vendor_name, item_name = row
    workflow.check_edit_request(actor, request, request.requested_count)
    return {
        "data": {**_inventory_request_data(request), "vendor_name": vendor_name, "item_name": item_name},
        "meta": _meta(),
    }


@app.post("/inventory/request/edit/{request_id}", tags=["Inventory Requests"])
def edit_inventory_request(
    request_id: int,
    payload: InventoryRequestEdit,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
) -> dict:
    request = engine.commit("edit_request", request_id, actor, requested_count=payload.requested_count)
    return {"data": _inventory_request_data(request), "meta": _meta()}


class WorkOrderCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"ride_id": 4, "summary": "Lap bar sensor failing", "report_date": "2026-05-02"}}}
    ride_id: int
    summary: Optional[str] = None
    report_date: Optional[date] = None


class WorkOrderReassign(BaseModel):
    model_config = {"json_schema_extra": {"example": {"new_employee_id": 17}}}
    new_employee_id: Optional[int] = None


class WorkOrderComplete(BaseModel):
    model_config = {"json_schema_extra": {"example": {"start_date": "2026-05-03", "end_date": "2026-05-04", "cost": "420.00", "ride_status": "OPEN"}}}
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    cost: Optional[Decimal] = None
    ride_status: Optional[str] = None


@app.post("/maintenance", tags=["Work Orders"])
def report_ride_defect(
    payload: WorkOrderCreate,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
) -> dict:
    order = engine.create(
        "report_defect",
        actor,
        ride_id=payload.ride_id,
        summary=payload.summary,
        report_date=payload.report_date,
    )
    return {"data": _work_order_data(order), "meta": _meta()}


def _load_work_order(db: Session, work_order_id: int) -> tuple[MaintenanceWorkOrder, Ride]:
    row = db.execute(
        select(MaintenanceWorkOrder, Ride)
        .join(Ride, Ride.id == MaintenanceWorkOrder.ride_id)
        .where(MaintenanceWorkOrder.id == work_order_id)
    ).first()
    if row is None:
        raise NotFoundError("work order", work_order_id)
    return row[0], row[1]


@app.get("/maintenance/{work_order_id}", tags=["Work Orders"])
def get_work_order(
    work_order_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> dict:
    order, ride = _load_work_order(db, work_order_id)
    if not actor.scope.covers(Capability.VIEW_WORK_ORDERS, ride.location_id):
        raise AuthorizationError("view work order", work_order_id)
    return {
        "data": {**_work_order_data(order), "ride_name": ride.ride_name, "ride_status": ride.ride_status},
        "meta": _meta(),
    }


@app.get("/maintenance/reassign/{work_order_id}", tags=["Work Orders"])
def get_reassignment_form(
    work_order_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> dict:
    order, ride = _load_work_order(db, work_order_id)
    scope = actor.scope
    if scope.has(Capability.PROPOSE_REASSIGNMENT):
        mode = "propose"
    elif scope.covers(Capability.DIRECT_ASSIGN, ride.location_id):
        mode = "assign"
    else:
        raise AuthorizationError("reassign work order", work_order_id)
    employees = db.execute(
        select(Employee)
        .where(Employee.employee_type == Role.MAINTENANCE.value, Employee.is_active.is_(True))
        .order_by(Employee.last_name, Employee.first_name, Employee.id)
    ).scalars().all()
    return {
        "data": {
            "work_order": {**_work_order_data(order), "ride_name": ride.ride_name},
            "mode": mode,
            "employees": [
                {"employee_id": emp.id, "first_name": emp.first_name, "last_name": emp.last_name}
                for emp in employees
            ],
        },
        "meta": _meta(),
    }


@app.post("/maintenance/reassign/{work_order_id}", tags=["Work Orders"])
def reassign_work_order(
    work_order_id: int,
    payload: WorkOrderReassign,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
) -> dict:
    # Maintenance workers can only suggest; managers assign directly.
    if actor.scope.has(Capability.PROPOSE_REASSIGNMENT):
        transition = "propose"
    elif actor.scope.has(Capability.DIRECT_ASSIGN):
        transition = "direct_assign"
    else:
        raise AuthorizationError("reassign work order", work_order_id, reason=f"role {actor.role!r}")
    order = engine.commit(transition, work_order_id, actor, new_employee_id=payload.new_employee_id)
    return {"data": _work_order_data(order), "meta": _meta()}


@app.post("/maintenance/complete/{work_order_id}", tags=["Work Orders"])
def complete_work_order(
    work_order_id: int,
    payload: WorkOrderComplete,
    actor: Actor = Depends(get_actor),
    engine: CommitEngine = Depends(get_commit_engine),
) -> dict:
    order = engine.commit(
        "complete",
        work_order_id,
        actor,
        start_date=payload.start_date,
        end_date=payload.end_date,
        cost=payload.cost,
        ride_status=payload.ride_status,
    )
    return {"data": _work_order_data(order), "meta": _meta()}
