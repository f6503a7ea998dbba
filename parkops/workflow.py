"""Transition checks. These read a row snapshot and raise; they never write."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from parkops.auth import Actor
from parkops.errors import AlreadyProcessedError, AuthorizationError, ValidationError
from parkops.models import (
    REQUEST_PENDING,
    RIDE_CLOSED,
    RIDE_OPEN,
    Employee,
    InventoryRequest,
    MaintenanceWorkOrder,
)
from parkops.scope import Capability, Role


class ReassignmentState(str, Enum):
    STABLE = "Stable"
    PROPOSAL_PENDING = "ProposalPending"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


def reassignment_state(order: MaintenanceWorkOrder) -> ReassignmentState:
    if order.pending_employee_id is not None:
        return ReassignmentState.PROPOSAL_PENDING
    return ReassignmentState.STABLE


def is_open(order: MaintenanceWorkOrder) -> bool:
    return order.end_date is None


def _require(actor: Actor, capability: Capability, action: str, resource_id: Optional[int] = None,
             location_id: Optional[int] = None, located: bool = False) -> None:
    scope = actor.scope
    if not scope.has(capability):
        raise AuthorizationError(action, resource_id, reason=f"role {actor.role!r}")
    if located and not scope.covers(capability, location_id):
        raise AuthorizationError(action, resource_id, reason="outside your location")


def _require_open(order: MaintenanceWorkOrder) -> None:
    if not is_open(order):
        raise AlreadyProcessedError("work order", order.id, state="closed", redirect=f"/maintenance/{order.id}")


def check_candidate(candidate_id: Optional[int], candidate: Optional[Employee]) -> None:
    """Reassignment targets must be active maintenance employees."""
    if candidate_id is None:
        raise ValidationError("new_employee_id is required", input={"new_employee_id": candidate_id})
    if candidate is None or not candidate.is_active or candidate.employee_type != Role.MAINTENANCE.value:
        raise ValidationError(
            "new_employee_id must be an active maintenance employee",
            input={"new_employee_id": candidate_id},
        )


# Maintenance reassignment


def check_propose(actor: Actor, order: MaintenanceWorkOrder, candidate_id: Optional[int],
                  candidate: Optional[Employee]) -> None:
    _require(actor, Capability.PROPOSE_REASSIGNMENT, "propose reassignment", order.id)
    _require_open(order)
    if reassignment_state(order) is ReassignmentState.PROPOSAL_PENDING:
        raise AlreadyProcessedError(
            "work order", order.id, state="reassignment pending", redirect=f"/maintenance/{order.id}"
        )
    check_candidate(candidate_id, candidate)
    if candidate_id == order.employee_id:
        raise ValidationError("employee is already assigned", input={"new_employee_id": candidate_id})


def check_direct_assign(actor: Actor, order: MaintenanceWorkOrder, ride_location_id: int,
                        candidate_id: Optional[int], candidate: Optional[Employee]) -> None:
    _require(actor, Capability.DIRECT_ASSIGN, "reassign work order", order.id,
             location_id=ride_location_id, located=True)
    _require_open(order)
    check_candidate(candidate_id, candidate)


def check_decide_proposal(actor: Actor, order: MaintenanceWorkOrder, decision: Decision) -> None:
    _require(actor, Capability.ARBITRATE_REASSIGNMENT, f"{decision.value} reassignment", order.id)
    _require_open(order)
    if reassignment_state(order) is not ReassignmentState.PROPOSAL_PENDING:
        raise AlreadyProcessedError("reassignment", order.id, state=ReassignmentState.STABLE.value)


def check_report_defect(actor: Actor, ride_id: int, ride_location_id: int, summary: Optional[str]) -> None:
    _require(actor, Capability.REPORT_DEFECT, "report ride defect", ride_id,
             location_id=ride_location_id, located=True)
    if not summary or not summary.strip():
        raise ValidationError("summary is required", input={"ride_id": ride_id, "summary": summary})


def check_complete(actor: Actor, order: MaintenanceWorkOrder, start_date: Optional[date],
                   end_date: Optional[date], cost: Optional[Decimal], ride_status: Optional[str]) -> None:
    _require(actor, Capability.COMPLETE_WORK_ORDER, "complete work order", order.id)
    _require_open(order)
    submitted = {
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
        "cost": str(cost) if cost is not None else None,
        "ride_status": ride_status,
    }
    if ride_status not in (RIDE_OPEN, RIDE_CLOSED):
        raise ValidationError("ride_status must be OPEN or CLOSED", input=submitted)
    if start_date is None or end_date is None:
        raise ValidationError("start_date and end_date are required", input=submitted)
    if start_date < order.report_date:
        raise ValidationError("work cannot start before the defect was reported", input=submitted)
    if end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", input=submitted)
    if cost is not None and cost < 0:
        raise ValidationError("cost cannot be negative", input=submitted)


# Inventory requests


def check_quantity(requested_count: Optional[int]) -> None:
    if requested_count is None or requested_count <= 0:
        raise ValidationError(
            "requested_count must be a positive integer",
            input={"requested_count": requested_count},
        )


def check_request_restock(actor: Actor, vendor_id: int, vendor_location_id: int,
                          requested_count: Optional[int]) -> None:
    _require(actor, Capability.REQUEST_RESTOCK, "request restock", vendor_id,
             location_id=vendor_location_id, located=True)
    check_quantity(requested_count)


def check_edit_request(actor: Actor, request: InventoryRequest, requested_count: Optional[int]) -> None:
    # A processed request is closed to everyone, the requester included.
    if request.status != REQUEST_PENDING:
        raise AlreadyProcessedError(
            "inventory request", request.id, state=request.status, redirect="/inventory/requests"
        )
    if request.requested_by_id != actor.id:
        raise AuthorizationError("edit inventory request", request.id, reason="only the requester may edit")
    check_quantity(requested_count)


def check_decide_request(actor: Actor, request: InventoryRequest, decision: Decision) -> None:
    _require(actor, Capability.DECIDE_INVENTORY_REQUEST, f"{decision.value} inventory request", request.id,
             location_id=request.location_id, located=True)
    if request.status != REQUEST_PENDING:
        raise AlreadyProcessedError("inventory request", request.id, state=request.status)
