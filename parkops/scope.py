from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy import false, true
from sqlalchemy.sql.elements import ColumnElement


class Role(str, Enum):
    ADMIN = "Admin"
    PARK_MANAGER = "Park Manager"
    LOCATION_MANAGER = "Location Manager"
    MAINTENANCE = "Maintenance"
    STAFF = "Staff"


class Capability(str, Enum):
    VIEW_APPROVALS = "view_approvals"
    ARBITRATE_REASSIGNMENT = "arbitrate_reassignment"
    DECIDE_INVENTORY_REQUEST = "decide_inventory_request"
    PROPOSE_REASSIGNMENT = "propose_reassignment"
    DIRECT_ASSIGN = "direct_assign"
    REPORT_DEFECT = "report_defect"
    COMPLETE_WORK_ORDER = "complete_work_order"
    REQUEST_RESTOCK = "request_restock"
    VIEW_INVENTORY_REQUESTS = "view_inventory_requests"
    VIEW_WORK_ORDERS = "view_work_orders"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(
        {
            Capability.VIEW_APPROVALS,
            Capability.ARBITRATE_REASSIGNMENT,
            Capability.DECIDE_INVENTORY_REQUEST,
            Capability.DIRECT_ASSIGN,
            Capability.REPORT_DEFECT,
            Capability.COMPLETE_WORK_ORDER,
            Capability.REQUEST_RESTOCK,
            Capability.VIEW_INVENTORY_REQUESTS,
            Capability.VIEW_WORK_ORDERS,
        }
    ),
    Role.PARK_MANAGER: frozenset(
        {
            Capability.VIEW_APPROVALS,
            Capability.ARBITRATE_REASSIGNMENT,
            Capability.DECIDE_INVENTORY_REQUEST,
            Capability.DIRECT_ASSIGN,
            Capability.REPORT_DEFECT,
            Capability.COMPLETE_WORK_ORDER,
            Capability.REQUEST_RESTOCK,
            Capability.VIEW_INVENTORY_REQUESTS,
            Capability.VIEW_WORK_ORDERS,
        }
    ),
    Role.LOCATION_MANAGER: frozenset(
        {
            Capability.VIEW_APPROVALS,
            Capability.DECIDE_INVENTORY_REQUEST,
            Capability.DIRECT_ASSIGN,
            Capability.REPORT_DEFECT,
            Capability.REQUEST_RESTOCK,
            Capability.VIEW_INVENTORY_REQUESTS,
            Capability.VIEW_WORK_ORDERS,
        }
    ),
    Role.MAINTENANCE: frozenset(
        {
            Capability.PROPOSE_REASSIGNMENT,
            Capability.REPORT_DEFECT,
            Capability.COMPLETE_WORK_ORDER,
            Capability.VIEW_WORK_ORDERS,
        }
    ),
    Role.STAFF: frozenset(
        {
            Capability.REPORT_DEFECT,
            Capability.REQUEST_RESTOCK,
            Capability.VIEW_INVENTORY_REQUESTS,
        }
    ),
}

# Roles whose capabilities only reach rows at their own location.
LOCATION_BOUND_ROLES = frozenset({Role.LOCATION_MANAGER, Role.STAFF})


def parse_role(value: str | None) -> Role | None:
    try:
        return Role(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class Scope:
    role: Role | None
    location_id: int | None
    capabilities: frozenset[Capability]
    location_bound: bool

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def covers(self, capability: Capability, location_id: int | None) -> bool:
        """Whether the capability reaches a row that lives at ``location_id``."""
        if not self.has(capability):
            return False
        if not self.location_bound:
            return True
        return self.location_id is not None and location_id == self.location_id

    def location_filter(self, capability: Capability, column) -> ColumnElement[bool]:
        """A WHERE clause restricting ``column`` to the rows this scope reaches."""
        if not self.has(capability):
            return false()
        if not self.location_bound:
            return true()
        if self.location_id is None:
            return false()
        return column == self.location_id


def resolve_scope(role: str | Role | None, location_id: int | None) -> Scope:
    parsed = role if isinstance(role, Role) else parse_role(role)
    if parsed is None:
        return Scope(role=None, location_id=location_id, capabilities=frozenset(), location_bound=True)
    return Scope(
        role=parsed,
        location_id=location_id,
        capabilities=ROLE_CAPABILITIES[parsed],
        location_bound=parsed in LOCATION_BOUND_ROLES,
    )
