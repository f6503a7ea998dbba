import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from parkops.models import REQUEST_PENDING, InventoryRequest
from parkops.scope import ROLE_CAPABILITIES, Capability, Role, resolve_scope


@pytest.mark.parametrize(
    "role, expected",
    [
        ("Admin", True),
        ("Park Manager", True),
        ("Location Manager", False),
        ("Maintenance", False),
        ("Staff", False),
    ],
)
def test_only_senior_roles_arbitrate_reassignments(role: str, expected: bool) -> None:
    assert resolve_scope(role, 1).has(Capability.ARBITRATE_REASSIGNMENT) is expected


@pytest.mark.parametrize("role", ["Maintenance", "Staff", "Visitor", None])
def test_roles_without_approval_surface(role) -> None:
    scope = resolve_scope(role, 1)
    assert not scope.has(Capability.VIEW_APPROVALS)
    assert not scope.has(Capability.DECIDE_INVENTORY_REQUEST)
    assert not scope.covers(Capability.DECIDE_INVENTORY_REQUEST, 1)


def test_unknown_role_has_no_capabilities() -> None:
    scope = resolve_scope("Ride Operator", 3)
    assert scope.role is None
    assert scope.capabilities == frozenset()


def test_location_manager_reaches_only_own_location() -> None:
    scope = resolve_scope("Location Manager", 1)
    assert scope.covers(Capability.DECIDE_INVENTORY_REQUEST, 1)
    assert not scope.covers(Capability.DECIDE_INVENTORY_REQUEST, 2)
    assert not scope.covers(Capability.DECIDE_INVENTORY_REQUEST, None)


def test_location_manager_without_location_reaches_nothing() -> None:
    scope = resolve_scope("Location Manager", None)
    assert not scope.covers(Capability.DECIDE_INVENTORY_REQUEST, 1)


def test_senior_roles_are_park_wide() -> None:
    for role in (Role.ADMIN, Role.PARK_MANAGER):
        scope = resolve_scope(role, None)
        assert scope.covers(Capability.DECIDE_INVENTORY_REQUEST, 1)
        assert scope.covers(Capability.DECIDE_INVENTORY_REQUEST, 2)


def test_every_role_has_a_matrix_entry() -> None:
    assert set(ROLE_CAPABILITIES) == set(Role)


def test_only_maintenance_proposes() -> None:
    proposers = {role for role, caps in ROLE_CAPABILITIES.items() if Capability.PROPOSE_REASSIGNMENT in caps}
    assert proposers == {Role.MAINTENANCE}


def test_location_filter_matches_covers(session_factory: sessionmaker, park, make_request) -> None:
    north_id = make_request(park.employees["north_staff"][0], vendor_id=park.north_snacks)
    south_id = make_request(park.employees["south_manager"][0], vendor_id=park.south_gifts)

    def visible(role: str, location_id) -> set[int]:
        scope = resolve_scope(role, location_id)
        with session_factory() as db:
            return set(
                db.execute(
                    select(InventoryRequest.id).where(
                        scope.location_filter(Capability.DECIDE_INVENTORY_REQUEST, InventoryRequest.location_id),
                        InventoryRequest.status == REQUEST_PENDING,
                    )
                ).scalars()
            )

    assert visible("Admin", None) == {north_id, south_id}
    assert visible("Location Manager", park.north) == {north_id}
    assert visible("Location Manager", park.south) == {south_id}
    assert visible("Staff", park.north) == set()
    assert visible("Maintenance", None) == set()
