from datetime import date
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from parkops.auth import Actor
from parkops.commit import CommitEngine
from parkops.db import Base
from parkops.main import app, get_notification_tracker, get_session_factory
from parkops.models import (
    REQUEST_PENDING,
    Employee,
    Inventory,
    InventoryRequest,
    Item,
    Location,
    MaintenanceWorkOrder,
    Ride,
    Vendor,
)
from parkops.notifications import NotificationTracker

REPORT_DATE = date(2026, 5, 1)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def seed_park(session_factory) -> SimpleNamespace:
    """Two locations, one of each role, a ride and a vendor per location."""
    with session_factory() as db:
        north = Location(name="North Midway")
        south = Location(name="South Shore")
        db.add_all([north, south])
        db.flush()

        staff = {
            "admin": Employee(first_name="Ada", last_name="Lovell", employee_type="Admin"),
            "park_manager": Employee(first_name="Pat", last_name="Quinn", employee_type="Park Manager"),
            "north_manager": Employee(
                first_name="Nora", last_name="Hale", employee_type="Location Manager", location_id=north.id
            ),
            "south_manager": Employee(
                first_name="Sam", last_name="Ortiz", employee_type="Location Manager", location_id=south.id
            ),
            "mechanic": Employee(first_name="Max", last_name="Wrench", employee_type="Maintenance"),
            "mechanic_2": Employee(first_name="Mia", last_name="Bolt", employee_type="Maintenance"),
            "retired_mechanic": Employee(
                first_name="Ray", last_name="Gear", employee_type="Maintenance", is_active=False
            ),
            "north_staff": Employee(
                first_name="Tess", last_name="Ng", employee_type="Staff", location_id=north.id
            ),
        }
        db.add_all(staff.values())

        coaster = Ride(ride_name="Thunder Run", location_id=north.id, ride_status="OPEN")
        flume = Ride(ride_name="Log Flume", location_id=south.id, ride_status="OPEN")
        north_snacks = Vendor(vendor_name="North Snacks", location_id=north.id)
        south_gifts = Vendor(vendor_name="South Gifts", location_id=south.id)
        churro = Item(item_name="Churro")
        db.add_all([coaster, flume, north_snacks, south_gifts, churro])
        db.flush()

        db.add(Inventory(vendor_id=north_snacks.id, item_id=churro.id, count=5))
        db.commit()

        return SimpleNamespace(
            north=north.id,
            south=south.id,
            employees={name: (emp.id, emp.employee_type, emp.location_id) for name, emp in staff.items()},
            coaster=coaster.id,
            flume=flume.id,
            north_snacks=north_snacks.id,
            south_gifts=south_gifts.id,
            churro=churro.id,
        )


@pytest.fixture
def park(session_factory) -> SimpleNamespace:
    return seed_park(session_factory)


@pytest.fixture
def file_session_factory(tmp_path):
    """A file-backed store where each transaction takes the write lock up front.

    Concurrent transactions queue on the lock instead of failing, which is
    how a row-locking server database behaves for these workflows.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'park.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def file_park(file_session_factory) -> SimpleNamespace:
    return seed_park(file_session_factory)


@pytest.fixture
def actors(park) -> dict[str, Actor]:
    return {
        name: Actor(id=emp_id, role=role, location_id=location_id, session_id=f"session-{name}")
        for name, (emp_id, role, location_id) in park.employees.items()
    }


@pytest.fixture
def commit_engine(session_factory) -> CommitEngine:
    return CommitEngine(session_factory)


@pytest.fixture
def make_request(session_factory, park):
    def _make(requested_by: int, vendor_id: int | None = None, count: int = 10, status: str = REQUEST_PENDING) -> int:
        vendor_id = vendor_id or park.north_snacks
        with session_factory() as db:
            vendor = db.get(Vendor, vendor_id)
            request = InventoryRequest(
                vendor_id=vendor_id,
                item_id=park.churro,
                requested_count=count,
                requested_by_id=requested_by,
                location_id=vendor.location_id,
                status=status,
                request_date=REPORT_DATE,
            )
            db.add(request)
            db.commit()
            return request.id

    return _make


@pytest.fixture
def make_work_order(session_factory, park):
    def _make(ride_id: int | None = None, employee_id: int | None = None, pending_employee_id: int | None = None,
              proposer: int | None = None, end_date: date | None = None) -> int:
        with session_factory() as db:
            order = MaintenanceWorkOrder(
                ride_id=ride_id or park.coaster,
                summary="Lap bar sensor intermittent",
                employee_id=employee_id,
                pending_employee_id=pending_employee_id,
                assignment_requested_by=proposer,
                report_date=REPORT_DATE,
                end_date=end_date,
            )
            db.add(order)
            db.commit()
            return order.id

    return _make


@pytest.fixture
def tracker() -> NotificationTracker:
    return NotificationTracker()


@pytest.fixture
def client(session_factory, tracker):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notification_tracker] = lambda: tracker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def actor_headers(actor: Actor) -> dict:
    headers = {"X-Actor-Id": str(actor.id), "X-Actor-Role": actor.role}
    if actor.location_id is not None:
        headers["X-Actor-Location-Id"] = str(actor.location_id)
    if actor.session_id:
        headers["X-Session-Id"] = actor.session_id
    return headers


@pytest.fixture
def as_actor(actors):
    return lambda name: actor_headers(actors[name])
