from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from parkops.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")

REQUEST_PENDING = "Pending"
REQUEST_APPROVED = "Approved"
REQUEST_REJECTED = "Rejected"
REQUEST_STATUSES = (REQUEST_PENDING, REQUEST_APPROVED, REQUEST_REJECTED)

RIDE_OPEN = "OPEN"
RIDE_CLOSED = "CLOSED"
RIDE_BROKEN = "BROKEN"
RIDE_STATUSES = (RIDE_OPEN, RIDE_CLOSED, RIDE_BROKEN)


class Location(Base):
    __tablename__ = "location"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class Employee(Base):
    __tablename__ = "employee"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    employee_type: Mapped[str] = mapped_column(Text, nullable=False)
    location_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("location.id")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Ride(Base):
    __tablename__ = "ride"
    __table_args__ = (
        CheckConstraint(
            "ride_status IN ('OPEN', 'CLOSED', 'BROKEN')", name="ck_ride_status"
        ),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ride_name: Mapped[str] = mapped_column(Text, nullable=False)
    location_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("location.id"), nullable=False
    )
    ride_status: Mapped[str] = mapped_column(Text, nullable=False, default=RIDE_OPEN)


class Vendor(Base):
    __tablename__ = "vendor"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    vendor_name: Mapped[str] = mapped_column(Text, nullable=False)
    location_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("location.id"), nullable=False
    )


class Item(Base):
    __tablename__ = "item"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    item_name: Mapped[str] = mapped_column(Text, nullable=False)


class MaintenanceWorkOrder(Base):
    """A reported ride defect tracked through repair.

    ``pending_employee_id`` and ``assignment_requested_by`` are set together
    while a reassignment proposal awaits a decision. The order is open while
    ``end_date`` is null.
    """

    __tablename__ = "maintenance"
    __table_args__ = (
        CheckConstraint(
            "pending_employee_id IS NULL OR assignment_requested_by IS NOT NULL",
            name="ck_maintenance_proposal_has_proposer",
        ),
        Index("ix_maintenance_pending", "pending_employee_id", "end_date"),
        Index("ix_maintenance_assignee_open", "employee_id", "end_date"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ride_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("ride.id"), nullable=False
    )
    employee_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("employee.id")
    )
    pending_employee_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("employee.id")
    )
    assignment_requested_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("employee.id")
    )
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    report_date: Mapped[Date] = mapped_column(Date, nullable=False)
    start_date: Mapped[Date | None] = mapped_column(Date)
    end_date: Mapped[Date | None] = mapped_column(Date)
    cost: Mapped[Numeric | None] = mapped_column(Numeric(10, 2))


class InventoryRequest(Base):
    __tablename__ = "inventory_requests"
    __table_args__ = (
        CheckConstraint("requested_count > 0", name="ck_inventory_requests_count"),
        CheckConstraint(
            "status IN ('Pending', 'Approved', 'Rejected')",
            name="ck_inventory_requests_status",
        ),
        Index("ix_inventory_requests_status_location", "status", "location_id"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    vendor_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("vendor.id"), nullable=False
    )
    item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("item.id"), nullable=False
    )
    requested_count: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False
    )
    location_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("location.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, default=REQUEST_PENDING)
    request_date: Mapped[Date] = mapped_column(Date, nullable=False)


class Inventory(Base):
    __tablename__ = "inventory"

    vendor_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("vendor.id"), primary_key=True
    )
    item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("item.id"), primary_key=True
    )
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
