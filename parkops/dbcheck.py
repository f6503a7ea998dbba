from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from parkops.config import settings
from parkops.db import build_engine
from parkops.models import Inventory, InventoryRequest, MaintenanceWorkOrder

REQUIRED_TABLES = (
    MaintenanceWorkOrder.__tablename__,
    InventoryRequest.__tablename__,
    Inventory.__tablename__,
)


def check(engine: Engine) -> list[str]:
    """Return the problems found with the store, empty when it is usable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            present = set(inspect(conn).get_table_names())
    except SQLAlchemyError as exc:
        return [f"connection failed: {exc}"]
    return [f"missing table: {name}" for name in REQUIRED_TABLES if name not in present]


def main() -> int:
    engine = build_engine(settings)
    print(f"DATABASE_URL={engine.url.render_as_string(hide_password=True)}")
    problems = check(engine)
    engine.dispose()
    if problems:
        print("DB check FAILED")
        for problem in problems:
            print(problem)
        return 1
    print("DB check OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
