from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from parkops import dbcheck
from parkops.models import Location


def test_check_passes_on_migrated_store(engine) -> None:
    assert dbcheck.check(engine) == []


def test_check_reports_missing_tables() -> None:
    empty = create_engine("sqlite:///:memory:", poolclass=StaticPool)
    Location.__table__.create(bind=empty)

    problems = dbcheck.check(empty)

    assert problems == [
        "missing table: maintenance",
        "missing table: inventory_requests",
        "missing table: inventory",
    ]


def test_check_reports_unreachable_store(tmp_path) -> None:
    unreachable = create_engine(f"sqlite:///{tmp_path / 'missing' / 'park.db'}")

    problems = dbcheck.check(unreachable)

    assert len(problems) == 1
    assert problems[0].startswith("connection failed:")


def test_main_exit_code(monkeypatch, engine, capsys) -> None:
    monkeypatch.setattr(dbcheck, "build_engine", lambda config: engine)

    assert dbcheck.main() == 0
    out = capsys.readouterr().out
    assert "DB check OK" in out
