from concurrent.futures import ThreadPoolExecutor

from sqlalchemy.exc import OperationalError

from parkops import notifications
from parkops.auth import Actor
from parkops.notifications import BaselineStore, NotificationTracker


def _refresh(tracker, session_factory, actor):
    with session_factory() as db:
        return tracker.refresh(db, actor)


def _seed_items(park, actors, make_request, make_work_order) -> None:
    make_request(actors["north_staff"].id, vendor_id=park.north_snacks)
    make_request(actors["north_staff"].id, vendor_id=park.north_snacks)
    make_request(actors["south_manager"].id, vendor_id=park.south_gifts)
    make_request(actors["north_staff"].id, vendor_id=park.north_snacks, status="Approved")
    make_work_order(
        employee_id=actors["mechanic"].id, pending_employee_id=actors["mechanic_2"].id,
        proposer=actors["mechanic"].id,
    )
    make_work_order(employee_id=actors["mechanic"].id)


def test_visible_count_follows_scope(tracker, session_factory, park, actors, make_request, make_work_order) -> None:
    _seed_items(park, actors, make_request, make_work_order)

    assert _refresh(tracker, session_factory, actors["admin"]).visible_count == 4
    assert _refresh(tracker, session_factory, actors["park_manager"]).visible_count == 4
    assert _refresh(tracker, session_factory, actors["north_manager"]).visible_count == 2
    assert _refresh(tracker, session_factory, actors["south_manager"]).visible_count == 1
    assert _refresh(tracker, session_factory, actors["north_staff"]).visible_count == 0


def test_maintenance_sees_own_open_work_orders(
    tracker, session_factory, park, actors, make_request, make_work_order
) -> None:
    _seed_items(park, actors, make_request, make_work_order)

    mechanic = _refresh(tracker, session_factory, actors["mechanic"])
    other = _refresh(tracker, session_factory, actors["mechanic_2"])
    manager = _refresh(tracker, session_factory, actors["admin"])

    assert mechanic.visible_count == 0
    assert mechanic.my_open_work_orders == 2
    assert other.my_open_work_orders == 0
    assert manager.my_open_work_orders is None


def test_badge_resets_after_mark_seen(tracker, session_factory, park, actors, make_request) -> None:
    manager = actors["north_manager"]
    make_request(actors["north_staff"].id)
    make_request(actors["north_staff"].id)

    before = _refresh(tracker, session_factory, manager)
    assert before.new_since_baseline == 2

    tracker.mark_seen(manager, before.visible_count)
    assert _refresh(tracker, session_factory, manager).new_since_baseline == 0

    make_request(actors["north_staff"].id)
    after = _refresh(tracker, session_factory, manager)
    assert after.visible_count == 3
    assert after.new_since_baseline == 1


def test_badge_never_negative(tracker, session_factory, park, actors, make_request, commit_engine) -> None:
    manager = actors["north_manager"]
    request_id = make_request(actors["north_staff"].id)
    make_request(actors["north_staff"].id)
    tracker.mark_seen(manager, 2)

    commit_engine.commit("approve_request", request_id, manager)

    counts = _refresh(tracker, session_factory, manager)
    assert counts.visible_count == 1
    assert counts.new_since_baseline == 0


def test_refresh_does_not_move_baseline(tracker, session_factory, park, actors, make_request) -> None:
    manager = actors["north_manager"]
    make_request(actors["north_staff"].id)

    _refresh(tracker, session_factory, manager)
    _refresh(tracker, session_factory, manager)

    assert tracker.baselines.get(manager.session_key, manager.id) == 0


def test_baselines_are_per_session(tracker, session_factory, park, actors, make_request) -> None:
    manager = actors["north_manager"]
    make_request(actors["north_staff"].id)
    tracker.mark_seen(manager, 1)

    other_tab = Actor(
        id=manager.id, role=manager.role, location_id=manager.location_id, session_id="another-login"
    )
    assert _refresh(tracker, session_factory, manager).new_since_baseline == 0
    assert _refresh(tracker, session_factory, other_tab).new_since_baseline == 1


def test_count_failure_degrades_to_zero(tracker, session_factory, park, actors, make_request, monkeypatch) -> None:
    make_request(actors["north_staff"].id)

    def unavailable(db, actor):
        raise OperationalError("SELECT count(*)", {}, Exception("connection reset"))

    monkeypatch.setattr(notifications, "count_visible", unavailable)
    counts = _refresh(tracker, session_factory, actors["north_manager"])

    assert counts.visible_count == 0
    assert counts.new_since_baseline == 0


def test_baseline_store_is_thread_safe() -> None:
    store = BaselineStore()

    def write(n: int) -> None:
        store.set(f"session-{n % 4}", 7, n)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(write, range(200)))

    assert store.get("missing", 7) == 0
    for n in range(4):
        assert store.get(f"session-{n}", 7) % 4 == n


def test_to_dict_shape() -> None:
    tracker = NotificationTracker()
    assert tracker.baselines.get("s", 1) == 0
    counts = notifications.BadgeCounts(visible_count=3, new_since_baseline=1)
    assert counts.to_dict() == {"visible_count": 3, "new_since_baseline": 1, "my_open_work_orders": None}


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_baseline_expires_after_idle_ttl() -> None:
    clock = _Clock()
    store = BaselineStore(ttl_seconds=60, clock=clock)
    store.set("session-a", 3, 4)

    clock.now = 50
    assert store.get("session-a", 3) == 4
    # Reading keeps the entry alive.
    clock.now = 100
    assert store.get("session-a", 3) == 4

    clock.now = 161
    assert store.get("session-a", 3) == 0
    assert len(store) == 0


def test_baseline_store_is_capped() -> None:
    clock = _Clock()
    store = BaselineStore(ttl_seconds=60, max_entries=100, clock=clock)

    for n in range(5000):
        clock.now = n / 1000
        store.set(f"session-{n}", 1, n)

    assert len(store) == 100
    assert store.get("session-0", 1) == 0
    assert store.get("session-4999", 1) == 4999


def test_expired_entries_go_first_when_full() -> None:
    clock = _Clock()
    store = BaselineStore(ttl_seconds=60, max_entries=2, clock=clock)
    store.set("stale", 1, 1)
    clock.now = 30
    store.set("recent", 1, 2)

    clock.now = 70
    store.set("new", 1, 3)

    assert len(store) == 2
    assert store.get("recent", 1) == 2
    assert store.get("new", 1) == 3
