from __future__ import annotations

from dataclasses import replace

import pytest

from forked.domain.models import (
    DiningHall,
    HallStatus,
    HallUpdate,
    MenuItem,
    SeatingLevel,
)
from forked.repository.data_repository import (
    DEMO_HALLS,
    DataRepository,
    HallNotFoundError,
    MenuItemNotFoundError,
)
from forked.services.hall_state_service import HallStateService, UnknownMenuItemError
from forked.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename)


def _build_repository(tmp_path, filename: str = "halls.db") -> DataRepository:
    repository = DataRepository(_build_test_settings(tmp_path, filename))
    repository.initialize_database()
    repository.seed_demo_halls()
    return repository


def test_from_document_reads_current_shape() -> None:
    hall = DiningHall.from_document(
        {
            "name": "North Ave",
            "waitTime": "5-10 min",
            "status": "busy",
            "lastUpdatedAt": 1_700_000_000,
            "verifiedCount": 142,
            "lat": 33.77,
            "lon": -84.39,
            "seating": "Some",
            "seatingVerifiedCount": 34,
            "menuItems": [{"id": "na-pizza", "name": "Pizza", "rating": 4.5, "reviewCount": 2}],
        },
        hall_id="north-ave",
    )

    assert hall.status == HallStatus.BUSY
    assert hall.last_updated_at == 1_700_000_000.0
    assert hall.seating == SeatingLevel.SOME
    assert hall.coordinate is not None
    assert hall.menu_items[0].review_count == 2


def test_from_document_accepts_legacy_fields() -> None:
    hall = DiningHall.from_document(
        {
            "name": "Brittain",
            "currentWaitMinutes": 10,
            "isOpen": False,
            "lastUpdatedAt": {"_seconds": 1_700_000_000, "_nanoseconds": 0},
            "seating": "Overflowing",
        },
        hall_id="brittain",
    )

    assert hall.wait_time == "9-11 min"
    assert hall.status == HallStatus.CLOSED
    assert hall.last_updated_at == 1_700_000_000.0
    assert hall.seating is None
    assert hall.coordinate is None


def test_from_document_defaults_for_empty_document() -> None:
    hall = DiningHall.from_document({}, hall_id="x")

    assert hall.name == "Unknown Hall"
    assert hall.wait_time == "Unknown"
    assert hall.status == HallStatus.UNKNOWN
    assert hall.verified_count == 0


@pytest.mark.parametrize(
    ("elapsed", "expected"),
    [(30, "now"), (125, "2m ago"), (7_300, "2h ago")],
)
def test_last_updated_text(elapsed: int, expected: str) -> None:
    hall = DiningHall(hall_id="h", name="H", last_updated_at=1_000_000.0)
    assert hall.last_updated_text(1_000_000.0 + elapsed) == expected


def test_last_updated_text_unknown_and_dated() -> None:
    assert DiningHall(hall_id="h", name="H").last_updated_text(10.0) == "Unknown"
    dated = DiningHall(hall_id="h", name="H", last_updated_at=0.0).last_updated_text(200_000.0)
    assert dated.endswith("M")


def test_seed_is_idempotent(tmp_path) -> None:
    repository = _build_repository(tmp_path)

    assert repository.seed_demo_halls() == 0
    halls = repository.list_halls()
    assert [hall.name for hall in halls] == ["Brittain", "North Ave", "West Village"]
    assert all(hall.coordinate is not None for hall in halls)
    assert len(DEMO_HALLS) == 3


def test_apply_hall_update_increments_counters(tmp_path) -> None:
    repository = _build_repository(tmp_path)

    hall = repository.apply_hall_update(
        HallUpdate(
            hall_id="north-ave",
            updated_at=5_000.0,
            wait_time="7-9 min",
            verified_increment=5,
        )
    )

    assert hall.wait_time == "7-9 min"
    assert hall.last_updated_at == 5_000.0
    assert hall.verified_count == 147
    assert hall.seating == SeatingLevel.SOME


def test_apply_hall_update_unknown_hall(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    with pytest.raises(HallNotFoundError):
        repository.apply_hall_update(HallUpdate(hall_id="nope", updated_at=1.0, wait_time="1-2 min"))


def test_item_rating_running_average(tmp_path) -> None:
    repository = _build_repository(tmp_path)

    repository.apply_item_rating("north-ave", "na-pizza", 4)
    item = repository.apply_item_rating("north-ave", "na-pizza", 5)

    assert item.review_count == 2
    assert item.rating == pytest.approx(4.5)
    with pytest.raises(MenuItemNotFoundError):
        repository.apply_item_rating("north-ave", "missing", 3)


def test_local_view_follows_store_changes(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    hall_state = HallStateService()
    hall_state.attach(repository)

    assert [hall.hall_id for hall in hall_state.list_halls()] == ["brittain", "north-ave", "willage"]

    repository.apply_hall_update(
        HallUpdate(hall_id="willage", updated_at=9.0, seating=SeatingLevel.PLENTY, seating_verified_increment=1)
    )
    assert hall_state.get_hall("willage").seating == SeatingLevel.PLENTY
    assert hall_state.get_hall("willage").seating_verified_count == 3

    hall_state.detach()
    repository.apply_hall_update(HallUpdate(hall_id="willage", updated_at=10.0, status=HallStatus.CLOSED))
    assert hall_state.get_hall("willage").status == HallStatus.OPEN


def test_failing_listener_does_not_break_writes(tmp_path) -> None:
    repository = _build_repository(tmp_path)

    def broken_listener(hall: DiningHall) -> None:
        raise RuntimeError("listener exploded")

    repository.subscribe_halls(broken_listener)
    hall = repository.apply_hall_update(
        HallUpdate(hall_id="brittain", updated_at=1.0, status=HallStatus.OPEN)
    )

    assert hall.status == HallStatus.OPEN


def test_local_status_and_rating_updates() -> None:
    hall_state = HallStateService(
        [
            DiningHall(
                hall_id="h",
                name="H",
                menu_items=(MenuItem(item_id="i", name="Item", rating=4.0, review_count=1),),
            )
        ]
    )

    update = hall_state.update_status("h", HallStatus.BUSY, now=3.0)
    rated = hall_state.apply_rating("h", "i", 2)

    assert update.status == HallStatus.BUSY
    assert hall_state.get_hall("h").status == HallStatus.BUSY
    assert rated.rating == pytest.approx(3.0)
    assert rated.review_count == 2
    with pytest.raises(UnknownMenuItemError):
        hall_state.apply_rating("h", "nope", 5)
