"""Client-side view of dining halls, kept in sync with the shared store."""

from __future__ import annotations

from dataclasses import replace
from threading import RLock
from typing import Callable, Iterable, Optional, Protocol

from forked.domain.models import DiningHall, HallStatus, HallUpdate, MenuItem, SeatingLevel
from forked.utils.logger import get_logger


logger = get_logger(__name__)


class HallStateError(Exception):
    """Base exception for local hall view failures."""


class UnknownHallError(HallStateError):
    """Raised when a hall id is not present in the local view."""


class UnknownMenuItemError(HallStateError):
    """Raised when a menu item id is not present on a hall."""


class HallFeed(Protocol):
    def list_halls(self) -> list[DiningHall]:
        ...

    def subscribe_halls(self, listener: Callable[[DiningHall], None]) -> Callable[[], None]:
        ...


class HallStateService:
    """Holds the halls the client renders and applies local commits to them.

    Local commits win immediately; the authoritative copy arrives later
    through the realtime subscription and replaces the local one.
    """

    def __init__(self, halls: Iterable[DiningHall] = ()) -> None:
        self._halls: dict[str, DiningHall] = {hall.hall_id: hall for hall in halls}
        self._lock = RLock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, feed: HallFeed) -> None:
        """Load the current halls and follow subsequent changes."""
        self.detach()
        for hall in feed.list_halls():
            self.replace_hall(hall)
        self._unsubscribe = feed.subscribe_halls(self.replace_hall)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def get_hall(self, hall_id: str) -> Optional[DiningHall]:
        with self._lock:
            return self._halls.get(hall_id)

    def list_halls(self) -> list[DiningHall]:
        with self._lock:
            return sorted(self._halls.values(), key=lambda hall: hall.name)

    def replace_hall(self, hall: DiningHall) -> None:
        with self._lock:
            self._halls[hall.hall_id] = hall

    def _require(self, hall_id: str) -> DiningHall:
        hall = self._halls.get(hall_id)
        if hall is None:
            raise UnknownHallError(f"hall_id {hall_id} not found")
        return hall

    def apply_wait_time(
        self,
        hall_id: str,
        label: str,
        now: float,
        verified_increment: int,
    ) -> HallUpdate:
        with self._lock:
            hall = self._require(hall_id)
            self._halls[hall_id] = replace(
                hall,
                wait_time=label,
                last_updated_at=now,
                verified_count=hall.verified_count + verified_increment,
            )
        logger.info(
            "Wait time applied locally | hall_id=%s | wait_time=%s | verified_increment=%s",
            hall_id,
            label,
            verified_increment,
        )
        return HallUpdate(
            hall_id=hall_id,
            updated_at=now,
            wait_time=label,
            verified_increment=verified_increment,
        )

    def apply_seating(self, hall_id: str, level: SeatingLevel, now: float) -> HallUpdate:
        with self._lock:
            hall = self._require(hall_id)
            self._halls[hall_id] = replace(
                hall,
                seating=level,
                seating_last_updated_at=now,
                seating_verified_count=hall.seating_verified_count + 1,
            )
        return HallUpdate(
            hall_id=hall_id,
            updated_at=now,
            seating=level,
            seating_verified_increment=1,
        )

    def update_status(self, hall_id: str, status: HallStatus, now: float) -> HallUpdate:
        with self._lock:
            hall = self._require(hall_id)
            self._halls[hall_id] = replace(hall, status=status)
        return HallUpdate(hall_id=hall_id, updated_at=now, status=status)

    def apply_rating(self, hall_id: str, item_id: str, stars: int) -> MenuItem:
        """Fold a star rating into the item's running average."""
        with self._lock:
            hall = self._require(hall_id)
            items = list(hall.menu_items)
            for index, item in enumerate(items):
                if item.item_id != item_id:
                    continue
                review_count = item.review_count + 1
                rated = replace(
                    item,
                    rating=(item.rating * item.review_count + stars) / review_count,
                    review_count=review_count,
                )
                items[index] = rated
                self._halls[hall_id] = replace(hall, menu_items=tuple(items))
                return rated
        raise UnknownMenuItemError(f"menu item {item_id} not found in hall {hall_id}")
