"""HTTP client for the shared store exposed by the FastAPI service."""

from __future__ import annotations

from typing import Any, Callable, Optional

import requests

from forked.domain.models import DiningHall, HallUpdate, MenuItem, NewSubmission
from forked.repository.data_repository import StoreError
from forked.utils.config import Settings, get_settings
from forked.utils.logger import get_logger


logger = get_logger(__name__)


def hall_from_payload(payload: dict[str, Any]) -> DiningHall:
    """Map a ``HallResponse`` body back into the domain model."""
    return DiningHall.from_document(
        {
            "name": payload.get("name"),
            "waitTime": payload.get("wait_time"),
            "status": payload.get("status"),
            "lastUpdatedAt": payload.get("last_updated_at"),
            "verifiedCount": payload.get("verified_count"),
            "lat": payload.get("lat"),
            "lon": payload.get("lon"),
            "seating": payload.get("seating"),
            "seatingLastUpdatedAt": payload.get("seating_last_updated_at"),
            "seatingVerifiedCount": payload.get("seating_verified_count"),
            "opensAt": payload.get("opens_at"),
            "closesAt": payload.get("closes_at"),
            "menuItems": [
                {
                    "id": item.get("item_id"),
                    "name": item.get("name"),
                    "category": item.get("category"),
                    "rating": item.get("rating"),
                    "reviewCount": item.get("review_count"),
                }
                for item in payload.get("menu_items") or []
            ],
        },
        hall_id=str(payload["hall_id"]),
    )


class ApiStoreGateway:
    """Client-facing store writes against the HTTP API.

    ``session`` defaults to a ``requests.Session``; any object exposing the
    same ``request`` signature (for example a FastAPI ``TestClient``) works.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[Any] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = (base_url or self._settings.api_base_url).rstrip("/")
        self._timeout = (
            timeout_seconds if timeout_seconds is not None else self._settings.api_timeout_seconds
        )
        self._session = session or requests.Session()
        self._listeners: list[Callable[[DiningHall], None]] = []

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("Store request failed | method=%s | url=%s | error=%s", method, url, exc)
            raise StoreError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            logger.warning(
                "Store request rejected | method=%s | url=%s | status_code=%s",
                method,
                url,
                response.status_code,
            )
            raise StoreError(f"{method} {path} failed with status {response.status_code}")
        return response.json()

    def list_halls(self) -> list[DiningHall]:
        payload = self._request("GET", "/halls")
        return [hall_from_payload(item) for item in payload]

    def get_hall(self, hall_id: str) -> DiningHall:
        return hall_from_payload(self._request("GET", f"/halls/{hall_id}"))

    def subscribe_halls(self, listener: Callable[[DiningHall], None]) -> Callable[[], None]:
        """Deliver halls returned by this gateway's own writes to ``listener``."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, hall: DiningHall) -> None:
        for listener in list(self._listeners):
            listener(hall)

    def apply_hall_update(self, update: HallUpdate) -> DiningHall:
        body: dict[str, Any] = {
            "updated_at": update.updated_at,
            "verified_increment": update.verified_increment,
            "seating_verified_increment": update.seating_verified_increment,
        }
        if update.wait_time is not None:
            body["wait_time"] = update.wait_time
        if update.seating is not None:
            body["seating"] = update.seating.value
        if update.status is not None:
            body["status"] = update.status.value
        hall = hall_from_payload(self._request("PATCH", f"/halls/{update.hall_id}", json=body))
        self._notify(hall)
        return hall

    def apply_item_rating(self, hall_id: str, item_id: str, stars: int) -> MenuItem:
        payload = self._request(
            "POST",
            f"/halls/{hall_id}/items/{item_id}/ratings",
            json={"stars": stars},
        )
        return MenuItem(
            item_id=str(payload["item_id"]),
            name=str(payload["name"]),
            category=str(payload.get("category") or ""),
            rating=float(payload["rating"]),
            review_count=int(payload["review_count"]),
        )

    def create_submission(self, submission: NewSubmission) -> str:
        body: dict[str, Any] = {
            "hall_id": submission.hall_id,
            "type": submission.submission_type,
            "value": submission.value,
            "created_at": submission.created_at,
            "uid": submission.uid,
            "client_identifier_hash": submission.client_identifier_hash,
        }
        if submission.location is not None:
            body["location"] = {
                "lat": submission.location.lat,
                "lon": submission.location.lon,
                "accuracy_meters": submission.location.accuracy_meters,
            }
        payload = self._request("POST", "/submissions", json=body)
        return str(payload["submission_id"])
