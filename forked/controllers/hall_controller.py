"""HTTP controller layer for hall documents."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from forked.controllers.dependencies import get_repository
from forked.domain.models import DiningHall, HallStatus, HallUpdate, MenuItem, SeatingLevel
from forked.repository.data_repository import (
    DataRepository,
    HallNotFoundError,
    MenuItemNotFoundError,
    StoreError,
)
from forked.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["halls"])


class MenuItemResponse(BaseModel):
    item_id: str
    name: str
    category: str = ""
    rating: float = Field(ge=0.0, le=5.0)
    review_count: int = Field(ge=0)


class HallResponse(BaseModel):
    hall_id: str
    name: str
    wait_time: str
    status: HallStatus
    last_updated_at: float | None = None
    verified_count: int = Field(ge=0)
    lat: float | None = None
    lon: float | None = None
    seating: SeatingLevel | None = None
    seating_last_updated_at: float | None = None
    seating_verified_count: int = Field(ge=0)
    opens_at: str | None = None
    closes_at: str | None = None
    menu_items: list[MenuItemResponse] = Field(default_factory=list)


class HallUpdateRequest(BaseModel):
    """Client commit; counters are increments, never absolute values."""

    updated_at: float = Field(gt=0.0)
    wait_time: str | None = Field(default=None, min_length=1)
    seating: SeatingLevel | None = None
    status: HallStatus | None = None
    verified_increment: int = Field(default=0, ge=0)
    seating_verified_increment: int = Field(default=0, ge=0)


class ItemRatingRequest(BaseModel):
    stars: int = Field(ge=1, le=5)


def _to_menu_item_response(item: MenuItem) -> MenuItemResponse:
    return MenuItemResponse(
        item_id=item.item_id,
        name=item.name,
        category=item.category,
        rating=item.rating,
        review_count=item.review_count,
    )


def to_hall_response(hall: DiningHall) -> HallResponse:
    return HallResponse(
        hall_id=hall.hall_id,
        name=hall.name,
        wait_time=hall.wait_time,
        status=hall.status,
        last_updated_at=hall.last_updated_at,
        verified_count=hall.verified_count,
        lat=hall.lat,
        lon=hall.lon,
        seating=hall.seating,
        seating_last_updated_at=hall.seating_last_updated_at,
        seating_verified_count=hall.seating_verified_count,
        opens_at=hall.opens_at,
        closes_at=hall.closes_at,
        menu_items=[_to_menu_item_response(item) for item in hall.menu_items],
    )


@router.get("/halls", response_model=list[HallResponse], status_code=status.HTTP_200_OK)
async def list_halls(
    repository: DataRepository = Depends(get_repository),
) -> list[HallResponse]:
    return [to_hall_response(hall) for hall in repository.list_halls()]


@router.get("/halls/{hall_id}", response_model=HallResponse, status_code=status.HTTP_200_OK)
async def get_hall(
    hall_id: str,
    repository: DataRepository = Depends(get_repository),
) -> HallResponse:
    hall = repository.get_hall(hall_id)
    if hall is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"hall_id {hall_id} not found",
        )
    return to_hall_response(hall)


@router.patch("/halls/{hall_id}", response_model=HallResponse, status_code=status.HTTP_200_OK)
async def update_hall(
    hall_id: str,
    payload: HallUpdateRequest,
    repository: DataRepository = Depends(get_repository),
) -> HallResponse:
    """Merge a client-side commit into the shared hall document."""
    try:
        hall = repository.apply_hall_update(
            HallUpdate(
                hall_id=hall_id,
                updated_at=payload.updated_at,
                wait_time=payload.wait_time,
                seating=payload.seating,
                status=payload.status,
                verified_increment=payload.verified_increment,
                seating_verified_increment=payload.seating_verified_increment,
            )
        )
        return to_hall_response(hall)
    except HallNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected hall update failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update hall",
        ) from exc


@router.post(
    "/halls/{hall_id}/items/{item_id}/ratings",
    response_model=MenuItemResponse,
    status_code=status.HTTP_200_OK,
)
async def rate_item(
    hall_id: str,
    item_id: str,
    payload: ItemRatingRequest,
    repository: DataRepository = Depends(get_repository),
) -> MenuItemResponse:
    try:
        item = repository.apply_item_rating(hall_id, item_id, payload.stars)
        return _to_menu_item_response(item)
    except MenuItemNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected item rating failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to rate item",
        ) from exc
