"""HTTP controller layer for submission records and their verdicts."""

from __future__ import annotations

import time

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from forked.controllers.dependencies import get_repository, get_validation_service, require_admin
from forked.domain.models import NewSubmission, ReporterLocation, SubmissionRecord
from forked.repository.data_repository import DataRepository, StoreError
from forked.services.validation_service import (
    SubmissionNotFoundError,
    SubmissionValidationService,
)
from forked.utils.config import get_settings
from forked.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["submissions"])


class LocationPayload(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)
    accuracy_meters: float | None = None


class SubmissionCreateRequest(BaseModel):
    """Raw record as written by clients; validity is judged asynchronously."""

    hall_id: str | None = None
    type: str | None = None
    value: str | None = None
    created_at: float | None = Field(default=None, gt=0.0)
    uid: str | None = None
    client_identifier_hash: str | None = None
    location: LocationPayload | None = None

    @field_validator("uid", "client_identifier_hash")
    @classmethod
    def blank_identity_is_absent(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value


class SubmissionCreatedResponse(BaseModel):
    submission_id: str


class LocationResponse(BaseModel):
    lat: float
    lon: float
    accuracy_meters: float


class SubmissionResponse(BaseModel):
    submission_id: str
    hall_id: str | None = None
    type: str | None = None
    value: str | None = None
    created_at: float
    uid: str | None = None
    client_identifier_hash: str | None = None
    location: LocationResponse | None = None
    server_validated: bool | None = None
    server_validation_reason: str | None = None
    server_validated_at: float | None = None
    location_verified: bool | None = None


class VerdictResponse(BaseModel):
    submission_id: str
    server_validated: bool
    server_validation_reason: str | None = None
    server_validated_at: float
    location_verified: bool | None = None


def _to_submission_response(record: SubmissionRecord) -> SubmissionResponse:
    location = None
    if record.location is not None:
        location = LocationResponse(
            lat=record.location.lat,
            lon=record.location.lon,
            accuracy_meters=record.location.accuracy_meters,
        )
    return SubmissionResponse(
        submission_id=record.submission_id,
        hall_id=record.hall_id,
        type=record.submission_type,
        value=record.value,
        created_at=record.created_at,
        uid=record.uid,
        client_identifier_hash=record.client_identifier_hash,
        location=location,
        server_validated=record.server_validated,
        server_validation_reason=record.server_validation_reason,
        server_validated_at=record.server_validated_at,
        location_verified=record.location_verified,
    )


def _run_validation(service: SubmissionValidationService, submission_id: str) -> None:
    try:
        service.validate(submission_id)
    except (SubmissionNotFoundError, StoreError):
        logger.exception("Background validation failed | submission_id=%s", submission_id)


@router.post(
    "/submissions",
    response_model=SubmissionCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_submission(
    payload: SubmissionCreateRequest,
    background_tasks: BackgroundTasks,
    repository: DataRepository = Depends(get_repository),
    validation_service: SubmissionValidationService = Depends(get_validation_service),
) -> SubmissionCreatedResponse:
    """Store the record, then validate it once the response is sent."""
    location = None
    if payload.location is not None:
        location = ReporterLocation(
            lat=payload.location.lat,
            lon=payload.location.lon,
            accuracy_meters=(
                payload.location.accuracy_meters
                if payload.location.accuracy_meters is not None
                else settings.missing_accuracy_meters
            ),
        )
    try:
        submission_id = repository.create_submission(
            NewSubmission(
                hall_id=payload.hall_id,
                submission_type=payload.type,
                value=payload.value,
                created_at=payload.created_at or time.time(),
                uid=payload.uid,
                client_identifier_hash=payload.client_identifier_hash,
                location=location,
            )
        )
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected submission create failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create submission",
        ) from exc

    background_tasks.add_task(_run_validation, validation_service, submission_id)
    return SubmissionCreatedResponse(submission_id=submission_id)


@router.get(
    "/submissions/{submission_id}",
    response_model=SubmissionResponse,
    status_code=status.HTTP_200_OK,
)
async def get_submission(
    submission_id: str,
    repository: DataRepository = Depends(get_repository),
) -> SubmissionResponse:
    record = repository.get_submission(submission_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"submission_id {submission_id} not found",
        )
    return _to_submission_response(record)


@router.post(
    "/submissions/{submission_id}/revalidate",
    response_model=VerdictResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def revalidate_submission(
    submission_id: str,
    validation_service: SubmissionValidationService = Depends(get_validation_service),
) -> VerdictResponse:
    """Redeliver the create trigger for one record."""
    try:
        verdict = validation_service.validate(submission_id)
        return VerdictResponse(
            submission_id=verdict.submission_id,
            server_validated=verdict.server_validated,
            server_validation_reason=verdict.reason.value if verdict.reason is not None else None,
            server_validated_at=verdict.validated_at,
            location_verified=verdict.location_verified,
        )
    except SubmissionNotFoundError as exc:
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
        logger.exception("Unexpected revalidation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to revalidate submission",
        ) from exc
