"""HTTP controller layer for operator login and submission audits."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from forked.controllers.dependencies import get_audit_service, get_auth_service, require_admin
from forked.services.audit_service import SubmissionAuditService
from forked.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from forked.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["admin"])


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuditRowResponse(BaseModel):
    hall_id: str
    submission_type: str
    total: int = Field(ge=0)
    accepted: int = Field(ge=0)
    rate_limited: int = Field(ge=0)
    server_error: int = Field(ge=0)
    missing_hall_or_type: int = Field(ge=0)
    pending: int = Field(ge=0)
    location_verified_rate: float = Field(ge=0.0, le=1.0)


class AuditResponse(BaseModel):
    rows: list[AuditRowResponse]


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.admin_token)
        return LoginResponse(access_token=bearer)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc


@router.get(
    "/audit/submissions",
    response_model=AuditResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def audit_submissions(
    hall_id: str | None = Query(default=None, min_length=1),
    audit_service: SubmissionAuditService = Depends(get_audit_service),
) -> AuditResponse:
    try:
        rows = audit_service.summarize(hall_id=hall_id)
        return AuditResponse(
            rows=[
                AuditRowResponse(
                    hall_id=row.hall_id,
                    submission_type=row.submission_type,
                    total=row.total,
                    accepted=row.accepted,
                    rate_limited=row.rate_limited,
                    server_error=row.server_error,
                    missing_hall_or_type=row.missing_hall_or_type,
                    pending=row.pending,
                    location_verified_rate=row.location_verified_rate,
                )
                for row in rows
            ]
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected audit failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build submission audit",
        ) from exc
