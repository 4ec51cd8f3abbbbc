"""Verdict summary over stored submission records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from forked.domain.models import SubmissionRecord, ValidationReason
from forked.repository.data_repository import DataRepository
from forked.utils.config import Settings, get_settings
from forked.utils.logger import get_logger


logger = get_logger(__name__)

UNKNOWN_KEY = "(missing)"


@dataclass(frozen=True)
class SubmissionAuditRow:
    hall_id: str
    submission_type: str
    total: int
    accepted: int
    rate_limited: int
    server_error: int
    missing_hall_or_type: int
    pending: int
    location_verified_rate: float


class SubmissionAuditService:
    """Aggregates verdicts per hall and submission type for operators."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def summarize(self, hall_id: Optional[str] = None) -> list[SubmissionAuditRow]:
        records = self._repository.list_submissions(hall_id=hall_id)
        frame = self._build_frame(records)
        if frame.empty:
            return []

        grouped = (
            frame.groupby(["hall_id", "submission_type"], sort=True)
            .agg(
                total=("submission_id", "count"),
                accepted=("accepted", "sum"),
                rate_limited=("rate_limited", "sum"),
                server_error=("server_error", "sum"),
                missing_hall_or_type=("missing_hall_or_type", "sum"),
                pending=("pending", "sum"),
                location_verified=("location_verified", "sum"),
            )
            .reset_index()
        )
        grouped["location_verified_rate"] = np.where(
            grouped["accepted"] > 0,
            grouped["location_verified"] / grouped["accepted"].clip(lower=1),
            0.0,
        )

        logger.info(
            "Submission audit computed | records=%s | groups=%s",
            len(frame),
            len(grouped),
        )
        return [
            SubmissionAuditRow(
                hall_id=str(row.hall_id),
                submission_type=str(row.submission_type),
                total=int(row.total),
                accepted=int(row.accepted),
                rate_limited=int(row.rate_limited),
                server_error=int(row.server_error),
                missing_hall_or_type=int(row.missing_hall_or_type),
                pending=int(row.pending),
                location_verified_rate=round(float(row.location_verified_rate), 4),
            )
            for row in grouped.itertuples(index=False)
        ]

    @staticmethod
    def _build_frame(records: list[SubmissionRecord]) -> pd.DataFrame:
        frame = pd.DataFrame(
            [
                {
                    "submission_id": record.submission_id,
                    "hall_id": record.hall_id or UNKNOWN_KEY,
                    "submission_type": record.submission_type or UNKNOWN_KEY,
                    "server_validated": record.server_validated,
                    "reason": record.server_validation_reason,
                    "location_verified": bool(record.location_verified),
                }
                for record in records
            ]
        )
        if frame.empty:
            return frame

        validated = frame["server_validated"]
        frame["pending"] = validated.isna().astype(int)
        frame["accepted"] = (validated == True).astype(int)  # noqa: E712
        for reason in ValidationReason:
            frame[reason.value] = (frame["reason"] == reason.value).astype(int)
        frame["location_verified"] = np.where(
            frame["accepted"] == 1,
            frame["location_verified"].astype(int),
            0,
        )
        return frame
