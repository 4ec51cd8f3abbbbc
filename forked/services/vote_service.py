"""Quorum-based aggregation of crowdsourced wait-time reports."""

from __future__ import annotations

from collections import defaultdict
from threading import RLock
from typing import Optional

from forked.domain.models import VoteOutcome, wait_time_label
from forked.services.hall_state_service import HallStateService, UnknownHallError
from forked.utils.logger import get_logger


logger = get_logger(__name__)


class VoteAggregator:
    """Publishes a wait time only after ``quorum`` matching reports.

    Pending counts are kept per hall and per reported minute value, in
    process memory only, together with the voters that queued them. A
    restart drops partial progress toward quorum.
    """

    def __init__(self, hall_state: HallStateService, quorum: int) -> None:
        if quorum < 1:
            raise ValueError("quorum must be >= 1")
        self._hall_state = hall_state
        self._quorum = quorum
        self._pending: dict[str, dict[int, int]] = defaultdict(dict)
        self._voters: dict[str, dict[int, set[str]]] = defaultdict(dict)
        self._lock = RLock()

    @property
    def quorum(self) -> int:
        return self._quorum

    def pending_count(self, hall_id: str, minutes: int) -> int:
        with self._lock:
            return self._pending.get(hall_id, {}).get(minutes, 0)

    def has_pending_votes(self, hall_id: str, voter: Optional[str] = None) -> bool:
        """Whether the hall has uncommitted votes, optionally queued by ``voter``."""
        with self._lock:
            buckets = self._pending.get(hall_id, {})
            if voter is None:
                return any(count > 0 for count in buckets.values())
            voters = self._voters.get(hall_id, {})
            return any(
                count > 0 and voter in voters.get(minutes, ())
                for minutes, count in buckets.items()
            )

    def submit_vote(
        self,
        hall_id: str,
        minutes: int,
        now: float,
        voter: Optional[str] = None,
    ) -> VoteOutcome:
        with self._lock:
            if self._hall_state.get_hall(hall_id) is None:
                raise UnknownHallError(f"hall_id {hall_id} not found")

            buckets = self._pending[hall_id]
            count = buckets.get(minutes, 0) + 1

            if count < self._quorum:
                buckets[minutes] = count
                if voter is not None:
                    self._voters[hall_id].setdefault(minutes, set()).add(voter)
                remaining = self._quorum - count
                logger.info(
                    "Wait vote queued | hall_id=%s | minutes=%s | count=%s | votes_remaining=%s",
                    hall_id,
                    minutes,
                    count,
                    remaining,
                )
                return VoteOutcome(
                    committed=False,
                    message=(
                        f"Thanks! Waiting for {remaining} more matching "
                        f"report{'s' if remaining != 1 else ''} to confirm {minutes} min."
                    ),
                    votes_remaining=remaining,
                )

            buckets[minutes] = 0
            self._voters[hall_id].pop(minutes, None)
            label = wait_time_label(minutes)
            update = self._hall_state.apply_wait_time(
                hall_id,
                label,
                now,
                verified_increment=self._quorum,
            )
            logger.info(
                "Wait time committed | hall_id=%s | minutes=%s | wait_time=%s",
                hall_id,
                minutes,
                label,
            )
            return VoteOutcome(
                committed=True,
                message=None,
                wait_time_label=label,
                hall_update=update,
            )
