"""Repository layer responsible for all shared-store access."""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Callable, Iterator, List, Optional

from forked.domain.models import (
    Coordinate,
    DiningHall,
    HallStatus,
    HallUpdate,
    MenuItem,
    NewSubmission,
    ReporterLocation,
    SeatingLevel,
    SubmissionRecord,
    ValidationReason,
)
from forked.utils.config import Settings, get_settings
from forked.utils.logger import get_logger


logger = get_logger(__name__)

HallListener = Callable[[DiningHall], None]


class StoreError(RuntimeError):
    """Raised when a read or write against the shared store fails."""


class HallNotFoundError(StoreError):
    """Raised when a hall id does not exist in the store."""


class MenuItemNotFoundError(StoreError):
    """Raised when a menu item id does not exist for a hall."""


DEMO_HALLS: tuple[DiningHall, ...] = (
    DiningHall(
        hall_id="north-ave",
        name="North Ave",
        wait_time="5-10 min",
        status=HallStatus.OPEN,
        verified_count=142,
        lat=33.7712846105461,
        lon=-84.39142581349368,
        seating=SeatingLevel.SOME,
        seating_verified_count=34,
        opens_at="7am",
        closes_at="8pm",
        menu_items=(
            MenuItem(item_id="na-pizza", name="Pepperoni Pizza", category="Entree"),
            MenuItem(item_id="na-salad", name="Garden Salad", category="Salad Bar"),
        ),
    ),
    DiningHall(
        hall_id="brittain",
        name="Brittain",
        wait_time="Closed",
        status=HallStatus.UNKNOWN,
        verified_count=89,
        lat=33.77266789537731,
        lon=-84.39129365983848,
        opens_at="11am",
        closes_at="8pm",
        menu_items=(
            MenuItem(item_id="br-pasta", name="Pasta Primavera", category="Entree"),
        ),
    ),
    DiningHall(
        hall_id="willage",
        name="West Village",
        wait_time="5-10 min",
        status=HallStatus.OPEN,
        verified_count=5,
        lat=33.77982273684821,
        lon=-84.40470500216735,
        seating=SeatingLevel.PACKED,
        seating_verified_count=2,
        opens_at="8am",
        closes_at="11pm",
        menu_items=(
            MenuItem(item_id="wv-stirfry", name="Veggie Stir Fry", category="Wok"),
            MenuItem(item_id="wv-soup", name="Tomato Soup", category="Soup"),
        ),
    ),
)


class StoreTransaction:
    """Read-then-write operations bound to one open store transaction."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def get_marker_last(self, marker_id: str) -> Optional[float]:
        row = self._connection.execute(
            "SELECT last FROM SubmissionMarkers WHERE id = ?;",
            (marker_id,),
        ).fetchone()
        if row is None or row["last"] is None:
            return None
        return float(row["last"])

    def set_marker_last(self, marker_id: str, last: float) -> None:
        self._connection.execute(
            """
            INSERT INTO SubmissionMarkers (id, last)
            VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET last = excluded.last;
            """,
            (marker_id, last),
        )

    def get_hall_coordinate(self, hall_id: str) -> Optional[Coordinate]:
        row = self._connection.execute(
            "SELECT lat, lon FROM Halls WHERE id = ?;",
            (hall_id,),
        ).fetchone()
        if row is None or row["lat"] is None or row["lon"] is None:
            return None
        return Coordinate(lat=float(row["lat"]), lon=float(row["lon"]))

    def write_verdict(
        self,
        submission_id: str,
        *,
        server_validated: bool,
        reason: Optional[ValidationReason],
        validated_at: float,
        location_verified: Optional[bool] = None,
    ) -> None:
        _write_verdict(
            self._connection,
            submission_id,
            server_validated=server_validated,
            reason=reason,
            validated_at=validated_at,
            location_verified=location_verified,
        )


def _write_verdict(
    connection: sqlite3.Connection,
    submission_id: str,
    *,
    server_validated: bool,
    reason: Optional[ValidationReason],
    validated_at: float,
    location_verified: Optional[bool],
) -> None:
    reason_value = reason.value if reason is not None else None
    if location_verified is None:
        connection.execute(
            """
            UPDATE Submissions
            SET server_validated = ?,
                server_validation_reason = ?,
                server_validated_at = ?
            WHERE id = ?;
            """,
            (int(server_validated), reason_value, validated_at, submission_id),
        )
        return
    connection.execute(
        """
        UPDATE Submissions
        SET server_validated = ?,
            server_validation_reason = ?,
            server_validated_at = ?,
            location_verified = ?
        WHERE id = ?;
        """,
        (
            int(server_validated),
            reason_value,
            validated_at,
            int(location_verified),
            submission_id,
        ),
    )


def _optional_bool(value: object) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._listeners: list[HallListener] = []
        self._listeners_lock = RLock()

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Halls (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        lat REAL,
                        lon REAL,
                        wait_time TEXT NOT NULL DEFAULT 'Unknown',
                        status TEXT NOT NULL DEFAULT 'unknown',
                        last_updated_at REAL,
                        verified_count INTEGER NOT NULL DEFAULT 0,
                        seating TEXT,
                        seating_last_updated_at REAL,
                        seating_verified_count INTEGER NOT NULL DEFAULT 0,
                        opens_at TEXT,
                        closes_at TEXT
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS MenuItems (
                        id TEXT NOT NULL,
                        hall_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        category TEXT NOT NULL DEFAULT '',
                        rating REAL NOT NULL DEFAULT 0,
                        review_count INTEGER NOT NULL DEFAULT 0,
                        PRIMARY KEY (hall_id, id),
                        FOREIGN KEY (hall_id) REFERENCES Halls(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Submissions (
                        id TEXT PRIMARY KEY,
                        hall_id TEXT,
                        type TEXT,
                        uid TEXT,
                        client_identifier_hash TEXT,
                        value TEXT,
                        location_lat REAL,
                        location_lon REAL,
                        location_accuracy_meters REAL,
                        created_at REAL NOT NULL,
                        server_validated INTEGER,
                        server_validation_reason TEXT,
                        server_validated_at REAL,
                        location_verified INTEGER
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS SubmissionMarkers (
                        id TEXT PRIMARY KEY,
                        last REAL NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_submissions_hall_type
                    ON Submissions(hall_id, type);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Database initialization failed: {exc}") from exc

    def seed_demo_halls(self) -> int:
        """Insert the demo halls only when the Halls table is empty."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Halls;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Hall data already present; skipping seed")
                    return 0

                cursor.executemany(
                    """
                    INSERT INTO Halls (
                        id, name, lat, lon, wait_time, status, verified_count,
                        seating, seating_verified_count, opens_at, closes_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    [
                        (
                            hall.hall_id,
                            hall.name,
                            hall.lat,
                            hall.lon,
                            hall.wait_time,
                            hall.status.value,
                            hall.verified_count,
                            hall.seating.value if hall.seating is not None else None,
                            hall.seating_verified_count,
                            hall.opens_at,
                            hall.closes_at,
                        )
                        for hall in DEMO_HALLS
                    ],
                )
                cursor.executemany(
                    """
                    INSERT INTO MenuItems (id, hall_id, name, category)
                    VALUES (?, ?, ?, ?);
                    """,
                    [
                        (item.item_id, hall.hall_id, item.name, item.category)
                        for hall in DEMO_HALLS
                        for item in hall.menu_items
                    ],
                )
                conn.commit()
            logger.info("Demo hall seed completed with %s halls", len(DEMO_HALLS))
            return len(DEMO_HALLS)
        except sqlite3.Error as exc:
            raise StoreError(f"Demo hall seeding failed: {exc}") from exc

    def upsert_hall(self, hall: DiningHall) -> None:
        """Write a full hall document, replacing any existing one."""
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO Halls (
                        id, name, lat, lon, wait_time, status, last_updated_at,
                        verified_count, seating, seating_last_updated_at,
                        seating_verified_count, opens_at, closes_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        lat = excluded.lat,
                        lon = excluded.lon,
                        wait_time = excluded.wait_time,
                        status = excluded.status,
                        last_updated_at = excluded.last_updated_at,
                        verified_count = excluded.verified_count,
                        seating = excluded.seating,
                        seating_last_updated_at = excluded.seating_last_updated_at,
                        seating_verified_count = excluded.seating_verified_count,
                        opens_at = excluded.opens_at,
                        closes_at = excluded.closes_at;
                    """,
                    (
                        hall.hall_id,
                        hall.name,
                        hall.lat,
                        hall.lon,
                        hall.wait_time,
                        hall.status.value,
                        hall.last_updated_at,
                        hall.verified_count,
                        hall.seating.value if hall.seating is not None else None,
                        hall.seating_last_updated_at,
                        hall.seating_verified_count,
                        hall.opens_at,
                        hall.closes_at,
                    ),
                )
                conn.execute("DELETE FROM MenuItems WHERE hall_id = ?;", (hall.hall_id,))
                conn.executemany(
                    """
                    INSERT INTO MenuItems (id, hall_id, name, category, rating, review_count)
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    [
                        (
                            item.item_id,
                            hall.hall_id,
                            item.name,
                            item.category,
                            item.rating,
                            item.review_count,
                        )
                        for item in hall.menu_items
                    ],
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Hall upsert failed: {exc}") from exc
        self._notify_hall_changed(hall.hall_id)

    def get_hall(self, hall_id: str) -> Optional[DiningHall]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM Halls WHERE id = ?;", (hall_id,)).fetchone()
            if row is None:
                return None
            items = conn.execute(
                "SELECT * FROM MenuItems WHERE hall_id = ? ORDER BY id ASC;",
                (hall_id,),
            ).fetchall()
            return self._row_to_hall(row, items)

    def list_halls(self) -> List[DiningHall]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM Halls ORDER BY name ASC;").fetchall()
            item_rows = conn.execute(
                "SELECT * FROM MenuItems ORDER BY hall_id ASC, id ASC;"
            ).fetchall()
        items_by_hall: dict[str, list[sqlite3.Row]] = {}
        for item in item_rows:
            items_by_hall.setdefault(str(item["hall_id"]), []).append(item)
        return [
            self._row_to_hall(row, items_by_hall.get(str(row["id"]), []))
            for row in rows
        ]

    @staticmethod
    def _row_to_hall(row: sqlite3.Row, item_rows: list[sqlite3.Row]) -> DiningHall:
        return DiningHall(
            hall_id=str(row["id"]),
            name=str(row["name"]),
            wait_time=str(row["wait_time"]),
            status=HallStatus(row["status"]),
            last_updated_at=row["last_updated_at"],
            verified_count=int(row["verified_count"]),
            lat=row["lat"],
            lon=row["lon"],
            seating=SeatingLevel(row["seating"]) if row["seating"] else None,
            seating_last_updated_at=row["seating_last_updated_at"],
            seating_verified_count=int(row["seating_verified_count"]),
            opens_at=row["opens_at"],
            closes_at=row["closes_at"],
            menu_items=tuple(
                MenuItem(
                    item_id=str(item["id"]),
                    name=str(item["name"]),
                    category=str(item["category"]),
                    rating=float(item["rating"]),
                    review_count=int(item["review_count"]),
                )
                for item in item_rows
            ),
        )

    def apply_hall_update(self, update: HallUpdate) -> DiningHall:
        """Merge a client commit into the hall row; counters are incremented."""
        assignments: list[str] = []
        params: list[object] = []
        if update.wait_time is not None:
            assignments.append("wait_time = ?")
            assignments.append("last_updated_at = ?")
            params.extend([update.wait_time, update.updated_at])
        if update.seating is not None:
            assignments.append("seating = ?")
            assignments.append("seating_last_updated_at = ?")
            params.extend([update.seating.value, update.updated_at])
        if update.status is not None:
            assignments.append("status = ?")
            params.append(update.status.value)
        if update.verified_increment:
            assignments.append("verified_count = verified_count + ?")
            params.append(update.verified_increment)
        if update.seating_verified_increment:
            assignments.append("seating_verified_count = seating_verified_count + ?")
            params.append(update.seating_verified_increment)

        try:
            with self._connect() as conn:
                if assignments:
                    cursor = conn.execute(
                        f"UPDATE Halls SET {', '.join(assignments)} WHERE id = ?;",
                        (*params, update.hall_id),
                    )
                    if cursor.rowcount == 0:
                        raise HallNotFoundError(f"hall_id {update.hall_id} not found")
                    conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Hall update failed: {exc}") from exc

        hall = self.get_hall(update.hall_id)
        if hall is None:
            raise HallNotFoundError(f"hall_id {update.hall_id} not found")
        self._notify(hall)
        return hall

    def apply_item_rating(self, hall_id: str, item_id: str, stars: int) -> MenuItem:
        """Fold one rating into the item's running average atomically."""
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE MenuItems
                    SET rating = (rating * review_count + ?) / (review_count + 1),
                        review_count = review_count + 1
                    WHERE hall_id = ? AND id = ?;
                    """,
                    (stars, hall_id, item_id),
                )
                if cursor.rowcount == 0:
                    raise MenuItemNotFoundError(
                        f"menu item {item_id} not found in hall {hall_id}"
                    )
                conn.commit()
                row = conn.execute(
                    "SELECT * FROM MenuItems WHERE hall_id = ? AND id = ?;",
                    (hall_id, item_id),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Item rating failed: {exc}") from exc
        self._notify_hall_changed(hall_id)
        return MenuItem(
            item_id=str(row["id"]),
            name=str(row["name"]),
            category=str(row["category"]),
            rating=float(row["rating"]),
            review_count=int(row["review_count"]),
        )

    def subscribe_halls(self, listener: HallListener) -> Callable[[], None]:
        """Register a realtime hall-change listener; returns an unsubscribe hook."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify_hall_changed(self, hall_id: str) -> None:
        hall = self.get_hall(hall_id)
        if hall is not None:
            self._notify(hall)

    def _notify(self, hall: DiningHall) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(hall)
            except Exception:
                logger.exception("Hall listener failed | hall_id=%s", hall.hall_id)

    def create_submission(self, submission: NewSubmission) -> str:
        """Insert an append-only submission record and return its id."""
        submission_id = uuid.uuid4().hex
        location = submission.location
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO Submissions (
                        id, hall_id, type, uid, client_identifier_hash, value,
                        location_lat, location_lon, location_accuracy_meters, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        submission_id,
                        submission.hall_id,
                        submission.submission_type,
                        submission.uid,
                        submission.client_identifier_hash,
                        submission.value,
                        location.lat if location is not None else None,
                        location.lon if location is not None else None,
                        location.accuracy_meters if location is not None else None,
                        submission.created_at,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Submission insert failed: {exc}") from exc
        logger.info(
            "Submission created | submission_id=%s | hall_id=%s | type=%s",
            submission_id,
            submission.hall_id,
            submission.submission_type,
        )
        return submission_id

    def get_submission(self, submission_id: str) -> Optional[SubmissionRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM Submissions WHERE id = ?;",
                (submission_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_submission(row)

    def list_submissions(self, hall_id: Optional[str] = None) -> List[SubmissionRecord]:
        with self._connect() as conn:
            if hall_id is None:
                rows = conn.execute(
                    "SELECT * FROM Submissions ORDER BY created_at ASC, id ASC;"
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM Submissions
                    WHERE hall_id = ?
                    ORDER BY created_at ASC, id ASC;
                    """,
                    (hall_id,),
                ).fetchall()
        return [self._row_to_submission(row) for row in rows]

    def _row_to_submission(self, row: sqlite3.Row) -> SubmissionRecord:
        location = None
        if row["location_lat"] is not None and row["location_lon"] is not None:
            location = ReporterLocation(
                lat=float(row["location_lat"]),
                lon=float(row["location_lon"]),
                accuracy_meters=(
                    float(row["location_accuracy_meters"])
                    if row["location_accuracy_meters"] is not None
                    else self._settings.missing_accuracy_meters
                ),
            )
        return SubmissionRecord(
            submission_id=str(row["id"]),
            hall_id=row["hall_id"],
            submission_type=row["type"],
            value=row["value"],
            created_at=float(row["created_at"]),
            uid=row["uid"],
            client_identifier_hash=row["client_identifier_hash"],
            location=location,
            server_validated=_optional_bool(row["server_validated"]),
            server_validation_reason=row["server_validation_reason"],
            server_validated_at=row["server_validated_at"],
            location_verified=_optional_bool(row["location_verified"]),
        )

    def count_submissions(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute("SELECT COUNT(*) AS count FROM Submissions;")
            return int(cursor.fetchone()["count"])

    def get_marker_last(self, marker_id: str) -> Optional[float]:
        """Read a cooldown marker outside any transaction (diagnostics only)."""
        with self._connect() as conn:
            return StoreTransaction(conn).get_marker_last(marker_id)

    def update_submission_verdict(
        self,
        submission_id: str,
        *,
        server_validated: bool,
        reason: Optional[ValidationReason],
        validated_at: float,
    ) -> None:
        """Stamp a verdict outside a transaction (terminal, best effort)."""
        try:
            with self._connect() as conn:
                _write_verdict(
                    conn,
                    submission_id,
                    server_validated=server_validated,
                    reason=reason,
                    validated_at=validated_at,
                    location_verified=None,
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Verdict update failed: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Open a write transaction holding SQLite's reserved lock.

        ``BEGIN IMMEDIATE`` makes concurrent transactions serialize before
        their first read, so two racing read-check-write sequences on the
        same marker can never both observe it absent.
        """
        connection = self._connect()
        connection.isolation_level = None
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield StoreTransaction(connection)
            except BaseException:
                if connection.in_transaction:
                    connection.execute("ROLLBACK;")
                raise
            connection.execute("COMMIT;")
        finally:
            connection.close()
