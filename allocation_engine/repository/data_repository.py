"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Union

from allocation_engine.domain.errors import TransientConflictError
from allocation_engine.domain.models import (
    STATUS_APPROVED,
    STATUS_PENDING,
    AllocationRequest,
    ApprovedPairing,
    CompatibilityResult,
    HousingUnit,
    Resident,
    Room,
    TraitBundle,
)
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger


logger = get_logger(__name__)

_TRANSIENT_MARKERS = ("locked", "busy")

_REQUEST_COLUMNS = """
    id,
    resident_id,
    session_label,
    status,
    room_id,
    compatibility_score,
    compatibility_range,
    auto_paired,
    allocated_at,
    created_at
"""

_PEER_REQUEST_COLUMNS = ", ".join(
    f"ar.{column.strip()}" for column in _REQUEST_COLUMNS.split(",")
)

_ROOM_SELECT = """
    SELECT r.id, r.unit_id, r.room_number, r.capacity, r.occupied, u.unit_type
    FROM Rooms AS r
    INNER JOIN HousingUnits AS u ON u.id = r.unit_id
"""


class UniqueViolationError(Exception):
    """Raised when an insert or update breaks a UNIQUE constraint."""


def utc_now_iso(moment: Optional[datetime] = None) -> str:
    """Fixed-width UTC timestamp so that text comparison follows time order."""
    value = moment or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _is_transient(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as exc:
        if _is_transient(exc):
            raise TransientConflictError(f"Database conflict: {exc}") from exc
        raise
    except sqlite3.IntegrityError as exc:
        if "UNIQUE" in str(exc).upper():
            raise UniqueViolationError(str(exc)) from exc
        raise


def _row_to_request(row: sqlite3.Row) -> AllocationRequest:
    return AllocationRequest(
        request_id=int(row["id"]),
        resident_id=int(row["resident_id"]),
        session_label=str(row["session_label"]),
        status=str(row["status"]),
        room_id=int(row["room_id"]) if row["room_id"] is not None else None,
        compatibility_score=(
            int(row["compatibility_score"]) if row["compatibility_score"] is not None else None
        ),
        compatibility_range=row["compatibility_range"],
        auto_paired=bool(row["auto_paired"]),
        allocated_at=row["allocated_at"],
        created_at=str(row["created_at"]),
    )


def _row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        room_id=int(row["id"]),
        unit_id=int(row["unit_id"]),
        room_number=str(row["room_number"]),
        capacity=int(row["capacity"]),
        occupied=int(row["occupied"]),
        unit_type=str(row["unit_type"]),
    )


def _row_to_resident(row: sqlite3.Row) -> Resident:
    return Resident(
        resident_id=int(row["id"]),
        full_name=str(row["full_name"]),
        gender=str(row["gender"]),
        traits=TraitBundle.from_mapping(json.loads(row["personality_traits"] or "{}")),
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Workflow methods take the ``conn`` yielded by :meth:`transaction` so that
    every read feeding a decision and the write that follows it share one
    ``BEGIN IMMEDIATE`` unit of work. Lookup helpers accept an optional
    ``conn`` and open a short-lived autocommit connection otherwise.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
            isolation_level=None,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with _translate_errors():
            connection = self._connect()
            try:
                yield connection
            finally:
                connection.close()

    @contextmanager
    def _use(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self._connection() as own:
            yield own

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed block as one write-locked, all-or-nothing unit."""
        with _translate_errors():
            connection = self._connect()
            try:
                connection.execute("BEGIN IMMEDIATE;")
                try:
                    yield connection
                except BaseException:
                    if connection.in_transaction:
                        connection.execute("ROLLBACK;")
                    raise
                connection.execute("COMMIT;")
            finally:
                connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before the engine starts."""
        try:
            with self._connection() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Residents (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        full_name TEXT NOT NULL,
                        gender TEXT NOT NULL CHECK (gender IN ('male', 'female')),
                        personality_traits TEXT NOT NULL DEFAULT '{}',
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS HousingUnits (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        unit_type TEXT NOT NULL CHECK (unit_type IN ('male', 'female')),
                        capacity INTEGER NOT NULL CHECK (capacity > 0)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Rooms (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        unit_id INTEGER NOT NULL,
                        room_number TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        occupied INTEGER NOT NULL DEFAULT 0,
                        FOREIGN KEY (unit_id) REFERENCES HousingUnits(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AllocationRequests (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resident_id INTEGER NOT NULL,
                        session_label TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'approved', 'rejected')),
                        room_id INTEGER,
                        compatibility_score INTEGER,
                        compatibility_range TEXT
                            CHECK (compatibility_range IN ('veryHigh', 'high', 'moderate', 'low')),
                        match_breakdown TEXT,
                        auto_paired INTEGER NOT NULL DEFAULT 0,
                        allocated_at TEXT,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (resident_id) REFERENCES Residents(id),
                        FOREIGN KEY (room_id) REFERENCES Rooms(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS FairnessCursor (
                        id INTEGER PRIMARY KEY CHECK (id = 1),
                        last_index INTEGER NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ApprovedPairings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resident_a_id INTEGER NOT NULL,
                        resident_b_id INTEGER NOT NULL,
                        approved_by INTEGER NOT NULL,
                        approved_at TEXT NOT NULL,
                        weight_snapshot TEXT NOT NULL DEFAULT '{}',
                        UNIQUE (resident_a_id, resident_b_id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE UNIQUE INDEX IF NOT EXISTS ux_requests_resident_session_active
                    ON AllocationRequests(resident_id, session_label)
                    WHERE status != 'rejected';
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_requests_status_room_created
                    ON AllocationRequests(status, room_id, created_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_rooms_unit
                    ON Rooms(unit_id);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_housing(self) -> None:
        """Seed a small housing inventory only when no units exist yet."""
        units = [
            ("Aurora Hall", "male", 40, [("A101", 4), ("A102", 4), ("A103", 2)]),
            ("Birch Hall", "male", 40, [("B101", 4), ("B102", 2)]),
            ("Cedar Hall", "female", 40, [("C101", 4), ("C102", 4), ("C103", 2)]),
            ("Dune Hall", "female", 40, [("D101", 4), ("D102", 2)]),
        ]
        try:
            with self.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM HousingUnits;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Housing inventory already present; skipping seed")
                    return

                room_count = 0
                for name, unit_type, capacity, rooms in units:
                    cursor.execute(
                        "INSERT INTO HousingUnits (name, unit_type, capacity) VALUES (?, ?, ?);",
                        (name, unit_type, capacity),
                    )
                    unit_id = int(cursor.lastrowid)
                    cursor.executemany(
                        "INSERT INTO Rooms (unit_id, room_number, capacity) VALUES (?, ?, ?);",
                        [(unit_id, number, room_capacity) for number, room_capacity in rooms],
                    )
                    room_count += len(rooms)
            logger.info(
                "Demo housing seeded | units=%s | rooms=%s",
                len(units),
                room_count,
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo housing seeding failed: {exc}") from exc

    # Residents and housing inventory

    def create_resident(
        self,
        full_name: str,
        gender: str,
        traits: Union[TraitBundle, Mapping[str, Any], None] = None,
    ) -> int:
        """Insert a resident profile and return the created id."""
        if isinstance(traits, TraitBundle):
            payload = traits.to_dict()
        else:
            payload = TraitBundle.from_mapping(traits).to_dict()
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Residents (full_name, gender, personality_traits)
                VALUES (?, ?, ?);
                """,
                (full_name, gender, json.dumps(payload, sort_keys=True)),
            )
            return int(cursor.lastrowid)

    def get_resident(
        self,
        resident_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Resident]:
        with self._use(conn) as active:
            row = active.execute(
                "SELECT id, full_name, gender, personality_traits FROM Residents WHERE id = ?;",
                (resident_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_resident(row)

    def list_residents(
        self,
        gender: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[Resident]:
        """Return residents in id order, optionally restricted to one gender."""
        query = "SELECT id, full_name, gender, personality_traits FROM Residents"
        params: tuple[Any, ...] = ()
        if gender is not None:
            query += " WHERE gender = ?"
            params = (gender,)
        query += " ORDER BY id ASC;"
        with self._use(conn) as active:
            return [_row_to_resident(row) for row in active.execute(query, params).fetchall()]

    def create_housing_unit(self, name: str, unit_type: str, capacity: int) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT INTO HousingUnits (name, unit_type, capacity) VALUES (?, ?, ?);",
                (name, unit_type, capacity),
            )
            return int(cursor.lastrowid)

    def create_room(
        self,
        unit_id: int,
        room_number: str,
        capacity: int,
        occupied: int = 0,
    ) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Rooms (unit_id, room_number, capacity, occupied)
                VALUES (?, ?, ?, ?);
                """,
                (unit_id, room_number, capacity, occupied),
            )
            return int(cursor.lastrowid)

    def list_housing_units(
        self,
        unit_type: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[HousingUnit]:
        """Return housing units in stable id order for round-robin indexing."""
        query = "SELECT id, name, unit_type, capacity FROM HousingUnits"
        params: tuple[Any, ...] = ()
        if unit_type is not None:
            query += " WHERE unit_type = ?"
            params = (unit_type,)
        query += " ORDER BY id ASC;"
        with self._use(conn) as active:
            return [
                HousingUnit(
                    unit_id=int(row["id"]),
                    name=str(row["name"]),
                    unit_type=str(row["unit_type"]),
                    capacity=int(row["capacity"]),
                )
                for row in active.execute(query, params).fetchall()
            ]

    def list_rooms_in_unit(
        self,
        unit_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[Room]:
        with self._use(conn) as active:
            rows = active.execute(
                _ROOM_SELECT + " WHERE r.unit_id = ? ORDER BY r.id ASC;",
                (unit_id,),
            ).fetchall()
            return [_row_to_room(row) for row in rows]

    def list_rooms(self, conn: Optional[sqlite3.Connection] = None) -> list[Room]:
        with self._use(conn) as active:
            rows = active.execute(_ROOM_SELECT + " ORDER BY r.id ASC;").fetchall()
            return [_row_to_room(row) for row in rows]

    def get_room(
        self,
        room_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Room]:
        """Fetch a room joined with its housing unit's gender type."""
        with self._use(conn) as active:
            row = active.execute(_ROOM_SELECT + " WHERE r.id = ?;", (room_id,)).fetchone()
            if row is None:
                return None
            return _row_to_room(row)

    # Occupancy mutations; each returns False when its guard rejected the write.

    def reserve_room_slots(self, conn: sqlite3.Connection, room_id: int, slots: int) -> bool:
        cursor = conn.execute(
            """
            UPDATE Rooms
            SET occupied = occupied + ?
            WHERE id = ? AND occupied + ? <= capacity;
            """,
            (slots, room_id, slots),
        )
        return cursor.rowcount == 1

    def release_room_slot(self, conn: sqlite3.Connection, room_id: int) -> None:
        conn.execute(
            "UPDATE Rooms SET occupied = MAX(occupied - 1, 0) WHERE id = ?;",
            (room_id,),
        )

    # Fairness cursor

    def get_fairness_cursor(self, conn: Optional[sqlite3.Connection] = None) -> int:
        with self._use(conn) as active:
            row = active.execute("SELECT last_index FROM FairnessCursor WHERE id = 1;").fetchone()
            if row is None:
                return -1
            return int(row["last_index"])

    def set_fairness_cursor(self, conn: sqlite3.Connection, index: int) -> None:
        conn.execute(
            """
            INSERT INTO FairnessCursor (id, last_index, updated_at)
            VALUES (1, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                last_index = excluded.last_index,
                updated_at = excluded.updated_at;
            """,
            (index, utc_now_iso()),
        )

    # Allocation requests

    def find_active_request(
        self,
        conn: sqlite3.Connection,
        resident_id: int,
        session_label: str,
    ) -> Optional[AllocationRequest]:
        row = conn.execute(
            f"""
            SELECT {_REQUEST_COLUMNS}
            FROM AllocationRequests
            WHERE resident_id = ?
              AND session_label = ?
              AND status IN ('pending', 'approved')
            LIMIT 1;
            """,
            (resident_id, session_label),
        ).fetchone()
        if row is None:
            return None
        return _row_to_request(row)

    def insert_pending_request(
        self,
        conn: sqlite3.Connection,
        resident_id: int,
        session_label: str,
        created_at: Optional[str] = None,
    ) -> int:
        """Insert a pending request row and return the created id."""
        cursor = conn.execute(
            """
            INSERT INTO AllocationRequests (resident_id, session_label, status, created_at)
            VALUES (?, ?, ?, ?);
            """,
            (resident_id, session_label, STATUS_PENDING, created_at or utc_now_iso()),
        )
        return int(cursor.lastrowid)

    def create_pending_request(
        self,
        resident_id: int,
        session_label: str,
        created_at: Optional[str] = None,
    ) -> int:
        """Standalone insert used by seeding scripts and tests."""
        with self.transaction() as conn:
            return self.insert_pending_request(conn, resident_id, session_label, created_at)

    def get_request(
        self,
        request_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[AllocationRequest]:
        with self._use(conn) as active:
            row = active.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM AllocationRequests WHERE id = ?;",
                (request_id,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_request(row)

    def list_pending_unassigned_requests(
        self,
        conn: sqlite3.Connection,
        *,
        session_label: str,
        gender: str,
        exclude_request_id: int,
    ) -> list[AllocationRequest]:
        """Return pending, room-less peers for a session in arrival order."""
        rows = conn.execute(
            f"""
            SELECT {_PEER_REQUEST_COLUMNS}
            FROM AllocationRequests AS ar
            INNER JOIN Residents AS res ON res.id = ar.resident_id
            WHERE ar.status = 'pending'
              AND ar.room_id IS NULL
              AND ar.id != ?
              AND ar.session_label = ?
              AND res.gender = ?
            ORDER BY ar.created_at ASC, ar.id ASC;
            """,
            (exclude_request_id, session_label, gender),
        ).fetchall()
        return [_row_to_request(row) for row in rows]

    def list_stale_pending_requests(
        self,
        cutoff: str,
        limit: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[AllocationRequest]:
        """Return the oldest pending, room-less requests created at or before ``cutoff``."""
        with self._use(conn) as active:
            rows = active.execute(
                f"""
                SELECT {_REQUEST_COLUMNS}
                FROM AllocationRequests
                WHERE status = 'pending'
                  AND room_id IS NULL
                  AND created_at <= ?
                ORDER BY created_at ASC, id ASC
                LIMIT ?;
                """,
                (cutoff, limit),
            ).fetchall()
            return [_row_to_request(row) for row in rows]

    def list_approved_requests_for_room(
        self,
        conn: sqlite3.Connection,
        room_id: int,
        exclude_request_id: Optional[int] = None,
    ) -> list[AllocationRequest]:
        rows = conn.execute(
            f"""
            SELECT {_REQUEST_COLUMNS}
            FROM AllocationRequests
            WHERE room_id = ?
              AND status = 'approved'
              AND id != ?
            ORDER BY id ASC;
            """,
            (room_id, exclude_request_id if exclude_request_id is not None else -1),
        ).fetchall()
        return [_row_to_request(row) for row in rows]

    def approve_pending_request(
        self,
        conn: sqlite3.Connection,
        *,
        request_id: int,
        room_id: int,
        compatibility: CompatibilityResult,
        allocated_at: str,
    ) -> bool:
        """Approve an auto-paired request if it is still pending and room-less."""
        cursor = conn.execute(
            """
            UPDATE AllocationRequests
            SET status = ?,
                room_id = ?,
                allocated_at = ?,
                compatibility_score = ?,
                compatibility_range = ?,
                match_breakdown = ?,
                auto_paired = 1
            WHERE id = ?
              AND status = 'pending'
              AND room_id IS NULL;
            """,
            (
                STATUS_APPROVED,
                room_id,
                allocated_at,
                compatibility.score,
                compatibility.range,
                json.dumps(compatibility.breakdown(), sort_keys=True),
                request_id,
            ),
        )
        return cursor.rowcount == 1

    def move_request(
        self,
        conn: sqlite3.Connection,
        *,
        request_id: int,
        room_id: int,
        allocated_at: str,
    ) -> bool:
        """Point a request at a new room as a manual placement."""
        cursor = conn.execute(
            """
            UPDATE AllocationRequests
            SET status = ?,
                room_id = ?,
                allocated_at = ?,
                auto_paired = 0
            WHERE id = ?
              AND status != 'rejected';
            """,
            (STATUS_APPROVED, room_id, allocated_at, request_id),
        )
        return cursor.rowcount == 1

    def list_requests(self) -> list[AllocationRequest]:
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM AllocationRequests ORDER BY id ASC;"
            ).fetchall()
            return [_row_to_request(row) for row in rows]

    def count_requests(self) -> int:
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM AllocationRequests;").fetchone()
            return int(row["count"])

    def get_request_status(self, request_id: int) -> Optional[str]:
        request = self.get_request(request_id)
        if request is None:
            return None
        return request.status

    # Approved pairing ledger

    def insert_approved_pairing(
        self,
        conn: sqlite3.Connection,
        *,
        resident_a_id: int,
        resident_b_id: int,
        approved_by: int,
        weight_snapshot: Mapping[str, float],
    ) -> bool:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO ApprovedPairings (
                resident_a_id,
                resident_b_id,
                approved_by,
                approved_at,
                weight_snapshot
            )
            VALUES (?, ?, ?, ?, ?);
            """,
            (
                resident_a_id,
                resident_b_id,
                approved_by,
                utc_now_iso(),
                json.dumps(dict(weight_snapshot), sort_keys=True),
            ),
        )
        return cursor.rowcount == 1

    def count_approved_pairings(self, conn: Optional[sqlite3.Connection] = None) -> int:
        with self._use(conn) as active:
            row = active.execute("SELECT COUNT(*) AS count FROM ApprovedPairings;").fetchone()
            return int(row["count"])

    def list_approved_pairings(self) -> list[ApprovedPairing]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT resident_a_id, resident_b_id, approved_by, approved_at, weight_snapshot
                FROM ApprovedPairings
                ORDER BY id ASC;
                """
            ).fetchall()
            return [
                ApprovedPairing(
                    resident_a_id=int(row["resident_a_id"]),
                    resident_b_id=int(row["resident_b_id"]),
                    approved_by=int(row["approved_by"]),
                    approved_at=str(row["approved_at"]),
                    weight_snapshot={
                        str(key): float(value)
                        for key, value in json.loads(row["weight_snapshot"] or "{}").items()
                    },
                )
                for row in rows
            ]
