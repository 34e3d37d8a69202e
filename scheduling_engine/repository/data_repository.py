"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from scheduling_engine.domain.constraints import normalize_slot
from scheduling_engine.domain.models import (
    KIND_CONFIRMED,
    KIND_HOLD,
    Channel,
    ReservationRecord,
    TimeSlot,
)
from scheduling_engine.utils.config import Settings, get_settings
from scheduling_engine.utils.logger import get_logger


logger = get_logger(__name__)


class LedgerError(RuntimeError):
    """Base class for ledger and catalog I/O failures."""


class LedgerReadError(LedgerError):
    """Raised when the ledger or the catalogs cannot be read."""


class LedgerWriteError(LedgerError):
    """Raised when a reservation write cannot be committed."""


_RESERVATION_COLUMNS = """
    id,
    channel_id,
    date,
    slot,
    quantity,
    kind,
    requester_area,
    requester,
    user_id,
    reference,
    created_at
"""

_UPDATABLE_RESERVATION_FIELDS = (
    "channel_id",
    "date",
    "slot",
    "quantity",
    "kind",
    "requester_area",
    "requester",
    "user_id",
    "reference",
)


def _to_reservation(row: sqlite3.Row) -> ReservationRecord:
    return ReservationRecord(
        reservation_id=int(row["id"]),
        channel_id=str(row["channel_id"]),
        date=str(row["date"]),
        slot=str(row["slot"]),
        quantity=Decimal(str(row["quantity"])),
        kind=str(row["kind"]),
        requester_area=row["requester_area"],
        requester=row["requester"],
        user_id=row["user_id"],
        reference=row["reference"],
        created_at=row["created_at"],
    )


def _to_channel(row: sqlite3.Row) -> Channel:
    return Channel(
        channel_id=str(row["id"]),
        name=str(row["name"]),
        capacity=Decimal(str(row["capacity"])),
        active=bool(row["active"]),
    )


class DataRepository:
    """Encapsulates SQLite access so scheduling logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=30)
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
                    CREATE TABLE IF NOT EXISTS Channels (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        capacity TEXT NOT NULL,
                        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0,1)),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS TimeSlots (
                        label TEXT PRIMARY KEY,
                        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0,1))
                    );
                    """
                )

                cursor.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        channel_id TEXT NOT NULL,
                        date TEXT NOT NULL,
                        slot TEXT NOT NULL,
                        quantity TEXT NOT NULL,
                        kind TEXT NOT NULL DEFAULT '{KIND_CONFIRMED}'
                            CHECK (kind IN ('{KIND_CONFIRMED}', '{KIND_HOLD}')),
                        requester_area TEXT,
                        requester TEXT,
                        user_id TEXT,
                        reference TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_channel_date_slot
                    ON Reservations(channel_id, date, slot);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_user_area
                    ON Reservations(user_id, requester_area);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_reference_data(self) -> None:
        """Seed the channel and time-slot catalogs only when they are empty."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM Channels;")
                if int(cursor.fetchone()["count"]) == 0:
                    cursor.executemany(
                        "INSERT INTO Channels (id, name, capacity, active) VALUES (?, ?, ?, 1);",
                        list(self._settings.seed_channels),
                    )
                    logger.info("Seeded %s channels", len(self._settings.seed_channels))

                cursor.execute("SELECT COUNT(*) AS count FROM TimeSlots;")
                if int(cursor.fetchone()["count"]) == 0:
                    cursor.executemany(
                        "INSERT INTO TimeSlots (label, active) VALUES (?, 1);",
                        [(normalize_slot(label),) for label in self._settings.seed_time_slots],
                    )
                    logger.info("Seeded %s time slots", len(self._settings.seed_time_slots))
                conn.commit()
        except sqlite3.Error as exc:
            raise RuntimeError(f"Reference data seeding failed: {exc}") from exc

    def upsert_channel(
        self,
        channel_id: str,
        name: str,
        capacity: Decimal | int | str,
        active: bool = True,
    ) -> Channel:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Channels (id, name, capacity, active)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    capacity = excluded.capacity,
                    active = excluded.active;
                """,
                (channel_id, name, str(Decimal(str(capacity))), int(active)),
            )
            conn.commit()
        return Channel(
            channel_id=channel_id,
            name=name,
            capacity=Decimal(str(capacity)),
            active=active,
        )

    def _fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(query, tuple(params))
                return cursor.fetchall()
        except sqlite3.Error as exc:
            raise LedgerReadError(f"Ledger read failed: {exc}") from exc

    def _fetch_one(self, query: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None

    def upsert_time_slot(self, label: str, active: bool = True) -> TimeSlot:
        """Insert or toggle one catalog label, stored zero-padded as ``HH:MM``."""
        normalized = normalize_slot(label)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO TimeSlots (label, active)
                VALUES (?, ?)
                ON CONFLICT(label) DO UPDATE SET active = excluded.active;
                """,
                (normalized, int(active)),
            )
            conn.commit()
        return TimeSlot(label=normalized, active=active)

    def replace_time_slots(self, labels: Iterable[str]) -> None:
        """Swap the whole slot catalog for ``labels`` (all active, zero-padded)."""
        normalized = sorted({normalize_slot(label) for label in labels})
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM TimeSlots;")
            cursor.executemany(
                "INSERT INTO TimeSlots (label, active) VALUES (?, 1);",
                [(label,) for label in normalized],
            )
            conn.commit()

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        row = self._fetch_one(
            "SELECT id, name, capacity, active FROM Channels WHERE id = ?;",
            (channel_id,),
        )
        return _to_channel(row) if row is not None else None

    def find_channel_by_name(self, name: str) -> Optional[Channel]:
        row = self._fetch_one(
            """
            SELECT id, name, capacity, active
            FROM Channels
            WHERE TRIM(name) = ?
            ORDER BY active DESC, id ASC
            LIMIT 1;
            """,
            (name,),
        )
        return _to_channel(row) if row is not None else None

    def list_channels(self) -> List[Channel]:
        rows = self._fetch_all("SELECT id, name, capacity, active FROM Channels ORDER BY name ASC;")
        return [_to_channel(row) for row in rows]

    def list_active_time_slots(self) -> tuple[str, ...]:
        """Return active slot labels in chronological (lexical) order."""
        rows = self._fetch_all("SELECT label FROM TimeSlots WHERE active = 1 ORDER BY label ASC;")
        return tuple(str(row["label"]) for row in rows)

    def list_reservations(
        self,
        channel_id: str,
        date: str,
        slot: str,
        kinds: Optional[Sequence[str]] = None,
    ) -> List[ReservationRecord]:
        """Return ledger rows for one (channel, date, slot), optionally by kind."""
        query = f"""
            SELECT {_RESERVATION_COLUMNS}
            FROM Reservations
            WHERE channel_id = ? AND date = ? AND slot = ?
        """
        params: list[Any] = [channel_id, date, slot]
        if kinds:
            placeholders = ",".join("?" for _ in kinds)
            query += f" AND kind IN ({placeholders})"
            params.extend(kinds)
        query += " ORDER BY id ASC;"
        return [_to_reservation(row) for row in self._fetch_all(query, params)]

    def search_reservations(
        self,
        *,
        user_id: Optional[str] = None,
        requester_area: Optional[str] = None,
        channel_id: Optional[str] = None,
        date: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> List[ReservationRecord]:
        filters = {
            "user_id": user_id,
            "requester_area": requester_area,
            "channel_id": channel_id,
            "date": date,
            "kind": kind,
        }
        clauses = [f"{column} = ?" for column, value in filters.items() if value is not None]
        params = [value for value in filters.values() if value is not None]
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetch_all(
            f"""
            SELECT {_RESERVATION_COLUMNS}
            FROM Reservations
            {where}
            ORDER BY date ASC, slot ASC, id ASC;
            """,
            params,
        )
        return [_to_reservation(row) for row in rows]

    def get_reservation(self, reservation_id: int) -> Optional[ReservationRecord]:
        row = self._fetch_one(
            f"SELECT {_RESERVATION_COLUMNS} FROM Reservations WHERE id = ?;",
            (reservation_id,),
        )
        return _to_reservation(row) if row is not None else None

    def create_reservation(
        self,
        *,
        channel_id: str,
        date: str,
        slot: str,
        quantity: Decimal,
        kind: str = KIND_CONFIRMED,
        requester_area: Optional[str] = None,
        requester: Optional[str] = None,
        user_id: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> ReservationRecord:
        """Insert and commit one ledger row; failures raise LedgerWriteError."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO Reservations (
                        channel_id,
                        date,
                        slot,
                        quantity,
                        kind,
                        requester_area,
                        requester,
                        user_id,
                        reference
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        channel_id,
                        date,
                        slot,
                        str(quantity),
                        kind,
                        requester_area,
                        requester,
                        user_id,
                        reference,
                    ),
                )
                conn.commit()
                reservation_id = int(cursor.lastrowid)
        except sqlite3.Error as exc:
            raise LedgerWriteError(f"Reservation write failed: {exc}") from exc

        created = self.get_reservation(reservation_id)
        if created is None:
            raise LedgerWriteError(f"Reservation {reservation_id} vanished after commit")
        return created

    def update_reservation(self, reservation_id: int, **changes: Any) -> Optional[ReservationRecord]:
        unknown = set(changes) - set(_UPDATABLE_RESERVATION_FIELDS)
        if unknown:
            raise ValueError(f"Unknown reservation fields: {sorted(unknown)}")
        if not changes:
            return self.get_reservation(reservation_id)

        assignments = ", ".join(f"{column} = ?" for column in changes)
        params = [
            str(value) if column == "quantity" else value
            for column, value in changes.items()
        ]
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"UPDATE Reservations SET {assignments} WHERE id = ?;",
                    (*params, reservation_id),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise LedgerWriteError(f"Reservation update failed: {exc}") from exc
        return self.get_reservation(reservation_id)

    def delete_reservations(self, reservation_ids: Sequence[int]) -> int:
        """Delete rows by id and return how many were removed."""
        if not reservation_ids:
            return 0
        placeholders = ",".join("?" for _ in reservation_ids)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"DELETE FROM Reservations WHERE id IN ({placeholders});",
                    tuple(reservation_ids),
                )
                conn.commit()
                return int(cursor.rowcount)
        except sqlite3.Error as exc:
            raise LedgerWriteError(f"Reservation delete failed: {exc}") from exc

    def count_reservations(self) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS count FROM Reservations;")
        return int(row["count"])
