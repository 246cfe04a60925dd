"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional
from uuid import uuid4

from room_booking.domain.errors import InternalBookingError, RoomUnavailable
from room_booking.domain.models import (
    BillingTarget,
    Booking,
    BookingStatus,
    GuestInfo,
    NewBooking,
    Role,
    Room,
    Site,
)
from room_booking.utils.clock import from_storage, to_storage, utc_now
from room_booking.utils.config import Settings, get_settings
from room_booking.utils.logger import get_logger, log_fields


logger = get_logger(__name__)

OVERLAP_ABORT_MESSAGE = "room_overlap"

# Absorbs float drift when comparing credit sums made of fractional hours.
_CREDIT_EPSILON = 1e-9


@dataclass(frozen=True)
class UserRecord:
    """User projection carrying the personal ledger fields."""

    user_id: int
    email: str
    first_name: str
    last_name: str
    role: Role
    organization_id: Optional[str]
    site: Site
    credits: float
    used_credits: float
    can_charge_room_to_org: bool
    is_active: bool


@dataclass(frozen=True)
class OrganizationRecord:
    organization_id: str
    name: str
    email: str
    site: Site
    monthly_credit_allocation: float


_BOOKING_COLUMNS = """
    id, user_id, room_id, start_time, end_time, credits_charged, status,
    billed_to, org_id, notes, site, guest_name, guest_email, guest_phone,
    cancelled_by, created_at, updated_at
"""


def _row_to_booking(row: sqlite3.Row) -> Booking:
    guest = None
    if row["guest_name"] is not None:
        guest = GuestInfo(
            name=str(row["guest_name"]),
            email=str(row["guest_email"] or ""),
            phone=str(row["guest_phone"] or ""),
        )
    return Booking(
        booking_id=int(row["id"]),
        room_id=int(row["room_id"]),
        user_id=int(row["user_id"]),
        start_time=from_storage(row["start_time"]),
        end_time=from_storage(row["end_time"]),
        credits_charged=float(row["credits_charged"]),
        status=BookingStatus(row["status"]),
        billed_to=BillingTarget(row["billed_to"]),
        site=Site(row["site"]),
        created_at=from_storage(row["created_at"]),
        updated_at=from_storage(row["updated_at"]),
        org_id=row["org_id"],
        notes=row["notes"],
        guest=guest,
        cancelled_by=int(row["cancelled_by"]) if row["cancelled_by"] is not None else None,
    )


def _row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        room_id=int(row["id"]),
        name=str(row["name"]),
        capacity=int(row["capacity"]),
        credit_cost_per_hour=float(row["credit_cost_per_hour"]),
        is_available=bool(row["is_available"]),
        site=Site(row["site"]),
    )


def _row_to_user(row: sqlite3.Row) -> UserRecord:
    return UserRecord(
        user_id=int(row["id"]),
        email=str(row["email"]),
        first_name=str(row["first_name"]),
        last_name=str(row["last_name"]),
        role=Role(row["role"]),
        organization_id=row["organization_id"],
        site=Site(row["site"]),
        credits=float(row["credits"]),
        used_credits=float(row["used_credits"]),
        can_charge_room_to_org=bool(row["can_charge_room_to_org"]),
        is_active=bool(row["is_active"]),
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly with BEGIN IMMEDIATE.
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
            isolation_level=None,
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _reader(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        connection = self._connect()
        try:
            yield connection
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction that holds SQLite's single writer lock.

        BEGIN IMMEDIATE takes the RESERVED lock up front, so concurrent
        check-and-insert sequences are serialized: the second writer waits for
        the first to commit and then observes its rows. Any exception rolls
        the whole unit back.
        """
        try:
            connection = self._connect()
        except sqlite3.Error as exc:
            raise InternalBookingError("Booking storage is unavailable") from exc
        try:
            try:
                connection.execute("BEGIN IMMEDIATE;")
            except sqlite3.OperationalError as exc:
                logger.exception("Could not acquire booking write lock")
                raise InternalBookingError("Booking storage is busy") from exc
            yield connection
            connection.execute("COMMIT;")
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._reader() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Organizations (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL,
                        site TEXT NOT NULL DEFAULT 'blue_area',
                        monthly_credit_allocation REAL NOT NULL DEFAULT 30
                            CHECK (monthly_credit_allocation >= 0),
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        email TEXT NOT NULL UNIQUE,
                        first_name TEXT NOT NULL,
                        last_name TEXT NOT NULL,
                        role TEXT NOT NULL,
                        organization_id TEXT,
                        site TEXT NOT NULL DEFAULT 'blue_area',
                        credits REAL NOT NULL DEFAULT 30 CHECK (credits >= 0),
                        used_credits REAL NOT NULL DEFAULT 0 CHECK (used_credits >= 0),
                        can_charge_room_to_org INTEGER NOT NULL DEFAULT 0,
                        is_active INTEGER NOT NULL DEFAULT 1,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (organization_id) REFERENCES Organizations(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS MeetingRooms (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        description TEXT,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        credit_cost_per_hour REAL NOT NULL CHECK (credit_cost_per_hour >= 0),
                        is_available INTEGER NOT NULL DEFAULT 1,
                        site TEXT NOT NULL DEFAULT 'blue_area',
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS MeetingBookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER NOT NULL,
                        room_id INTEGER NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        credits_charged REAL NOT NULL CHECK (credits_charged >= 0),
                        status TEXT NOT NULL DEFAULT 'confirmed'
                            CHECK (status IN ('confirmed', 'cancelled')),
                        billed_to TEXT NOT NULL DEFAULT 'personal'
                            CHECK (billed_to IN ('personal', 'organization')),
                        org_id TEXT,
                        notes TEXT,
                        site TEXT NOT NULL DEFAULT 'blue_area',
                        guest_name TEXT,
                        guest_email TEXT,
                        guest_phone TEXT,
                        cancelled_by INTEGER,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        CHECK (start_time < end_time),
                        CHECK (billed_to = 'personal' OR org_id IS NOT NULL),
                        FOREIGN KEY (user_id) REFERENCES Users(id),
                        FOREIGN KEY (room_id) REFERENCES MeetingRooms(id),
                        FOREIGN KEY (org_id) REFERENCES Organizations(id),
                        FOREIGN KEY (cancelled_by) REFERENCES Users(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_room_status_start
                    ON MeetingBookings(room_id, status, start_time);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_org_month
                    ON MeetingBookings(org_id, billed_to, status, created_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_user_created
                    ON MeetingBookings(user_id, created_at);
                    """
                )

                # Storage-level exclusion: no two confirmed bookings of a room overlap.
                cursor.execute(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS trg_bookings_no_overlap_insert
                    BEFORE INSERT ON MeetingBookings
                    WHEN NEW.status = 'confirmed'
                    BEGIN
                        SELECT RAISE(ABORT, '{OVERLAP_ABORT_MESSAGE}')
                        WHERE EXISTS (
                            SELECT 1 FROM MeetingBookings
                            WHERE room_id = NEW.room_id
                              AND status = 'confirmed'
                              AND start_time < NEW.end_time
                              AND end_time > NEW.start_time
                        );
                    END;
                    """
                )
                cursor.execute(
                    f"""
                    CREATE TRIGGER IF NOT EXISTS trg_bookings_no_overlap_update
                    BEFORE UPDATE OF room_id, start_time, end_time, status ON MeetingBookings
                    WHEN NEW.status = 'confirmed'
                    BEGIN
                        SELECT RAISE(ABORT, '{OVERLAP_ABORT_MESSAGE}')
                        WHERE EXISTS (
                            SELECT 1 FROM MeetingBookings
                            WHERE room_id = NEW.room_id
                              AND id != NEW.id
                              AND status = 'confirmed'
                              AND start_time < NEW.end_time
                              AND end_time > NEW.start_time
                        );
                    END;
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> int:
        """Seed demo organizations, members and rooms only when empty."""
        try:
            with self._reader() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM MeetingRooms;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return 0
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

        blue_org = self.create_organization(
            name="Northwind Studio",
            email="billing@northwind.example",
            site=Site.BLUE_AREA,
            monthly_credit_allocation=self._settings.default_organization_monthly_credits,
        )
        i10_org = self.create_organization(
            name="Kestrel Labs",
            email="accounts@kestrel.example",
            site=Site.I_10,
            monthly_credit_allocation=self._settings.default_organization_monthly_credits,
        )

        users = [
            ("ayesha@members.example", "Ayesha", "Khan", Role.MEMBER_INDIVIDUAL, None, Site.BLUE_AREA, False),
            ("omar@northwind.example", "Omar", "Siddiqui", Role.MEMBER_ORGANIZATION, blue_org, Site.BLUE_AREA, True),
            ("sana@northwind.example", "Sana", "Malik", Role.MEMBER_ORGANIZATION_ADMIN, blue_org, Site.BLUE_AREA, True),
            ("bilal@kestrel.example", "Bilal", "Ahmed", Role.MEMBER_ORGANIZATION, i10_org, Site.I_10, False),
            ("frontdesk@space.example", "Front", "Desk", Role.SPACE_TEAM, None, Site.BLUE_AREA, False),
            ("admin@space.example", "Space", "Admin", Role.SPACE_ADMIN, None, Site.BLUE_AREA, False),
        ]
        for email, first_name, last_name, role, org_id, site, can_charge in users:
            self.create_user(
                email=email,
                first_name=first_name,
                last_name=last_name,
                role=role,
                organization_id=org_id,
                site=site,
                credits=self._settings.default_personal_credits,
                can_charge_room_to_org=can_charge,
            )

        rooms = [
            ("Focus Pod", 4, 1.0, Site.BLUE_AREA),
            ("Board Room", 12, 3.0, Site.BLUE_AREA),
            ("Huddle Room", 6, 2.0, Site.BLUE_AREA),
            ("Margalla Room", 8, 2.0, Site.I_10),
            ("Studio", 20, 4.0, Site.I_10),
        ]
        for name, capacity, cost, site in rooms:
            self.create_room(name=name, capacity=capacity, credit_cost_per_hour=cost, site=site)

        seeded = 2 + len(users) + len(rooms)
        logger.info("Demo seed completed with %s records", seeded)
        return seeded

    # --- administrative writes (owned by the admin subsystem) -------------

    def create_organization(
        self,
        name: str,
        email: str,
        site: Site = Site.BLUE_AREA,
        monthly_credit_allocation: float = 30.0,
        organization_id: Optional[str] = None,
    ) -> str:
        org_id = organization_id or str(uuid4())
        with self._reader() as conn:
            conn.execute(
                """
                INSERT INTO Organizations (id, name, email, site, monthly_credit_allocation, created_at)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (org_id, name, email, site.value, monthly_credit_allocation, to_storage(utc_now())),
            )
        return org_id

    def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        role: Role,
        organization_id: Optional[str] = None,
        site: Site = Site.BLUE_AREA,
        credits: float = 30.0,
        used_credits: float = 0.0,
        can_charge_room_to_org: bool = False,
    ) -> int:
        with self._reader() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Users (
                    email, first_name, last_name, role, organization_id, site,
                    credits, used_credits, can_charge_room_to_org, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    email,
                    first_name,
                    last_name,
                    role.value,
                    organization_id,
                    site.value,
                    credits,
                    used_credits,
                    int(can_charge_room_to_org),
                    to_storage(utc_now()),
                ),
            )
            return int(cursor.lastrowid)

    def create_room(
        self,
        name: str,
        capacity: int,
        credit_cost_per_hour: float,
        site: Site = Site.BLUE_AREA,
        is_available: bool = True,
        description: Optional[str] = None,
    ) -> int:
        with self._reader() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO MeetingRooms (
                    name, description, capacity, credit_cost_per_hour, is_available, site, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    name,
                    description,
                    capacity,
                    credit_cost_per_hour,
                    int(is_available),
                    site.value,
                    to_storage(utc_now()),
                ),
            )
            return int(cursor.lastrowid)

    # --- reads -------------------------------------------------------------

    def get_room(self, room_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Room]:
        with self._reader(conn) as connection:
            row = connection.execute(
                """
                SELECT id, name, capacity, credit_cost_per_hour, is_available, site
                FROM MeetingRooms WHERE id = ?;
                """,
                (room_id,),
            ).fetchone()
            return _row_to_room(row) if row is not None else None

    def list_rooms(self, site: Optional[Site] = None) -> List[Room]:
        query = """
            SELECT id, name, capacity, credit_cost_per_hour, is_available, site
            FROM MeetingRooms
        """
        params: tuple = ()
        if site is not None:
            query += " WHERE site = ?"
            params = (site.value,)
        with self._reader() as conn:
            rows = conn.execute(query + " ORDER BY id ASC;", params).fetchall()
            return [_row_to_room(row) for row in rows]

    def get_user(self, user_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[UserRecord]:
        with self._reader(conn) as connection:
            row = connection.execute(
                """
                SELECT id, email, first_name, last_name, role, organization_id, site,
                       credits, used_credits, can_charge_room_to_org, is_active
                FROM Users WHERE id = ?;
                """,
                (user_id,),
            ).fetchone()
            return _row_to_user(row) if row is not None else None

    def list_organization_members(self, org_id: str) -> List[UserRecord]:
        with self._reader() as conn:
            rows = conn.execute(
                """
                SELECT id, email, first_name, last_name, role, organization_id, site,
                       credits, used_credits, can_charge_room_to_org, is_active
                FROM Users WHERE organization_id = ? ORDER BY id ASC;
                """,
                (org_id,),
            ).fetchall()
            return [_row_to_user(row) for row in rows]

    def get_organization(
        self,
        org_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[OrganizationRecord]:
        with self._reader(conn) as connection:
            row = connection.execute(
                """
                SELECT id, name, email, site, monthly_credit_allocation
                FROM Organizations WHERE id = ?;
                """,
                (org_id,),
            ).fetchone()
            if row is None:
                return None
            return OrganizationRecord(
                organization_id=str(row["id"]),
                name=str(row["name"]),
                email=str(row["email"]),
                site=Site(row["site"]),
                monthly_credit_allocation=float(row["monthly_credit_allocation"]),
            )

    def sum_organization_usage(
        self,
        org_id: str,
        month_start: datetime,
        month_end: datetime,
        conn: Optional[sqlite3.Connection] = None,
    ) -> float:
        """Sum credits of non-cancelled organization-billed bookings created in the month."""
        with self._reader(conn) as connection:
            row = connection.execute(
                """
                SELECT COALESCE(SUM(credits_charged), 0) AS used
                FROM MeetingBookings
                WHERE org_id = ?
                  AND billed_to = 'organization'
                  AND status != 'cancelled'
                  AND created_at >= ?
                  AND created_at < ?;
                """,
                (org_id, to_storage(month_start), to_storage(month_end)),
            ).fetchone()
            return float(row["used"])

    def get_booking(
        self,
        booking_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Booking]:
        with self._reader(conn) as connection:
            row = connection.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM MeetingBookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
            return _row_to_booking(row) if row is not None else None

    def find_conflicting_booking(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Booking]:
        """Return one confirmed booking overlapping ``[start, end)``, if any."""
        with self._reader(conn) as connection:
            row = connection.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM MeetingBookings
                WHERE room_id = ?
                  AND status = 'confirmed'
                  AND start_time < ?
                  AND end_time > ?
                ORDER BY start_time ASC
                LIMIT 1;
                """,
                (room_id, to_storage(end), to_storage(start)),
            ).fetchone()
            return _row_to_booking(row) if row is not None else None

    def list_confirmed_intervals(
        self,
        room_id: int,
        window_start: datetime,
        window_end: datetime,
    ) -> List[tuple[datetime, datetime]]:
        with self._reader() as conn:
            rows = conn.execute(
                """
                SELECT start_time, end_time
                FROM MeetingBookings
                WHERE room_id = ?
                  AND status = 'confirmed'
                  AND start_time < ?
                  AND end_time > ?
                ORDER BY start_time ASC;
                """,
                (room_id, to_storage(window_end), to_storage(window_start)),
            ).fetchall()
            return [
                (from_storage(row["start_time"]), from_storage(row["end_time"]))
                for row in rows
            ]

    def list_bookings(
        self,
        user_id: Optional[int] = None,
        org_id: Optional[str] = None,
        site: Optional[Site] = None,
    ) -> List[Booking]:
        conditions: list[str] = []
        params: list[object] = []
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        if org_id is not None:
            conditions.append("org_id = ?")
            params.append(org_id)
        if site is not None:
            conditions.append("site = ?")
            params.append(site.value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._reader() as conn:
            rows = conn.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM MeetingBookings
                {where}
                ORDER BY created_at DESC, id DESC;
                """,
                tuple(params),
            ).fetchall()
            return [_row_to_booking(row) for row in rows]

    def list_guest_bookings(
        self,
        notes_marker: str,
        site: Optional[Site] = None,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> List[Booking]:
        """Bookings with explicit guest columns or a legacy tag in their notes."""
        conditions = ["(guest_name IS NOT NULL OR instr(COALESCE(notes, ''), ?) > 0)"]
        params: list[object] = [notes_marker]
        if site is not None:
            conditions.append("site = ?")
            params.append(site.value)
        if window_start is not None:
            conditions.append("start_time >= ?")
            params.append(to_storage(window_start))
        if window_end is not None:
            conditions.append("start_time < ?")
            params.append(to_storage(window_end))
        with self._reader() as conn:
            rows = conn.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM MeetingBookings
                WHERE {' AND '.join(conditions)}
                ORDER BY start_time ASC, id ASC;
                """,
                tuple(params),
            ).fetchall()
            return [_row_to_booking(row) for row in rows]

    def count_bookings(self, room_id: Optional[int] = None, status: Optional[BookingStatus] = None) -> int:
        conditions: list[str] = []
        params: list[object] = []
        if room_id is not None:
            conditions.append("room_id = ?")
            params.append(room_id)
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._reader() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS count FROM MeetingBookings {where};",
                tuple(params),
            ).fetchone()
            return int(row["count"])

    # --- transactional writes (require a connection from transaction()) ----

    def insert_booking(
        self,
        conn: sqlite3.Connection,
        booking: NewBooking,
        created_at: datetime,
    ) -> Booking:
        guest = booking.guest if booking.guest is not None and not booking.guest.is_empty else None
        try:
            cursor = conn.execute(
                """
                INSERT INTO MeetingBookings (
                    user_id, room_id, start_time, end_time, credits_charged, status,
                    billed_to, org_id, notes, site, guest_name, guest_email, guest_phone,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 'confirmed', ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    booking.user_id,
                    booking.room_id,
                    to_storage(booking.start_time),
                    to_storage(booking.end_time),
                    booking.credits_charged,
                    booking.billed_to.value,
                    booking.org_id,
                    booking.notes,
                    booking.site.value,
                    guest.name if guest else None,
                    guest.email if guest else None,
                    guest.phone if guest else None,
                    to_storage(created_at),
                    to_storage(created_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            if OVERLAP_ABORT_MESSAGE in str(exc):
                logger.warning(
                    "Overlap rejected by storage constraint",
                    extra=log_fields(room_id=booking.room_id, user_id=booking.user_id),
                )
                raise RoomUnavailable(
                    "Room is not available for the selected time"
                ) from exc
            raise
        created = self.get_booking(int(cursor.lastrowid), conn=conn)
        if created is None:  # pragma: no cover
            raise InternalBookingError("Inserted booking could not be read back")
        return created

    def mark_booking_cancelled(
        self,
        conn: sqlite3.Connection,
        booking_id: int,
        cancelled_by: int,
        updated_at: datetime,
    ) -> Booking:
        conn.execute(
            """
            UPDATE MeetingBookings
            SET status = 'cancelled', cancelled_by = ?, updated_at = ?
            WHERE id = ? AND status = 'confirmed';
            """,
            (cancelled_by, to_storage(updated_at), booking_id),
        )
        updated = self.get_booking(booking_id, conn=conn)
        if updated is None:  # pragma: no cover
            raise InternalBookingError("Cancelled booking could not be read back")
        return updated

    def increment_used_credits_if_available(
        self,
        conn: sqlite3.Connection,
        user_id: int,
        amount: float,
    ) -> bool:
        """Add ``amount`` to used credits only if the balance covers it."""
        cursor = conn.execute(
            """
            UPDATE Users
            SET used_credits = used_credits + ?
            WHERE id = ? AND credits - used_credits + ? >= ?;
            """,
            (amount, user_id, _CREDIT_EPSILON, amount),
        )
        return cursor.rowcount == 1

    def decrement_used_credits(
        self,
        conn: sqlite3.Connection,
        user_id: int,
        amount: float,
    ) -> None:
        """Subtract ``amount`` from used credits, floored at zero."""
        conn.execute(
            """
            UPDATE Users
            SET used_credits = MAX(0, used_credits - ?)
            WHERE id = ?;
            """,
            (amount, user_id),
        )
