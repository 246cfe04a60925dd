"""Room availability checks over half-open booking intervals."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from room_booking.domain.constraints import validate_interval
from room_booking.domain.errors import RoomNotFound, RoomUnavailable
from room_booking.domain.models import Room, Site
from room_booking.repository.data_repository import DataRepository
from room_booking.utils.config import Settings, get_settings
from room_booking.utils.logger import get_logger, log_fields


logger = get_logger(__name__)


class AvailabilityChecker:
    """Answers whether a room is free; never writes."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def is_available(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        validate_interval(start, end)
        conflict = self._repository.find_conflicting_booking(room_id, start, end, conn=conn)
        return conflict is None

    def ensure_available(
        self,
        conn: sqlite3.Connection,
        room_id: int,
        start: datetime,
        end: datetime,
    ) -> None:
        """Raise RoomUnavailable on overlap; call inside the write transaction."""
        validate_interval(start, end)
        conflict = self._repository.find_conflicting_booking(room_id, start, end, conn=conn)
        if conflict is not None:
            logger.info(
                "Room conflict",
                extra=log_fields(
                    room_id=room_id,
                    requested_start=start.isoformat(),
                    requested_end=end.isoformat(),
                    conflicting_booking_id=conflict.booking_id,
                ),
            )
            raise RoomUnavailable(
                "Room is not available for the selected time; "
                "it overlaps an existing booking"
            )

    def list_confirmed_intervals(
        self,
        room_id: int,
        window_start: datetime,
        window_end: datetime,
    ) -> list[tuple[datetime, datetime]]:
        """Busy intervals of a room that intersect the window, for calendars."""
        validate_interval(window_start, window_end)
        if self._repository.get_room(room_id) is None:
            raise RoomNotFound(f"Room {room_id} does not exist")
        return self._repository.list_confirmed_intervals(room_id, window_start, window_end)

    def list_rooms(self, site: Optional[Site] = None, available_only: bool = False) -> list[Room]:
        rooms = self._repository.list_rooms(site)
        if available_only:
            return [room for room in rooms if room.is_available]
        return rooms
