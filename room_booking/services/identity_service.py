"""Requester resolution for the booking engine's HTTP surface."""

from __future__ import annotations

from typing import Optional

from room_booking.domain.errors import UnknownRequester
from room_booking.domain.models import Requester
from room_booking.repository.data_repository import DataRepository
from room_booking.utils.config import Settings, get_settings


class IdentityService:
    """Turns an authenticated user id into the Requester the engine consumes.

    Authentication itself belongs to the session layer; this only loads the
    role, membership and billing permission of an already-known user.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def resolve_requester(self, user_id: int) -> Requester:
        user = self._repository.get_user(user_id)
        if user is None or not user.is_active:
            raise UnknownRequester(f"User {user_id} is not an active member")
        return Requester(
            user_id=user.user_id,
            role=user.role,
            organization_id=user.organization_id,
            can_charge_room_to_org=user.can_charge_room_to_org,
            site=user.site,
        )
