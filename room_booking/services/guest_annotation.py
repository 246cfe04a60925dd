"""Guest details for bookings made by staff on behalf of walk-in clients.

Guest identity lives in dedicated nullable booking columns. Older bookings
carry it as a tag inside the free-text notes instead::

    [EXTERNAL BOOKING] Name: Jane Doe | Email: jane@example.com | Phone: 0300-1234567

The helpers below write and read that tag so reports cover both forms.
"""

from __future__ import annotations

import re
from typing import Optional

from room_booking.domain.models import Booking, GuestInfo


GUEST_TAG_MARKER = "[EXTERNAL BOOKING]"

_GUEST_TAG_PATTERN = re.compile(
    re.escape(GUEST_TAG_MARKER)
    + r"\s*Name:\s*(?P<name>[^|]*?)\s*\|\s*Email:\s*(?P<email>[^|]*?)\s*\|\s*Phone:\s*(?P<phone>[^|\n]*?)\s*(?:\n|$)"
)


def format_guest_tag(guest: GuestInfo) -> str:
    # Field separators are reserved by the tag format.
    name, email, phone = (
        value.replace("|", "/").strip() for value in (guest.name, guest.email, guest.phone)
    )
    return f"{GUEST_TAG_MARKER} Name: {name} | Email: {email} | Phone: {phone}"


def has_guest_tag(notes: Optional[str]) -> bool:
    return bool(notes) and GUEST_TAG_MARKER in notes


def parse_guest_tag(notes: Optional[str]) -> GuestInfo:
    """Extract guest fields from notes; missing tag or fields yield empty strings."""
    if not notes:
        return GuestInfo()
    match = _GUEST_TAG_PATTERN.search(notes)
    if match is None:
        return GuestInfo()
    return GuestInfo(
        name=match.group("name").strip(),
        email=match.group("email").strip(),
        phone=match.group("phone").strip(),
    )


def resolve_guest(booking: Booking) -> Optional[GuestInfo]:
    if booking.guest is not None and not booking.guest.is_empty:
        return booking.guest
    if has_guest_tag(booking.notes):
        return parse_guest_tag(booking.notes)
    return None
