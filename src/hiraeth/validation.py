"""Input validation helpers for Hiraeth.

These functions check API input independently of any HTTP handler so they
can be unit-tested in isolation. Each raises ``InvalidArgument`` on bad
input; lifetime policy is enforced later by the lifecycle manager.
"""

import uuid

from hiraeth.errors import InvalidArgument, LifetimeExceeded

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Seconds per duration unit accepted by the upload endpoints.
DURATION_UNITS = {
    "days": 24 * 3600,
    "hours": 3600,
    "minutes": 60,
    "seconds": 1,
}

_MAX_NAME_BYTES = 255


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_duration(amount: int, unit: str) -> float:
    """Convert an amount of a unit into seconds.

    Args:
        amount: The number of units.
        unit: One of ``days``, ``hours``, ``minutes``, ``seconds``.

    Returns:
        The duration in seconds. Not range-checked.

    Raises:
        InvalidArgument: If the unit is unknown.
        LifetimeExceeded: If the duration does not fit in a float.
    """
    try:
        factor = DURATION_UNITS[unit]
    except KeyError:
        raise InvalidArgument(f"Cannot convert duration to unit {unit!r}") from None
    try:
        return float(amount * factor)
    except OverflowError:
        raise LifetimeExceeded("Duration too long") from None


def validate_display_name(name: str) -> str:
    """Validate a user-supplied file name.

    Path components are stripped, so ``"dir/report.pdf"`` becomes
    ``"report.pdf"``.

    Returns:
        The cleaned name.

    Raises:
        InvalidArgument: If the name is empty, too long, not encodable
            as UTF-8, or contains control characters.
    """
    cleaned = name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not cleaned or cleaned in (".", ".."):
        raise InvalidArgument("File name must not be empty")
    try:
        encoded = cleaned.encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidArgument("File name is not valid UTF-8") from None
    if len(encoded) > _MAX_NAME_BYTES:
        raise InvalidArgument(f"File name exceeds {_MAX_NAME_BYTES} bytes")
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in cleaned):
        raise InvalidArgument("File name contains control characters")
    return cleaned


def validate_object_id(object_id: str) -> str:
    """Validate an object id taken from a URL.

    Returns:
        The canonical (lowercase, hyphenated) form of the id.

    Raises:
        InvalidArgument: If the id is not a UUID.
    """
    try:
        return str(uuid.UUID(object_id))
    except ValueError:
        raise InvalidArgument(f"Invalid file id: {object_id!r}") from None
