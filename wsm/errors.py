"""
Error kinds raised by the survey loops and the record store.
"""

from enum import Enum
from typing import Iterable, Optional


class UnavailableReason(str, Enum):
    RADIO_DISABLED = "radio_disabled"
    LOCATION_DISABLED = "location_disabled"
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    SCAN_FAILED = "scan_failed"


class ScanUnavailable(Exception):
    """
    Base for every reason a scan or position fix cannot be performed.
    """
    reason: UnavailableReason
    message = "Scanning is unavailable."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class RadioDisabled(ScanUnavailable):
    reason = UnavailableReason.RADIO_DISABLED
    message = "Wi-Fi is disabled. Please enable it to scan."


class LocationDisabled(ScanUnavailable):
    reason = UnavailableReason.LOCATION_DISABLED
    message = "Location services are disabled. Please enable them to scan."


class PermissionDenied(ScanUnavailable):
    reason = UnavailableReason.PERMISSION_DENIED
    message = "Location and Wi-Fi permissions denied"


class PositionUnavailable(ScanUnavailable):
    reason = UnavailableReason.POSITION_UNAVAILABLE
    message = "Unable to get location. Ensure location services are enabled."


class ScanFailed(ScanUnavailable):
    """
    The radio backend itself failed (command error, timeout, missing tool).
    """
    reason = UnavailableReason.SCAN_FAILED
    message = "Wi-Fi scan failed. Retrying."


class PersistenceFailure(Exception):
    """
    Raised by the DAO when a write or read against SQLite fails.
    """


class InvalidTransition(RuntimeError):
    pass


class CampaignActive(RuntimeError):
    pass


# lower value wins
_PRIORITY = {
    UnavailableReason.RADIO_DISABLED: 0,
    UnavailableReason.LOCATION_DISABLED: 1,
    UnavailableReason.PERMISSION_DENIED: 2,
    UnavailableReason.POSITION_UNAVAILABLE: 3,
    UnavailableReason.SCAN_FAILED: 4,
}


def most_specific(errors: Iterable[Optional[ScanUnavailable]]) -> Optional[ScanUnavailable]:
    """
    Pick the error the status surface should show.

    Radio and location toggles outrank permission problems, which outrank a
    failed position fix, which outranks a failed scan. ``None`` entries are ignored.
    """
    known = [e for e in errors if e is not None]
    if not known:
        return None
    return min(known, key=lambda e: _PRIORITY[e.reason])
