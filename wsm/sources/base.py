"""
Interfaces of the collaborators the survey loops drive: the radio, the
position provider and whoever answers label requests.
"""

from typing import Optional, Protocol, runtime_checkable

from wsm.analysis.types import Coordinate, UNKNOWN_LOCATION
from wsm.errors import LocationDisabled, RadioDisabled
from wsm.utils.validate import AccessPoint


@runtime_checkable
class RadioSource(Protocol):
    async def is_enabled(self) -> bool:
        """Whether the Wi-Fi radio is switched on."""
        ...

    async def scan(self) -> list[AccessPoint]:
        """
        Trigger a scan and return the visible access points.

        Raises RadioDisabled or PermissionDenied when the scan cannot run.
        """
        ...


@runtime_checkable
class PositionSource(Protocol):
    async def is_enabled(self) -> bool:
        """Whether location services are switched on."""
        ...

    async def last_known(self) -> Optional[Coordinate]:
        """
        Return the last known fix, or None when no fix is available.

        Raises PermissionDenied when location access is refused.
        """
        ...


@runtime_checkable
class LabelResolver(Protocol):
    async def request_label(self, location_key: str) -> Optional[str]:
        """
        Ask for a human name for a location. None means the request was cancelled.
        """
        ...


def normalize_label(label: Optional[str]) -> str:
    """
    Blank answers and cancellations both resolve to the unknown sentinel.
    """
    if label is None:
        return UNKNOWN_LOCATION
    return label.strip() or UNKNOWN_LOCATION


async def check_preconditions(radio: RadioSource, position: PositionSource) -> None:
    """
    Raise the most specific reason scanning cannot happen right now.

    The radio is checked first so a disabled radio is reported even when
    location is off too.
    """
    if not await radio.is_enabled():
        raise RadioDisabled()
    if not await position.is_enabled():
        raise LocationDisabled()
