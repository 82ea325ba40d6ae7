"""
ScanScheduler: passive access-point detection between campaigns.
"""

from __future__ import annotations

import time
from typing import Callable

from wsm.errors import PermissionDenied, PersistenceFailure
from wsm.sampling.tracker import LocationTracker
from wsm.sources.base import PositionSource, RadioSource, check_preconditions
from wsm.storage.dao import DAO
from wsm.utils.log import get_logger
from wsm.utils.validate import AccessPoint, Observation

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def observation_for(
    ap: AccessPoint,
    tracker: LocationTracker,
    captured_at: int,
    display_name: str | None = None,
) -> Observation:
    """
    Tag a scan result with the current anchor.
    """
    anchor = tracker.anchor
    return Observation(
        access_point_id=ap.id,
        display_name=display_name,
        signal_strength=ap.signal_strength,
        captured_at=captured_at,
        location_key=anchor.key,
        location_label=anchor.label,
    )


class ScanScheduler:
    """
    One tick = precondition check, one scan, persist every result.

    A permission denial sticks until ``grant_permissions`` is called; the
    other failures are re-evaluated on every tick.
    """
    def __init__(
        self,
        radio: RadioSource,
        position: PositionSource,
        dao: DAO,
        tracker: LocationTracker,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.radio = radio
        self.position = position
        self.dao = dao
        self.tracker = tracker
        self.clock = clock
        self.permission_denied = False
        self.last_scan: list[AccessPoint] = []

    def grant_permissions(self) -> None:
        self.permission_denied = False

    async def tick(self) -> list[AccessPoint]:
        if self.permission_denied:
            raise PermissionDenied()
        try:
            await check_preconditions(self.radio, self.position)
            access_points = await self.radio.scan()
        except PermissionDenied:
            self.permission_denied = True
            self.last_scan = []
            raise
        except Exception:
            self.last_scan = []
            raise

        captured_at = self.clock()
        for ap in access_points:
            try:
                self.dao.insert(observation_for(ap, self.tracker, captured_at, ap.name))
            except PersistenceFailure as err:
                logger.error("Failed to log passive observation: %s", err)
        self.last_scan = access_points
        if access_points:
            logger.debug("APs detected: %d", len(access_points))
        else:
            logger.warning("No APs detected")
        return access_points
