"""
LocationTracker: turns raw position fixes into the anchored location used to
tag observations, and asks for a human label once per new anchor.
"""

from __future__ import annotations

from typing import Callable, Optional

from wsm.analysis.types import AnchoredLocation, Coordinate
from wsm.errors import PersistenceFailure, PositionUnavailable, ScanUnavailable
from wsm.sources.base import PositionSource
from wsm.storage.dao import DAO
from wsm.utils.geo import round_coordinate
from wsm.utils.log import get_logger

logger = get_logger(__name__)


class LocationTracker:
    """
    Owns the AnchoredLocation. All mutation happens on the coordinating
    event loop, so no locking is needed.
    """
    def __init__(
        self,
        position: PositionSource,
        dao: DAO,
        on_label_request: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.position = position
        self.dao = dao
        self.on_label_request = on_label_request
        self.anchor = AnchoredLocation.unknown()

    async def refresh(self) -> AnchoredLocation:
        """
        Take one fix and re-anchor if the rounded coordinate moved.

        A locked anchor is left untouched. A failed fix resets the anchor to
        the unknown sentinel and re-raises.
        """
        if self.anchor.locked:
            return self.anchor
        coord = await self._fix()
        self._anchor_to(coord)
        return self.anchor

    async def lock(self) -> AnchoredLocation:
        """
        Take one fix, anchor to it and freeze the anchor for a campaign.
        """
        self.anchor.locked = False
        coord = await self._fix()
        self._anchor_to(coord)
        self.anchor.locked = True
        logger.info("Location locked at %s", self.anchor.key)
        return self.anchor

    def release(self, reset: bool = False) -> None:
        """
        Unfreeze the anchor. With ``reset`` the anchor is dropped as well.
        """
        if reset:
            self.reset()
        else:
            self.anchor.locked = False
        logger.info("Location released (reset=%s)", reset)

    def reset(self) -> None:
        self.anchor = AnchoredLocation.unknown()

    def apply_label(self, key: str, label: str) -> bool:
        """
        Attach a resolved label if the anchor has not moved since the request.
        """
        if self.anchor.key != key:
            logger.debug("Dropping label %r for stale anchor %s", label, key)
            return False
        self.anchor.label = label
        logger.info("Location %s labelled %r", key, label)
        return True

    async def _fix(self) -> Coordinate:
        try:
            coord = await self.position.last_known()
        except ScanUnavailable:
            self.reset()
            raise
        except Exception as err:
            logger.warning("Position fix failed: %s", err)
            self.reset()
            raise PositionUnavailable() from err
        if coord is None:
            self.reset()
            raise PositionUnavailable()
        return coord

    def _anchor_to(self, coord: Coordinate) -> None:
        lat = round_coordinate(coord.latitude)
        lon = round_coordinate(coord.longitude)
        # compared after rounding
        if not self.anchor.same_place(lat, lon):
            self.anchor = AnchoredLocation(latitude=lat, longitude=lon, known=True)
            logger.info("Anchored at %s", self.anchor.key)
        self._resolve_label()

    def _resolve_label(self) -> None:
        anchor = self.anchor
        if anchor.label is not None:
            return
        try:
            stored = self.dao.label_for(anchor.key)
        except PersistenceFailure as err:
            # retried on the next refresh
            logger.warning("Label lookup for %s failed: %s", anchor.key, err)
            return
        if stored is not None:
            anchor.label = stored
            anchor.label_requested = True
            return
        if anchor.label_requested:
            return
        anchor.label_requested = True
        logger.info("Requesting label for %s", anchor.key)
        if self.on_label_request is not None:
            self.on_label_request(anchor.key)
