"""
PositionSources for hosts without a platform location service.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from wsm.analysis.types import Coordinate
from wsm.utils.log import get_logger

logger = get_logger(__name__)


class FixedPositionSource:
    """
    Always reports the same coordinate, e.g. one typed in on the command line.
    """
    def __init__(self, latitude: float, longitude: float):
        self.coordinate = Coordinate(latitude, longitude)

    async def is_enabled(self) -> bool:
        return True

    async def last_known(self) -> Optional[Coordinate]:
        return self.coordinate


class _Fix(BaseModel):
    lat: float
    lon: float


class FixFilePositionSource:
    """
    Reads the latest fix from a JSON file kept up to date by a GPS logger.

    The file holds either one object ``{"lat": .., "lon": ..}`` or JSON lines,
    in which case the last line wins. Location counts as disabled while the
    file does not exist.
    """
    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def is_enabled(self) -> bool:
        return await asyncio.to_thread(self.path.exists)

    async def last_known(self) -> Optional[Coordinate]:
        try:
            text = (await asyncio.to_thread(self.path.read_text, encoding="utf-8")).strip()
        except OSError as err:
            logger.warning("Cannot read fix file %s: %s", self.path, err)
            return None
        if not text:
            return None
        last = text.splitlines()[-1]
        try:
            fix = _Fix.model_validate(json.loads(last))
        except (ValueError, ValidationError) as err:
            logger.warning("Ignoring malformed fix in %s: %s", self.path, err)
            return None
        return Coordinate(fix.lat, fix.lon)
