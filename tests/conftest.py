"""Shared fakes for the survey loop tests."""

import asyncio
from collections import deque
from typing import Callable, Optional

import pytest

from wsm.analysis.types import Coordinate
from wsm.errors import PermissionDenied, RadioDisabled
from wsm.storage.dao import DAO
from wsm.utils.validate import AccessPoint


def ap(ap_id: str, rssi: int, name: Optional[str] = None) -> AccessPoint:
    return AccessPoint(id=ap_id, name=name, signal_strength=rssi)


class FakeRadio:
    """
    Returns queued scans in order, then ``default`` forever.
    ``disable_after`` switches the radio off after that many scans.
    ``fail_at`` maps a scan number (1-based) to the exception that scan raises.
    """
    def __init__(self, scans=None, default=None, enabled=True, disable_after=None, fail_at=None):
        self.scans = deque(scans or [])
        self.default = list(default or [])
        self.enabled = enabled
        self.denied = False
        self.disable_after = disable_after
        self.fail_at = dict(fail_at or {})
        self.calls = 0

    async def is_enabled(self) -> bool:
        return self.enabled

    async def scan(self) -> list[AccessPoint]:
        if self.denied:
            raise PermissionDenied()
        if not self.enabled:
            raise RadioDisabled()
        self.calls += 1
        if self.calls in self.fail_at:
            raise self.fail_at[self.calls]
        result = self.scans.popleft() if self.scans else self.default
        if self.disable_after is not None and self.calls >= self.disable_after:
            self.enabled = False
        return list(result)


class FakePosition:
    def __init__(self, latitude=40.7128, longitude=-74.0060, enabled=True):
        self.fix: Optional[Coordinate] = Coordinate(latitude, longitude)
        self.enabled = enabled
        self.denied = False
        self.calls = 0

    def move(self, latitude: float, longitude: float) -> None:
        self.fix = Coordinate(latitude, longitude)

    async def is_enabled(self) -> bool:
        return self.enabled

    async def last_known(self) -> Optional[Coordinate]:
        self.calls += 1
        if self.denied:
            raise PermissionDenied()
        return self.fix


class RecordingResolver:
    def __init__(self, label: Optional[str] = "Lab"):
        self.label = label
        self.keys: list[str] = []

    async def request_label(self, location_key: str) -> Optional[str]:
        self.keys.append(location_key)
        return self.label


async def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def dao(tmp_path):
    store = DAO(str(tmp_path / "test.sqlite"))
    yield store
    store.close()


@pytest.fixture
def radio():
    return FakeRadio()


@pytest.fixture
def position():
    return FakePosition()
