"""
LabelResolvers: ways of asking a person what a location is called.
"""

import asyncio
from typing import Callable, Optional

from wsm.utils.log import get_logger

logger = get_logger(__name__)


class FixedLabelResolver:
    """
    Answers every request with the same label (``--label`` on the CLI).
    """
    def __init__(self, label: Optional[str]):
        self.label = label

    async def request_label(self, location_key: str) -> Optional[str]:
        return self.label


class PendingLabelResolver:
    """
    Parks each request until someone answers it, over HTTP or from the
    terminal reader. ``on_request`` is told about every newly parked key.
    """
    def __init__(self, on_request: Optional[Callable[[str], None]] = None) -> None:
        self.on_request = on_request
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def pending(self) -> list[str]:
        return [key for key, fut in self._pending.items() if not fut.done()]

    async def request_label(self, location_key: str) -> Optional[str]:
        fut = self._pending.get(location_key)
        if fut is None or fut.done():
            fut = asyncio.get_running_loop().create_future()
            self._pending[location_key] = fut
            logger.debug("Label request parked for %s", location_key)
            if self.on_request is not None:
                self.on_request(location_key)
        try:
            return await fut
        finally:
            if self._pending.get(location_key) is fut:
                del self._pending[location_key]

    def answer(self, location_key: str, label: Optional[str]) -> bool:
        """
        Resolve a parked request. Returns False if nothing was waiting.
        """
        fut = self._pending.get(location_key)
        if fut is None or fut.done():
            return False
        fut.set_result(label)
        return True

    def cancel_all(self) -> None:
        for key in self.pending:
            self.answer(key, None)
