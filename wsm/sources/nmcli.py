"""
RadioSource backed by NetworkManager's command-line client.
"""

import asyncio
from typing import Sequence

from wsm.errors import PermissionDenied, RadioDisabled, ScanFailed
from wsm.parsers.nmcli import parse_scan
from wsm.utils.log import get_logger
from wsm.utils.validate import AccessPoint

logger = get_logger(__name__)

_DENIED_MARKERS = ("not authorized", "insufficient privileges", "permission denied")


class CommandFailed(Exception):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str):
        super().__init__(f"{' '.join(argv)} exited {returncode}: {stderr.strip()}")
        self.returncode = returncode
        self.stderr = stderr


class NmcliRadioSource:
    """
    Scan with `nmcli dev wifi rescan` followed by a terse `list`.

    A failed rescan is not fatal: nmcli still lists its cached results.
    """
    def __init__(self, interface: str | None = None, nmcli: str = "nmcli", timeout: float = 10.0):
        self.interface = interface
        self.nmcli = nmcli
        self.timeout = timeout

    async def _run(self, *args: str) -> str:
        argv = [self.nmcli, *args]
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CommandFailed(argv, -1, "timed out")
        if proc.returncode != 0:
            err = stderr.decode(errors="replace")
            if any(marker in err.lower() for marker in _DENIED_MARKERS):
                raise PermissionDenied()
            raise CommandFailed(argv, proc.returncode, err)
        return stdout.decode(errors="replace")

    async def _checked(self, *args: str) -> str:
        """
        Run nmcli and report any failure other than a denial as ScanFailed.
        """
        try:
            return await self._run(*args)
        except (CommandFailed, OSError) as err:
            logger.warning("nmcli failed: %s", err)
            raise ScanFailed() from err

    def _ifname(self) -> list[str]:
        return ["ifname", self.interface] if self.interface else []

    async def is_enabled(self) -> bool:
        out = await self._checked("radio", "wifi")
        return out.strip().lower() == "enabled"

    async def scan(self) -> list[AccessPoint]:
        if not await self.is_enabled():
            raise RadioDisabled()
        try:
            await self._run("dev", "wifi", "rescan", *self._ifname())
        except CommandFailed as err:
            logger.warning("nmcli rescan failed, using cached results: %s", err)
        out = await self._checked(
            "-t", "-f", "BSSID,SSID,SIGNAL", "dev", "wifi", "list", *self._ifname()
        )
        access_points = list(parse_scan(out))
        logger.debug("nmcli reported %d access points", len(access_points))
        return access_points
