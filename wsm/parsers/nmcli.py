"""
NetworkManager parser: turn `nmcli -t -f BSSID,SSID,SIGNAL dev wifi list`
output into access-point records.
"""

import re
from typing import Iterator, Optional

from wsm.utils.validate import AccessPoint

# terse mode escapes ':' inside fields as '\:'
_FIELD_SPLIT = re.compile(r"(?<!\\):")


def percent_to_dbm(percent: int) -> int:
    """
    Convert NetworkManager's 0-100 signal quality to dBm.

    Parameters
    ----------
    percent : int
        Signal quality as printed by nmcli.

    Returns
    -------
    int
        Approximate RSSI in dBm (quality / 2 - 100).
    """
    percent = max(0, min(100, percent))
    return int(round(percent / 2 - 100))


def _unescape(field: str) -> str:
    return field.replace("\\:", ":").replace("\\\\", "\\")


def parse_line(line: str) -> Optional[AccessPoint]:
    """
    Parse one terse-mode line `BSSID:SSID:SIGNAL`. Returns None for junk.
    """
    parts = _FIELD_SPLIT.split(line.strip())
    if len(parts) < 3:
        return None
    bssid = _unescape(parts[0]).strip().upper()
    signal = parts[-1].strip()
    ssid = _unescape(":".join(parts[1:-1])).strip()
    if not bssid or not signal.isdigit():
        return None
    return AccessPoint(
        id=bssid,
        name=ssid or None,
        signal_strength=percent_to_dbm(int(signal)),
    )


def parse_scan(output: str) -> Iterator[AccessPoint]:
    """
    Yield one AccessPoint per parseable line, keeping the first entry per BSSID.
    """
    seen: set[str] = set()
    for line in output.splitlines():
        ap = parse_line(line)
        if ap is None or ap.id in seen:
            continue
        seen.add(ap.id)
        yield ap
