"""
Per-location, per-access-point statistics over everything in the record store.
"""

from __future__ import annotations

from wsm.storage.dao import DAO
from wsm.utils.geo import parse_location_key
from wsm.utils.log import get_logger
from wsm.utils.validate import AccessPointSummary, LocationSummary, Observation

logger = get_logger(__name__)

NO_DATA = "No data available"


class ResultsAggregator:
    """
    Read-only summary pass over the record store.
    """
    def __init__(self, dao: DAO) -> None:
        self.dao = dao

    def summarize(self) -> list[LocationSummary]:
        """
        Group observations by location, then by access point.

        Locations come out in the store's enumeration order and access points
        in first-seen order within their location. A location with no rows
        yields a summary with no access points.
        """
        summaries = [self._summarize_location(key) for key in self.dao.distinct_locations()]
        logger.debug("Summarized %d locations", len(summaries))
        return summaries

    def _summarize_location(self, key: str) -> LocationSummary:
        lat, lon = parse_location_key(key)
        records = self.dao.by_location(key)
        label = next((r.location_label for r in records if r.location_label), None)

        # dicts keep insertion order, which gives first-seen ordering
        groups: dict[str, list[Observation]] = {}
        for record in records:
            groups.setdefault(record.access_point_id, []).append(record)

        return LocationSummary(
            location_key=key,
            latitude=lat,
            longitude=lon,
            label=label,
            access_points=[summarize_access_point(ap_id, obs) for ap_id, obs in groups.items()],
        )


def summarize_access_point(access_point_id: str, records: list[Observation]) -> AccessPointSummary:
    values = [r.signal_strength for r in records]
    display_name = next((r.display_name for r in records if r.display_name), access_point_id)
    return AccessPointSummary(
        access_point_id=access_point_id,
        display_name=display_name,
        count=len(values),
        mean=sum(values) / len(values),
        minimum=min(values),
        maximum=max(values),
    )


def render_results(summaries: list[LocationSummary]) -> list[str]:
    """
    Flatten summaries into the text rows shown on the results screen.
    """
    if not summaries:
        return [NO_DATA]
    lines: list[str] = []
    for loc in summaries:
        header = f"Location: Lat: {loc.latitude:.6f}, Lon: {loc.longitude:.6f}"
        if loc.label:
            header += f" ({loc.label})"
        lines.append(header)
        if not loc.access_points:
            lines.append(f"  {NO_DATA}")
        for ap in loc.access_points:
            lines.append(
                f"  AP: {ap.display_name} ({ap.access_point_id}):\n"
                f"    Samples: {ap.count}\n"
                f"    Average RSSI: {ap.mean:.1f} dBm\n"
                f"    Range: {ap.minimum} to {ap.maximum} dBm"
            )
    return lines
