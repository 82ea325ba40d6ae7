# wsm/analysis/types.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from wsm.utils.geo import location_key

UNKNOWN_LOCATION = "Unknown Location"


@dataclass(frozen=True)
class Coordinate:
    """
    Raw position fix.

    Parameters
    ----------
    latitude : float
        Latitude in decimal degrees.
    longitude : float
        Longitude in decimal degrees.
    """
    latitude: float
    longitude: float


@dataclass
class AnchoredLocation:
    """
    Rounded coordinate currently used to tag observations.

    Parameters
    ----------
    latitude : float
        Rounded latitude (three decimals).
    longitude : float
        Rounded longitude (three decimals).
    known : bool
        False for the "unknown" sentinel used after a failed fix.
    label : Optional[str]
        Human label, once resolved.
    label_requested : bool
        Whether a label request was already issued for this anchor.
    locked : bool
        Frozen by a running sampling campaign.
    """
    latitude: float = 0.0
    longitude: float = 0.0
    known: bool = False
    label: Optional[str] = None
    label_requested: bool = False
    locked: bool = False

    @classmethod
    def unknown(cls) -> AnchoredLocation:
        return cls()

    @property
    def key(self) -> Optional[str]:
        if not self.known:
            return None
        return location_key(self.latitude, self.longitude)

    def same_place(self, latitude: float, longitude: float) -> bool:
        return self.known and (self.latitude, self.longitude) == (latitude, longitude)


@dataclass
class CampaignAccumulator:
    """
    Per-access-point readings collected by one campaign.

    Parameters
    ----------
    readings : Dict[str, List[int]]
        Access-point id to the signal strengths seen, in round order.
    rounds_completed : int
        Number of scan rounds fully processed.
    """
    readings: Dict[str, List[int]] = field(default_factory=dict)
    rounds_completed: int = 0

    def add(self, access_point_id: str, signal_strength: int) -> None:
        self.readings.setdefault(access_point_id, []).append(signal_strength)

    def complete_round(self) -> int:
        self.rounds_completed += 1
        return self.rounds_completed

    def averages(self) -> Dict[str, int]:
        return {ap_id: truncated_mean(values) for ap_id, values in self.readings.items()}


def truncated_mean(values: List[int]) -> int:
    """
    Integer mean truncated toward zero, computed without floating point.

    >>> truncated_mean([-40, -41])
    -40
    """
    if not values:
        raise ValueError("mean of empty sequence")
    total = sum(values)
    quotient = abs(total) // len(values)
    return -quotient if total < 0 else quotient
