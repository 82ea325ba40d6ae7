"""
Pydantic schemas for scan results, stored observations and report rows.
"""

from typing import Optional
from pydantic import BaseModel


class AccessPoint(BaseModel):
    """
    One access point as reported by a single radio scan.
    """
    id: str
    name: Optional[str] = None
    signal_strength: int


class Observation(BaseModel):
    """
    Normalized record for a single stored signal-strength reading.
    """
    access_point_id: str
    display_name: Optional[str] = None
    signal_strength: int
    captured_at: int
    location_key: Optional[str] = None
    location_label: Optional[str] = None
    id: Optional[int] = None


class AccessPointSummary(BaseModel):
    """
    Statistics for one access point at one location.
    """
    access_point_id: str
    display_name: str
    count: int
    mean: float
    minimum: int
    maximum: int


class LocationSummary(BaseModel):
    """
    All access-point statistics recorded at one location key.
    """
    location_key: str
    latitude: float
    longitude: float
    label: Optional[str] = None
    access_points: list[AccessPointSummary] = []


class Status(BaseModel):
    """
    Snapshot of what the status surface shows. Compared by value so observers
    are only notified on change.
    """
    mode: str
    location_label: Optional[str] = None
    latitude: float = 0.0
    longitude: float = 0.0
    locked: bool = False
    detected: int = 0
    campaign_state: Optional[str] = None
    rounds_completed: int = 0
    rounds_target: int = 0
    error: Optional[str] = None
    error_reason: Optional[str] = None
    can_start: bool = False


class LabelAnswer(BaseModel):
    location_key: str
    label: Optional[str] = None


class RenameRequest(BaseModel):
    access_point_id: str
    display_name: str
    location_key: str
