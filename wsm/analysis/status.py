"""
Pure projection from loop state to the status surface.
"""

from typing import Optional

from wsm.analysis.types import AnchoredLocation, UNKNOWN_LOCATION
from wsm.errors import ScanUnavailable
from wsm.utils.validate import Status


def project_status(
    mode: str,
    anchor: AnchoredLocation,
    detected: int,
    error: Optional[ScanUnavailable] = None,
    campaign_state: Optional[str] = None,
    rounds_completed: int = 0,
    rounds_target: int = 0,
) -> Status:
    """
    Build the status value for one tick. Same inputs give an equal Status.
    """
    return Status(
        mode=mode,
        location_label=anchor.label,
        latitude=anchor.latitude,
        longitude=anchor.longitude,
        locked=anchor.locked,
        detected=detected,
        campaign_state=campaign_state,
        rounds_completed=rounds_completed,
        rounds_target=rounds_target,
        error=error.message if error else None,
        error_reason=error.reason.value if error else None,
        can_start=mode == "idle" and error is None and detected > 0,
    )


def render_status(status: Status) -> str:
    """
    Render the card header text.
    """
    if status.error:
        return status.error
    lines = [
        f"You are at: {status.location_label or UNKNOWN_LOCATION}",
        f"Lat: {status.latitude:.3f}, Lon: {status.longitude:.3f}"
        + (" (Locked)" if status.locked else ""),
        "",
    ]
    if status.campaign_state == "cooldown":
        lines.append(f"Scan completed. {status.rounds_completed} samples saved.")
    else:
        lines.append(f"Detected {status.detected} APs")
        if status.campaign_state == "sampling":
            lines.append(f"Sampling: {status.rounds_completed}/{status.rounds_target}")
    return "\n".join(lines)
