# wsm/analysis/config.py

from dataclasses import dataclass

@dataclass
class SurveyConfig:
    """
    Timing and size knobs for the survey loops and sampling campaigns.

    Attributes
    ----------
    samples_per_campaign
        Completed scan rounds required before a campaign averages (N).
    sample_interval
        Pause (s) between campaign rounds.
    cooldown
        Time (s) the "scan complete" status stays up after aggregation.
    location_interval
        Period (s) of the location tracker.
    detection_interval
        Period (s) of passive access-point detection.
    error_interval
        Slower period (s) used by detection while a precondition fails.
    max_idle_rounds
        Consecutive empty scans tolerated during sampling before giving up.
    """
    samples_per_campaign: int   = 100
    sample_interval:      float = 1.0
    cooldown:             float = 5.0
    location_interval:    float = 5.0
    detection_interval:   float = 0.5
    error_interval:       float = 5.0
    max_idle_rounds:      int   = 30

    def __post_init__(self):
        if self.samples_per_campaign < 1:
            raise ValueError(f"samples_per_campaign must be >= 1, got {self.samples_per_campaign}")
        if self.max_idle_rounds < 1:
            raise ValueError(f"max_idle_rounds must be >= 1, got {self.max_idle_rounds}")

    @classmethod
    def default(cls):
        """Preset matching the handheld survey workflow."""
        return cls()

    @classmethod
    def quick(cls):
        """Preset for spot checks (fewer rounds, faster loops)."""
        return cls(
            samples_per_campaign=10,
            sample_interval=0.5,
            cooldown=2.0,
            location_interval=2.0,
            detection_interval=0.5,
            error_interval=2.0,
            max_idle_rounds=10,
        )
