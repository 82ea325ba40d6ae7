"""
SamplingCampaign: average many scans at one locked location.

State machine
-------------
init -> location_lock -> sampling -> aggregate -> cooldown -> done
  any of init / location_lock / sampling -> aborted

Raw observations are written as each round completes so partial progress
survives an abort; one averaged observation per access point is written only
after all N rounds.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine, Optional, TypeVar

from wsm.analysis.config import SurveyConfig
from wsm.analysis.types import CampaignAccumulator
from wsm.errors import InvalidTransition, PersistenceFailure, ScanUnavailable
from wsm.sampling.scheduler import now_ms, observation_for
from wsm.sampling.tracker import LocationTracker
from wsm.sources.base import PositionSource, RadioSource, check_preconditions
from wsm.storage.dao import DAO
from wsm.utils.log import get_logger
from wsm.utils.validate import AccessPoint, Observation

logger = get_logger(__name__)

T = TypeVar("T")


class CampaignState(str, Enum):
    INIT = "init"
    LOCATION_LOCK = "location_lock"
    SAMPLING = "sampling"
    AGGREGATE = "aggregate"
    COOLDOWN = "cooldown"
    DONE = "done"
    ABORTED = "aborted"


class AbortReason(str, Enum):
    RADIO_DISABLED = "radio_disabled"
    LOCATION_DISABLED = "location_disabled"
    POSITION_UNAVAILABLE = "position_unavailable"
    PERMISSION_DENIED = "permission_denied"
    CANCELLED = "cancelled"
    NO_ACCESS_POINTS = "no_access_points"
    SCAN_FAILED = "scan_failed"


_TRANSITIONS: dict[CampaignState, set[CampaignState]] = {
    CampaignState.INIT: {CampaignState.LOCATION_LOCK, CampaignState.ABORTED},
    CampaignState.LOCATION_LOCK: {CampaignState.SAMPLING, CampaignState.ABORTED},
    CampaignState.SAMPLING: {CampaignState.AGGREGATE, CampaignState.ABORTED},
    CampaignState.AGGREGATE: {CampaignState.COOLDOWN},
    CampaignState.COOLDOWN: {CampaignState.DONE},
    CampaignState.DONE: set(),
    CampaignState.ABORTED: set(),
}


@dataclass
class CampaignResult:
    state: CampaignState
    rounds_completed: int
    location_key: Optional[str] = None
    reason: Optional[AbortReason] = None
    message: Optional[str] = None
    averages: dict[str, int] = field(default_factory=dict)
    failed_writes: list[str] = field(default_factory=list)


class _Stopped(Exception):
    pass


class _NoAccessPoints(Exception):
    """Sampling saw nothing for too many rounds in a row."""


class SamplingCampaign:
    """
    Single-use runner for one campaign. Create a new instance per start request.
    """
    def __init__(
        self,
        radio: RadioSource,
        position: PositionSource,
        dao: DAO,
        tracker: LocationTracker,
        cfg: SurveyConfig,
        on_progress: Optional[Callable[[SamplingCampaign], None]] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.radio = radio
        self.position = position
        self.dao = dao
        self.tracker = tracker
        self.cfg = cfg
        self.on_progress = on_progress
        self.clock = clock
        self.state = CampaignState.INIT
        self.accumulator: Optional[CampaignAccumulator] = None
        self.last_scan: list[AccessPoint] = []
        self.rounds_completed = 0
        self._stop = asyncio.Event()
        self._started = False

    @property
    def target(self) -> int:
        return self.cfg.samples_per_campaign

    @property
    def finished(self) -> bool:
        return self.state in (CampaignState.DONE, CampaignState.ABORTED)

    def stop(self) -> None:
        """
        Request cancellation. Takes effect at the next round boundary, or
        immediately while waiting for the location fix or between rounds.
        """
        if not self.finished:
            logger.info("Stop requested in state %s", self.state.value)
        self._stop.set()

    def _transition(self, new: CampaignState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"campaign cannot go from {self.state.value} to {new.value}")
        logger.info("Campaign %s -> %s", self.state.value, new.value)
        self.state = new
        self._notify()

    def _notify(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self)

    async def _pause(self, seconds: float) -> None:
        """
        Sleep, but wake early and raise if a stop is requested.
        """
        if self._stop.is_set():
            raise _Stopped()
        if seconds <= 0:
            await asyncio.sleep(0)
        else:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        if self._stop.is_set():
            raise _Stopped()

    async def _unless_stopped(self, coro: Coroutine[Any, Any, T]) -> T:
        """
        Await ``coro``, abandoning it and raising _Stopped if a stop request
        arrives first.
        """
        if self._stop.is_set():
            coro.close()
            raise _Stopped()
        work = asyncio.ensure_future(coro)
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            stopper.cancel()
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise _Stopped()
        return work.result()

    async def run(self) -> CampaignResult:
        if self._started:
            raise InvalidTransition("campaign already ran")
        self._started = True
        try:
            await check_preconditions(self.radio, self.position)
            if self._stop.is_set():
                raise _Stopped()

            self._transition(CampaignState.LOCATION_LOCK)
            await self._unless_stopped(self.tracker.lock())

            self._transition(CampaignState.SAMPLING)
            self.accumulator = CampaignAccumulator()
            await self._sample()
        except ScanUnavailable as err:
            return self._abort(AbortReason(err.reason.value), err.message)
        except _NoAccessPoints:
            return self._abort(AbortReason.NO_ACCESS_POINTS, "No access points detected. Scanning stopped.")
        except _Stopped:
            return self._abort(AbortReason.CANCELLED, "Scanning stopped.")
        except asyncio.CancelledError:
            self._abort(AbortReason.CANCELLED, "Scanning cancelled.")
            raise
        except Exception as err:
            logger.exception("Sampling round failed")
            return self._abort(AbortReason.SCAN_FAILED, f"Scanning failed: {err}")

        self._transition(CampaignState.AGGREGATE)
        averages, failed = self._aggregate()
        self._transition(CampaignState.COOLDOWN)
        try:
            await self._pause(self.cfg.cooldown)
        except _Stopped:
            logger.info("Cooldown cut short by stop request")
        key = self.tracker.anchor.key
        self.tracker.release()
        self.accumulator = None
        self._transition(CampaignState.DONE)
        return CampaignResult(
            state=self.state,
            rounds_completed=self.rounds_completed,
            location_key=key,
            averages=averages,
            failed_writes=failed,
            message=f"Scan completed. {self.rounds_completed} samples saved.",
        )

    async def _sample(self) -> None:
        acc = self.accumulator
        idle_rounds = 0
        while acc.rounds_completed < self.target:
            if self._stop.is_set():
                raise _Stopped()
            await check_preconditions(self.radio, self.position)
            access_points = await self.radio.scan()
            self.last_scan = access_points
            if access_points:
                idle_rounds = 0
                self._record_round(access_points)
                self.rounds_completed = acc.complete_round()
                logger.debug("Round %d/%d: %d APs", acc.rounds_completed, self.target, len(access_points))
            else:
                idle_rounds += 1
                logger.warning("Empty scan during sampling (%d in a row)", idle_rounds)
                if idle_rounds >= self.cfg.max_idle_rounds:
                    raise _NoAccessPoints()
            self._notify()
            if acc.rounds_completed < self.target:
                await self._pause(self.cfg.sample_interval)

    def _record_round(self, access_points: list[AccessPoint]) -> None:
        captured_at = self.clock()
        for ap in access_points:
            self.accumulator.add(ap.id, ap.signal_strength)
            try:
                self.dao.insert(observation_for(ap, self.tracker, captured_at, ap.name))
            except PersistenceFailure as err:
                logger.error("Failed to save raw sample for %s: %s", ap.id, err)

    def _aggregate(self) -> tuple[dict[str, int], list[str]]:
        """
        Write one averaged observation per access point, best effort.
        """
        anchor = self.tracker.anchor
        captured_at = self.clock()
        averages = self.accumulator.averages()
        failed: list[str] = []
        for ap_id, mean in averages.items():
            record = Observation(
                access_point_id=ap_id,
                display_name=None,
                signal_strength=mean,
                captured_at=captured_at,
                location_key=anchor.key,
                location_label=anchor.label,
            )
            try:
                self.dao.insert(record)
            except PersistenceFailure as err:
                logger.error("Failed to save averaged record for %s: %s", ap_id, err)
                failed.append(ap_id)
                continue
            logger.debug("Saved data for BSSID: %s, RSSI: %d at %s", ap_id, mean, anchor.key)
        logger.info(
            "Averaged %d access points over %d rounds at %s",
            len(averages) - len(failed), self.rounds_completed, anchor.key,
        )
        return averages, failed

    def _abort(self, reason: AbortReason, message: str) -> CampaignResult:
        logger.warning("Campaign aborted: %s", message)
        # a dropped anchor forces a fresh fix once tracking resumes
        key = self.tracker.anchor.key
        self.tracker.release(reset=True)
        self.accumulator = None
        self._transition(CampaignState.ABORTED)
        return CampaignResult(
            state=self.state,
            rounds_completed=self.rounds_completed,
            location_key=key,
            reason=reason,
            message=message,
        )
