"""
SurveyCoordinator: the single owner of loop state.

Two periodic loops run while the coordinator is idle: location tracking and
passive access-point detection. Starting a campaign flips the mode to
``campaign``; both loops check the mode at the top of every tick, so they go
quiet without being cancelled. In-flight ticks are drained before the
campaign begins.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from wsm.analysis.config import SurveyConfig
from wsm.analysis.status import project_status
from wsm.errors import (
    CampaignActive,
    InvalidTransition,
    PermissionDenied,
    PositionUnavailable,
    ScanFailed,
    ScanUnavailable,
    most_specific,
)
from wsm.sampling.campaign import AbortReason, CampaignResult, CampaignState, SamplingCampaign
from wsm.sampling.scheduler import ScanScheduler
from wsm.sampling.tracker import LocationTracker
from wsm.sources.base import LabelResolver, PositionSource, RadioSource, normalize_label
from wsm.storage.dao import DAO
from wsm.utils.log import get_logger
from wsm.utils.validate import Status

logger = get_logger(__name__)


class Mode(str, Enum):
    STOPPED = "stopped"
    IDLE = "idle"
    CAMPAIGN = "campaign"


_MODE_TRANSITIONS: dict[Mode, set[Mode]] = {
    Mode.STOPPED: {Mode.IDLE},
    Mode.IDLE: {Mode.CAMPAIGN, Mode.STOPPED},
    Mode.CAMPAIGN: {Mode.IDLE, Mode.STOPPED},
}

StatusObserver = Callable[[Status], None]


class SurveyCoordinator:
    def __init__(
        self,
        radio: RadioSource,
        position: PositionSource,
        dao: DAO,
        resolver: Optional[LabelResolver] = None,
        cfg: Optional[SurveyConfig] = None,
    ) -> None:
        self.radio = radio
        self.position = position
        self.dao = dao
        self.resolver = resolver
        self.cfg = cfg or SurveyConfig.default()
        self.tracker = LocationTracker(position, dao, on_label_request=self._on_label_request)
        self.scheduler = ScanScheduler(radio, position, dao, self.tracker)

        self.mode = Mode.STOPPED
        self.campaign: Optional[SamplingCampaign] = None
        self.last_result: Optional[CampaignResult] = None
        self.status: Status = project_status(self.mode.value, self.tracker.anchor, 0)

        self._observers: list[StatusObserver] = []
        self._errors: dict[str, Optional[ScanUnavailable]] = {"location": None, "detection": None}
        self._closing = asyncio.Event()
        self._drained = asyncio.Event()
        self._drained.set()
        self._active_ticks = 0
        self._loops: list[asyncio.Task] = []
        self._campaign_task: Optional[asyncio.Task] = None
        self._label_tasks: set[asyncio.Task] = set()

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """
        Begin location tracking and passive detection.
        """
        self._transition(Mode.IDLE)
        self._closing.clear()
        self._loops = [
            asyncio.create_task(self._location_loop(), name="wsm-location"),
            asyncio.create_task(self._detection_loop(), name="wsm-detection"),
        ]
        self._publish()

    async def shutdown(self) -> None:
        """
        Stop everything. In-flight ticks and the current campaign round finish
        before this returns.
        """
        if self.mode is Mode.STOPPED:
            return
        logger.info("Shutting down survey loops")
        self._closing.set()
        if self.campaign is not None:
            self.campaign.stop()
        if self._campaign_task is not None:
            await asyncio.gather(self._campaign_task, return_exceptions=True)
        await asyncio.gather(*self._loops, return_exceptions=True)
        for task in list(self._label_tasks):
            task.cancel()
        await asyncio.gather(*self._label_tasks, return_exceptions=True)
        self._loops = []
        if self.mode is not Mode.STOPPED:
            self._transition(Mode.STOPPED)
        self._publish()

    # -- campaign hand-off -------------------------------------------------

    async def start_campaign(self) -> SamplingCampaign:
        """
        Suspend the idle loops and launch a sampling campaign.

        Raises CampaignActive if one is already running.
        """
        if self.mode is Mode.CAMPAIGN:
            raise CampaignActive("a sampling campaign is already running")
        if self.mode is not Mode.IDLE:
            raise InvalidTransition(f"cannot start a campaign while {self.mode.value}")
        campaign = SamplingCampaign(
            self.radio,
            self.position,
            self.dao,
            self.tracker,
            self.cfg,
            on_progress=lambda _: self._publish(),
        )
        self.campaign = campaign
        self._transition(Mode.CAMPAIGN)
        self._campaign_task = asyncio.create_task(self._run_campaign(campaign), name="wsm-campaign")
        self._publish()
        return campaign

    async def stop_campaign(self) -> Optional[CampaignResult]:
        """
        Cancel the running campaign and wait for it to unwind. With nothing
        running, returns the result of the previous campaign (None if none ran).
        """
        if self.campaign is None or self._campaign_task is None:
            return self.last_result
        self.campaign.stop()
        await asyncio.gather(self._campaign_task, return_exceptions=True)
        return self.last_result

    async def wait_campaign(self) -> Optional[CampaignResult]:
        if self._campaign_task is None:
            return self.last_result
        await asyncio.gather(self._campaign_task, return_exceptions=True)
        return self.last_result

    async def _run_campaign(self, campaign: SamplingCampaign) -> None:
        # no tick of the idle loops may overlap the campaign
        await self._drained.wait()
        try:
            self.last_result = await campaign.run()
            if self.last_result.reason is AbortReason.PERMISSION_DENIED:
                self.scheduler.permission_denied = True
        except Exception:
            logger.exception("Campaign crashed")
            self.tracker.release(reset=True)
            raise
        finally:
            if self.tracker.anchor.locked:
                self.tracker.release()
            self.campaign = None
            self._campaign_task = None
            if self.mode is Mode.CAMPAIGN:
                self._transition(Mode.IDLE)
            self._publish()
        logger.info("Campaign finished: %s", self.last_result.state.value)

    # -- permissions -------------------------------------------------------

    def grant_permissions(self) -> None:
        """
        Called after the user re-grants access; detection resumes next tick.
        """
        self.scheduler.grant_permissions()
        self._errors["detection"] = None
        self._errors["location"] = None
        self._publish()

    # -- observers ---------------------------------------------------------

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        self._observers.append(observer)
        return lambda: self._observers.remove(observer)

    def _publish(self) -> None:
        campaign = self.campaign
        if campaign is not None:
            detected = len(campaign.last_scan)
            if campaign.state is CampaignState.COOLDOWN:
                detected = 0
            status = project_status(
                self.mode.value,
                self.tracker.anchor,
                detected,
                error=None,
                campaign_state=campaign.state.value,
                rounds_completed=campaign.rounds_completed,
                rounds_target=campaign.target,
            )
        else:
            status = project_status(
                self.mode.value,
                self.tracker.anchor,
                len(self.scheduler.last_scan),
                error=most_specific(self._errors.values()),
            )
        if status == self.status:
            return
        self.status = status
        for observer in list(self._observers):
            observer(status)

    # -- loops -------------------------------------------------------------

    def _transition(self, new: Mode) -> None:
        if new not in _MODE_TRANSITIONS[self.mode]:
            raise InvalidTransition(f"coordinator cannot go from {self.mode.value} to {new.value}")
        logger.debug("Coordinator %s -> %s", self.mode.value, new.value)
        self.mode = new

    @asynccontextmanager
    async def _tick(self) -> AsyncIterator[None]:
        self._active_ticks += 1
        self._drained.clear()
        try:
            yield
        finally:
            self._active_ticks -= 1
            if not self._active_ticks:
                self._drained.set()

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._closing.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _location_loop(self) -> None:
        while not self._closing.is_set():
            # a denial stays in force until grant_permissions()
            if self.mode is Mode.IDLE and not self.scheduler.permission_denied:
                async with self._tick():
                    try:
                        await self.tracker.refresh()
                        self._errors["location"] = None
                    except PermissionDenied as err:
                        logger.warning("Location access denied: %s", err.message)
                        self.scheduler.permission_denied = True
                        self._errors["location"] = err
                    except ScanUnavailable as err:
                        if self._errors["location"] is None:
                            logger.warning("Location update failed: %s", err.message)
                        self._errors["location"] = err
                    except Exception:
                        logger.exception("Location tick failed")
                        self._errors["location"] = PositionUnavailable()
                self._publish()
            await self._pause(self.cfg.location_interval)

    async def _detection_loop(self) -> None:
        while not self._closing.is_set():
            delay = self.cfg.detection_interval
            if self.mode is Mode.IDLE:
                async with self._tick():
                    try:
                        await self.scheduler.tick()
                        self._errors["detection"] = None
                    except ScanUnavailable as err:
                        if self._errors["detection"] is None:
                            logger.warning("AP detection unavailable: %s", err.message)
                        self._errors["detection"] = err
                        delay = self.cfg.error_interval
                    except Exception:
                        logger.exception("Detection tick failed")
                        self._errors["detection"] = ScanFailed()
                        delay = self.cfg.error_interval
                self._publish()
            await self._pause(delay)

    # -- labels ------------------------------------------------------------

    def _on_label_request(self, key: str) -> None:
        if self.resolver is None:
            return
        task = asyncio.create_task(self._resolve_label(key), name=f"wsm-label-{key}")
        self._label_tasks.add(task)
        task.add_done_callback(self._label_tasks.discard)

    async def _resolve_label(self, key: str) -> None:
        label = normalize_label(await self.resolver.request_label(key))
        self.tracker.apply_label(key, label)
        self._publish()
