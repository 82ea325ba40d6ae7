import asyncio

import pytest

from conftest import FakeRadio, RecordingResolver, ap
from wsm.analysis.config import SurveyConfig
from wsm.errors import CampaignActive, InvalidTransition, PersistenceFailure
from wsm.sampling.campaign import AbortReason, CampaignState
from wsm.sampling.coordinator import Mode, SurveyCoordinator
from wsm.sources.labels import PendingLabelResolver
from wsm.sources.nmcli import CommandFailed

KEY = "lat=40.713,lon=-74.006"


def _cfg(samples=3, sample_interval=0.01):
    return SurveyConfig(
        samples_per_campaign=samples,
        sample_interval=sample_interval,
        cooldown=0.01,
        location_interval=0.01,
        detection_interval=0.01,
        error_interval=0.01,
        max_idle_rounds=3,
    )


def _coordinator(dao, position, radio=None, resolver=None, **cfg):
    radio = radio or FakeRadio(default=[ap("AA:BB", -50, "net")])
    return SurveyCoordinator(radio, position, dao, resolver=resolver, cfg=_cfg(**cfg))


@pytest.mark.asyncio
async def test_idle_loops_track_and_detect(dao, position, wait_until):
    resolver = RecordingResolver("Lab")
    coord = _coordinator(dao, position, resolver=resolver)
    await coord.start()
    try:
        await wait_until(lambda: coord.status.detected == 1 and coord.status.location_label == "Lab")
        await asyncio.sleep(0.05)
        assert resolver.keys == [KEY]
        assert coord.status.can_start
        assert coord.mode is Mode.IDLE
    finally:
        await coord.shutdown()
    assert coord.mode is Mode.STOPPED
    assert dao.count() > 0


@pytest.mark.asyncio
async def test_no_idle_tick_overlaps_a_campaign(dao, position, wait_until):
    coord = _coordinator(dao, position, resolver=RecordingResolver())
    seen = []

    def wrap(fn):
        async def wrapped():
            seen.append(coord.campaign.state.value if coord.campaign else None)
            try:
                # widen the window in which a campaign could start mid-tick
                await asyncio.sleep(0.005)
                return await fn()
            finally:
                seen.append(coord.campaign.state.value if coord.campaign else None)
        return wrapped

    coord.tracker.refresh = wrap(coord.tracker.refresh)
    coord.scheduler.tick = wrap(coord.scheduler.tick)

    await coord.start()
    try:
        await wait_until(lambda: coord.status.detected == 1)
        await coord.start_campaign()
        result = await coord.wait_campaign()
        assert result.state is CampaignState.DONE
        await wait_until(lambda: len(seen) > 4)
    finally:
        await coord.shutdown()

    assert set(seen) <= {None, "init"}


@pytest.mark.asyncio
async def test_campaign_result_and_status(dao, position, wait_until):
    coord = _coordinator(dao, position, resolver=RecordingResolver())
    statuses = []
    coord.subscribe(statuses.append)
    await coord.start()
    try:
        await wait_until(lambda: coord.status.can_start)
        await coord.start_campaign()
        result = await coord.wait_campaign()
    finally:
        await coord.shutdown()

    assert result.state is CampaignState.DONE
    assert result.averages == {"AA:BB": -50}
    assert coord.campaign is None
    sampling = [s for s in statuses if s.campaign_state == "sampling"]
    assert sampling and sampling[-1].rounds_target == 3
    assert all(s.locked for s in sampling)
    assert any(s.campaign_state == "cooldown" for s in statuses)


@pytest.mark.asyncio
async def test_second_start_is_rejected(dao, position, wait_until):
    coord = _coordinator(dao, position, samples=500, sample_interval=0.01)
    await coord.start()
    try:
        await coord.start_campaign()
        with pytest.raises(CampaignActive):
            await coord.start_campaign()
        result = await coord.stop_campaign()
    finally:
        await coord.shutdown()
    assert result.state is CampaignState.ABORTED
    assert result.reason is AbortReason.CANCELLED


@pytest.mark.asyncio
async def test_start_requires_running_loops(dao, position):
    coord = _coordinator(dao, position)
    with pytest.raises(InvalidTransition):
        await coord.start_campaign()


@pytest.mark.asyncio
async def test_abort_then_recover(dao, position, wait_until):
    coord = _coordinator(dao, position, resolver=RecordingResolver())
    await coord.start()
    try:
        await wait_until(lambda: coord.status.can_start)
        position.enabled = False
        await coord.start_campaign()
        result = await coord.wait_campaign()
        assert result.reason is AbortReason.LOCATION_DISABLED
        assert coord.mode is Mode.IDLE
        await wait_until(lambda: coord.status.error_reason == "location_disabled")
        assert not coord.status.can_start

        position.enabled = True
        await wait_until(lambda: coord.status.can_start)
        await coord.start_campaign()
        result = await coord.wait_campaign()
        assert result.state is CampaignState.DONE
    finally:
        await coord.shutdown()


@pytest.mark.asyncio
async def test_permission_denial_needs_explicit_grant(dao, position, wait_until):
    radio = FakeRadio(default=[ap("A", -50)])
    radio.denied = True
    coord = _coordinator(dao, position, radio=radio)
    await coord.start()
    try:
        await wait_until(lambda: coord.status.error_reason == "permission_denied")
        radio.denied = False
        await asyncio.sleep(0.05)
        assert coord.status.error_reason == "permission_denied"

        coord.grant_permissions()
        await wait_until(lambda: coord.status.error is None and coord.status.detected == 1)
    finally:
        await coord.shutdown()


@pytest.mark.asyncio
async def test_radio_error_outranks_location_error(dao, position, wait_until):
    position.fix = None
    coord = _coordinator(dao, position, radio=FakeRadio(enabled=False))
    await coord.start()
    try:
        await wait_until(lambda: coord.status.error_reason is not None)
        await asyncio.sleep(0.05)
        assert coord.status.error_reason == "radio_disabled"
        assert coord.status.error == "Wi-Fi is disabled. Please enable it to scan."
    finally:
        await coord.shutdown()


@pytest.mark.asyncio
async def test_observers_only_see_changes(dao, position, wait_until):
    coord = _coordinator(dao, position, resolver=RecordingResolver())
    statuses = []
    unsubscribe = coord.subscribe(statuses.append)
    await coord.start()
    try:
        await wait_until(lambda: coord.status.can_start)
        await asyncio.sleep(0.05)
    finally:
        await coord.shutdown()
    unsubscribe()
    assert statuses
    assert all(a != b for a, b in zip(statuses, statuses[1:]))


@pytest.mark.asyncio
async def test_pending_label_answer_reaches_status(dao, position, wait_until):
    resolver = PendingLabelResolver()
    coord = _coordinator(dao, position, resolver=resolver)
    await coord.start()
    try:
        await wait_until(lambda: resolver.pending == [KEY])
        assert coord.status.location_label is None
        assert resolver.answer(KEY, "  ")
        await wait_until(lambda: coord.status.location_label == "Unknown Location")
    finally:
        await coord.shutdown()


@pytest.mark.asyncio
async def test_shutdown_is_idempotent(dao, position):
    coord = _coordinator(dao, position)
    await coord.start()
    await coord.shutdown()
    await coord.shutdown()
    assert coord.mode is Mode.STOPPED


@pytest.mark.asyncio
async def test_location_permission_denial_pauses_tracking(dao, position, wait_until):
    position.denied = True
    coord = _coordinator(dao, position)
    await coord.start()
    try:
        await wait_until(lambda: coord.status.error_reason == "permission_denied")
        calls = position.calls
        position.denied = False
        await asyncio.sleep(0.05)
        assert position.calls == calls
        assert not coord.tracker.anchor.known

        coord.grant_permissions()
        await wait_until(lambda: coord.tracker.anchor.key == KEY and coord.status.error is None)
    finally:
        await coord.shutdown()


@pytest.mark.asyncio
async def test_detection_survives_radio_errors(dao, position, wait_until):
    radio = FakeRadio(
        default=[ap("A", -50)],
        fail_at={
            2: CommandFailed(["nmcli", "dev", "wifi", "list"], 10, "Error: Wi-Fi scan failed"),
            3: RuntimeError("driver went away"),
        },
    )
    coord = _coordinator(dao, position, radio=radio)
    await coord.start()
    try:
        await wait_until(lambda: radio.calls >= 5 and coord.status.error is None)
        assert coord.status.detected == 1
        assert not any(task.done() for task in coord._loops)
    finally:
        await coord.shutdown()


@pytest.mark.asyncio
async def test_location_survives_store_errors(dao, position, wait_until):
    coord = _coordinator(dao, position, resolver=RecordingResolver("Lab"))
    lookups = []
    label_for = dao.label_for

    def flaky_label_for(key):
        lookups.append(key)
        if len(lookups) == 1:
            raise PersistenceFailure("database is locked")
        return label_for(key)

    dao.label_for = flaky_label_for
    await coord.start()
    try:
        await wait_until(lambda: coord.status.location_label == "Lab")
        calls = position.calls
        await wait_until(lambda: position.calls > calls + 2)
        assert len(lookups) >= 2
        assert not any(task.done() for task in coord._loops)
    finally:
        await coord.shutdown()


@pytest.mark.asyncio
async def test_scan_failure_mid_campaign_returns_to_idle(dao, position, wait_until):
    radio = FakeRadio(default=[ap("A", -50)])
    coord = _coordinator(dao, position, radio=radio, resolver=RecordingResolver())
    await coord.start()
    try:
        await wait_until(lambda: coord.status.can_start)
        radio.fail_at[radio.calls + 2] = OSError("nmcli vanished")
        await coord.start_campaign()
        result = await asyncio.wait_for(coord.wait_campaign(), timeout=2.0)
        assert result.state is CampaignState.ABORTED
        assert result.reason is AbortReason.SCAN_FAILED
        assert coord.last_result is result
        assert coord.mode is Mode.IDLE
        assert coord.campaign is None

        await wait_until(lambda: coord.status.can_start)
        await coord.start_campaign()
        result = await coord.wait_campaign()
        assert result.state is CampaignState.DONE
    finally:
        await coord.shutdown()
