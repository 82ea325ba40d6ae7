import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeRadio, ap
from wsm.analysis.config import SurveyConfig
from wsm.sampling.coordinator import SurveyCoordinator
from wsm.server import create_app
from wsm.sources.labels import FixedLabelResolver, PendingLabelResolver
from wsm.utils.validate import Observation

KEY = "lat=40.713,lon=-74.006"


def _cfg(samples=3, sample_interval=0.01):
    return SurveyConfig(
        samples_per_campaign=samples,
        sample_interval=sample_interval,
        cooldown=0.01,
        location_interval=0.01,
        detection_interval=0.01,
        error_interval=0.01,
    )


def _poll(client, predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        body = client.get("/api/status").json()
        if predicate(body["status"]):
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"status never matched: {body}")
        time.sleep(0.01)


@pytest.fixture
def make_client(dao, position):
    def _make(radio=None, resolver=None, **cfg):
        radio = radio or FakeRadio(default=[ap("AA:BB", -50, "net")])
        coord = SurveyCoordinator(radio, position, dao, resolver=resolver, cfg=_cfg(**cfg))
        return TestClient(create_app("office", coord))
    return _make


def test_survey_and_status(make_client):
    with make_client(resolver=FixedLabelResolver("Desk")) as client:
        assert client.get("/api/survey").json() == {"survey": "office"}
        body = _poll(client, lambda s: s["can_start"] and s["location_label"] == "Desk")
        assert body["text"].startswith("You are at: Desk\nLat: 40.713, Lon: -74.006")
        assert "Detected 1 APs" in body["text"]


def test_campaign_runs_to_completion(make_client):
    with make_client(resolver=FixedLabelResolver("Desk")) as client:
        _poll(client, lambda s: s["can_start"])
        resp = client.post("/api/campaign")
        assert resp.status_code == 202
        assert resp.json() == {"state": "init", "target": 3}
        _poll(client, lambda s: s["mode"] == "idle")

        stopped = client.delete("/api/campaign").json()
        assert stopped["state"] == "done"

        results = client.get("/api/results").json()
        [loc] = results
        assert loc["location_key"] == KEY
        assert loc["label"] == "Desk"
        assert loc["access_points"][0]["access_point_id"] == "AA:BB"
        assert loc["access_points"][0]["display_name"] == "net"


def test_second_campaign_conflicts_and_can_be_stopped(make_client):
    with make_client(samples=500) as client:
        assert client.post("/api/campaign").status_code == 202
        assert client.post("/api/campaign").status_code == 409
        body = client.delete("/api/campaign").json()
        assert body["state"] == "aborted"
        assert body["reason"] == "cancelled"


def test_stop_without_campaign_is_404(make_client):
    with make_client() as client:
        assert client.delete("/api/campaign").status_code == 404


def test_labels_over_http(make_client):
    with make_client(resolver=PendingLabelResolver()) as client:
        deadline = time.monotonic() + 5
        while client.get("/api/labels").json()["pending"] != [KEY]:
            assert time.monotonic() < deadline
            time.sleep(0.01)
        resp = client.post("/api/labels", json={"location_key": KEY, "label": "Office"})
        assert resp.status_code == 200
        _poll(client, lambda s: s["location_label"] == "Office")

        resp = client.post("/api/labels", json={"location_key": KEY, "label": "Again"})
        assert resp.status_code == 404


def test_labels_need_a_pending_resolver(make_client):
    with make_client(resolver=FixedLabelResolver("Desk")) as client:
        resp = client.post("/api/labels", json={"location_key": KEY, "label": "x"})
        assert resp.status_code == 400


def test_permissions_endpoint_clears_denial(make_client):
    radio = FakeRadio(default=[ap("A", -50)])
    radio.denied = True
    with make_client(radio=radio) as client:
        body = _poll(client, lambda s: s["error_reason"] == "permission_denied")
        assert body["text"] == "Location and Wi-Fi permissions denied"
        radio.denied = False
        assert client.post("/api/permissions").status_code == 200
        _poll(client, lambda s: s["error"] is None and s["detected"] == 1)


def test_rename_and_reset(make_client, dao):
    # radio off so the idle loops store nothing
    with make_client(radio=FakeRadio(enabled=False)) as client:
        dao.insert(Observation(
            access_point_id="CC", signal_strength=-70, captured_at=0, location_key=KEY,
        ))
        resp = client.post(
            "/api/rename",
            json={"access_point_id": "CC", "display_name": "printer", "location_key": KEY},
        )
        assert resp.json() == {"updated": 1}
        [loc] = client.get("/api/results").json()
        assert loc["access_points"][0]["display_name"] == "printer"

        assert client.delete("/api/reset").status_code == 200
        assert client.get("/api/results").json() == []
