"""
Tests for the HTTP / WebSocket adapter around the broadcaster.
"""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from iaq_monitor.core.config import Settings
from iaq_monitor.api.routes import _messages
from iaq_monitor.domain.models import AcquisitionError, Channel, Reading, ReadingSource
from iaq_monitor.main import create_app
from tests.fixtures.scripted_link import ScriptedLink


def make_client(link=None, **overrides):
    cfg = Settings(poll_seconds=60.0, **overrides)
    app = create_app(cfg, link=link or ScriptedLink(), setup_logging=False)
    return TestClient(app)


@pytest.fixture
def client():
    with make_client() as c:
        yield c


@pytest.fixture
def sim_client():
    link = ScriptedLink()
    with make_client(link, force_simulation=True) as c:
        c.link = link
        yield c


def test_engine_built_only_at_startup():
    link = ScriptedLink()
    app = create_app(Settings(poll_seconds=60.0), link=link, setup_logging=False)
    assert getattr(app.state, "broadcaster", None) is None

    with TestClient(app):
        assert app.state.broadcaster.running
    assert not link.is_open


class TestStatus:

    def test_status_shape(self, client):
        resp = client.get("/api/status")
        assert resp.status_code == 200
        body = resp.json()
        for key in ("connectionState", "isSimulating", "lastReadingTimestamp", "subscriberCount"):
            assert key in body
        assert body["running"] is True
        assert body["port"] == "/dev/ttyACM0"
        assert body["deviceId"] == 1
        assert body["uptime"] >= 0.0

    def test_forced_simulation_status(self, sim_client):
        body = sim_client.get("/api/status").json()
        assert body["connectionState"] == "degraded"
        assert body["isSimulating"] is True
        assert body["forceSimulation"] is True


class TestSensors:

    def test_hardware_reading(self, client):
        body = client.get("/api/sensors").json()
        assert body["success"] is True
        data = body["data"]
        for ch in Channel:
            assert isinstance(data[ch.value], float)
        assert data["TEMPERATURE"] == pytest.approx(25.0)
        assert data["connectionStatus"] == {"connected": True, "simulation": False, "device": "/dev/ttyTEST:1"}
        assert "timestamp" in data

    def test_simulated_reading(self, sim_client):
        data = sim_client.get("/api/sensors").json()["data"]
        assert data["connectionStatus"]["simulation"] is True
        assert data["connectionStatus"]["device"] is None
        assert 24.0 <= data["TEMPERATURE"] <= 26.0
        assert sim_client.link.open_calls == 0


class TestCommands:

    def test_connect_refused_when_forced(self, sim_client):
        body = sim_client.post("/api/connect").json()
        assert body["success"] is False
        assert body["connected"] is False

    def test_connect_when_connected(self, client):
        client.get("/api/sensors")
        body = client.post("/api/connect").json()
        assert body["success"] is True
        assert body["connected"] is True

    def test_test_config_is_connect_alias(self, client, sim_client):
        assert client.post("/api/test-config").json()["connected"] is True
        assert sim_client.post("/api/test-config").json()["success"] is False

    def test_connect_after_failures(self):
        link = ScriptedLink(always_fail_open=True)
        with make_client(link) as c:
            body = c.post("/api/connect").json()
            assert body["success"] is False
            assert body["connectionState"] == "connecting"

    def test_toggle_simulation(self, client):
        resp = client.post("/api/toggle-simulation", json={"enabled": True})
        assert resp.status_code == 200
        assert resp.json()["simulation"] is True
        assert client.get("/api/sensors").json()["data"]["connectionStatus"]["simulation"] is True

        client.post("/api/toggle-simulation", json={"enabled": False})
        assert client.get("/api/sensors").json()["data"]["connectionStatus"]["connected"] is True

    def test_toggle_requires_flag(self, client):
        assert client.post("/api/toggle-simulation", json={}).status_code == 422


class TestIAQ:

    def test_iaq_from_last_reading(self, client):
        client.get("/api/sensors")
        body = client.get("/api/iaq").json()
        assert 0 <= body["index"] <= 100
        assert body["level"] in {"Excellent", "Good", "Moderate", "Poor", "Critical"}
        assert body["status"]["TEMPERATURE"] == "good"


class TestStream:

    def test_stream_delivers_readings(self, client):
        with client.websocket_connect("/api/stream") as ws:
            first = ws.receive_json()
            assert first["event"] == "connectionStatus"

            msg = ws.receive_json()
            assert msg["event"] == "sensorData"
            assert "connectionStatus" in msg["data"]

            ws.send_text("requestData")
            msg = ws.receive_json()
            assert msg["event"] == "sensorData"

    def test_error_frames_carry_last_reading(self):
        reading = Reading(
            values={Channel.CO2: 700.0},
            captured_at=datetime(2026, 10, 17, tzinfo=timezone.utc),
            source=ReadingSource.SIMULATION,
        )
        err = AcquisitionError("bad crc", "protocol", reading.captured_at, reading=reading)

        msgs = _messages(err)

        assert [m["event"] for m in msgs] == ["sensorError", "sensorData"]
        assert msgs[0]["data"]["kind"] == "protocol"
        assert msgs[1]["data"]["CO2"] == 700.0

    def test_error_without_reading_is_single_frame(self):
        err = AcquisitionError("boom", "internal", datetime(2026, 10, 17, tzinfo=timezone.utc))
        assert [m["event"] for m in _messages(err)] == ["sensorError"]
