"""Tests for the REST and WebSocket API."""

from __future__ import annotations

import pytest


@pytest.fixture()
def client(fleet):
    """TestClient over a fleet of fake boards; startup bring-up skipped."""
    from fastapi.testclient import TestClient
    from sdrfleet.server import create_app

    app = create_app(fleet.manager, bring_up=False)
    with TestClient(app) as test_client:
        yield test_client


class TestBoardsEndpoint:
    def test_list(self, client):
        resp = client.get("/api/sdrs")
        assert resp.status_code == 200
        data = resp.json()
        assert [b["id"] for b in data] == ["d1", "d2"]
        assert data[1]["state"]["initialized"] is False

    def test_get_one(self, client):
        resp = client.get("/api/sdrs/d2")
        assert resp.status_code == 200
        assert resp.json()["ip"] == "192.168.2.2"

    def test_unknown(self, client):
        resp = client.get("/api/sdrs/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "SDR not found"

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.json() == {"status": "ok", "boards": 2, "ready": 0}


class TestOperations:
    def test_init(self, client):
        resp = client.post("/api/sdrs/d1/init")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["state"]["initialized"] is True
        assert data["state"]["gain"] == 0

    def test_init_failure_is_500(self, client, fleet):
        fleet.fakes["d1"].refuse_connects = 3
        resp = client.post("/api/sdrs/d1/init")
        assert resp.status_code == 500
        assert "Connection refused" in resp.json()["detail"]

    def test_gain_before_init(self, client):
        resp = client.post("/api/sdrs/d1/gain", json={"value": 5})
        assert resp.status_code == 400

    def test_set_gain(self, client):
        client.post("/api/sdrs/d1/init")
        resp = client.post("/api/sdrs/d1/gain", json={"value": -20})
        assert resp.status_code == 200
        assert resp.json()["state"]["gain"] == -20

    def test_invalid_gain(self, client):
        client.post("/api/sdrs/d1/init")
        resp = client.post("/api/sdrs/d1/gain", json={"value": "loud"})
        assert resp.status_code == 400

    def test_missing_value(self, client):
        client.post("/api/sdrs/d1/init")
        resp = client.post("/api/sdrs/d1/freq", json={})
        assert resp.status_code == 400

    def test_set_mode(self, client):
        client.post("/api/sdrs/d1/init")
        resp = client.post("/api/sdrs/d1/set_mode", json={"mode": "ntsc"})
        assert resp.status_code == 200
        state = resp.json()["state"]
        assert state["mode"] == "ntsc"
        assert state["tx_on"] is True
        assert state["sampling_freq"] == 20_000_000

    def test_invalid_mode(self, client):
        client.post("/api/sdrs/d1/init")
        resp = client.post("/api/sdrs/d1/set_mode", json={"mode": "am"})
        assert resp.status_code == 400

    def test_reconnect(self, client):
        resp = client.post("/api/sdrs/d2/reconnect")
        assert resp.status_code == 200
        assert resp.json()["state"]["connected"] is True

    def test_restart_one(self, client, fleet):
        resp = client.post("/api/sdrs/d1/restart_usb")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["recovered"] == ["d1"]
        assert data["state"]["initialized"] is True

    def test_restart_fleet_with_failure(self, client, fleet):
        fleet.fakes["d2"].refuse_connects = 3
        resp = client.post("/api/restart_usb")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert data["ports"] == [1, 2, 3, 4]
        assert list(data["failed"]) == ["d2"]

    def test_restart_fleet_with_unused_port_failure(self, client, fleet):
        fleet.host.fail.add("sudo uhubctl -l 1-1 -p 3 -a on")
        resp = client.post("/api/restart_usb")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is False
        assert data["failed_ports"] == [3]
        assert data["recovered"] == ["d1", "d2"]

    def test_restart_port_failure_is_500(self, client, fleet):
        fleet.host.fail.add("sudo uhubctl")
        resp = client.post("/api/restart_usb")
        assert resp.status_code == 500


class TestDashboardSocket:
    def test_initial_states(self, client):
        with client.websocket_connect("/ws") as ws:
            msg = ws.receive_json()
        assert msg["type"] == "initialStates"
        assert set(msg["states"]) == {"d1", "d2"}
        assert msg["states"]["d1"]["connected"] is False

    def test_receives_updates(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            client.post("/api/sdrs/d1/init")
            msg = ws.receive_json()
        assert msg["type"] == "sdrUpdate"
        assert msg["id"] == "d1"
        assert msg["state"]["initialized"] is True
