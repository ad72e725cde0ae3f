"""
Tests for the control API and the BridgeService wiring behind it.
"""

import pytest

from zkbridge import create_app
from zkbridge.config.config_manager import BridgeConfig
from zkbridge.service import BridgeService, parse_args

from conftest import FakeDeviceClient, make_record, make_response

CONFIG = {
    "serviceName": "Test Bridge",
    "hrmServer": {"baseURL": "https://hr.example.com/api", "retryAttempts": 1, "retryDelay": 0},
    "syncInterval": 3600000,
    "push": {"enabled": False},
}


@pytest.fixture
def device():
    return FakeDeviceClient([make_record("1"), make_record("2", minutes=1)])


@pytest.fixture
def bridge(device, session):
    service = BridgeService(BridgeConfig.from_dict(CONFIG), device_client=device, session=session)
    yield service
    service.stop()


@pytest.fixture
def client(bridge):
    app = create_app(bridge)
    app.config["TESTING"] = True
    return app.test_client()


# ============================================================
# BridgeService wiring
# ============================================================

def test_bridge_without_device_has_no_engine(session):
    service = BridgeService(BridgeConfig.from_dict(CONFIG), session=session)

    assert service.engine is None
    assert service.listener is None


def test_bridge_builds_push_listener(session):
    config = BridgeConfig.from_dict(dict(CONFIG, push={"port": 0, "forwardMode": "batch"}))

    service = BridgeService(config, session=session)

    assert service.listener is not None
    assert service.listener.forward_mode == "batch"


def test_engine_mapper_uses_device_address(bridge):
    payload = bridge.engine.mapper.map_record(make_record(device="other"))

    assert payload["deviceId"] == "192.168.1.201"


def test_parse_args():
    args = parse_args(["-c", "/etc/bridge.json", "--once"])

    assert args.config == "/etc/bridge.json"
    assert args.once is True
    assert args.no_api is False


# ============================================================
# Endpoints
# ============================================================

def test_service_status(client):
    response = client.get("/service/status")

    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "running"
    assert data["service_name"] == "Test Bridge"
    assert data["sync_running"] is False
    assert data["push_listening"] is False


def test_sync_status_before_first_cycle(client):
    data = client.get("/sync/status").get_json()

    assert data["success"] is True
    assert data["state"]["last_sync_time"] == "1970-01-01 00:00:00"
    assert data["state"]["processed_count"] == 0
    assert data["last_result"] is None
    assert data["job"]["running"] is False


def test_trigger_runs_a_cycle(client, session):
    response = client.post("/sync/trigger")

    assert response.status_code == 200
    data = response.get_json()
    assert data["success"] is True
    assert data["result"]["new_records"] == 2
    assert data["result"]["watermark_advanced"] is True
    session.post.assert_called_once()

    status = client.get("/sync/status").get_json()
    assert status["last_result"]["batches_succeeded"] == 1


def test_trigger_reports_failed_delivery(client, session):
    session.post.return_value = make_response(500, "down")

    data = client.post("/sync/trigger").get_json()

    assert data["success"] is False
    assert data["result"]["watermark_advanced"] is False


def test_trigger_while_cycle_running(client, bridge):
    bridge.engine._cycle_lock.acquire()
    try:
        response = client.post("/sync/trigger")
    finally:
        bridge.engine._cycle_lock.release()

    assert response.status_code == 409


def test_sync_endpoints_without_engine(session):
    service = BridgeService(BridgeConfig.from_dict(CONFIG), session=session)
    test_client = create_app(service).test_client()

    assert test_client.get("/sync/status").status_code == 404
    assert test_client.post("/sync/trigger").status_code == 404


def test_start_and_stop(client, bridge):
    assert client.post("/service/start").get_json()["success"] is True
    assert bridge.running
    assert bridge.engine.is_running

    assert client.post("/service/stop").get_json()["success"] is True
    assert not bridge.running
    assert not bridge.engine.is_running
