import os

import pytest
import requests


RELAY_BASE_URL = os.getenv("RELAY_BASE_URL")
PROD_TOKEN = os.getenv("PROD_TOKEN")

pytestmark = pytest.mark.skipif(not RELAY_BASE_URL, reason="RELAY_BASE_URL not set")


def _url(path: str) -> str:
    return f"{RELAY_BASE_URL.rstrip('/')}{path}"


def test_relay_health():
    resp = requests.get(_url("/health"), timeout=10)
    assert resp.status_code == 200
    body = resp.json()
    assert body.get("status") == "ok"
    assert body["active_robots"] <= body["connections"]


def test_docs_describe_websocket_endpoints():
    resp = requests.get(_url("/docs"), timeout=10)
    assert resp.status_code == 200
    assert resp.json()["websocket_endpoints"]["driver"] == "/ws/driver"


def test_robots_require_token():
    resp = requests.get(_url("/robots"), timeout=10)
    assert resp.status_code == 401


@pytest.mark.skipif(not PROD_TOKEN, reason="PROD_TOKEN not set")
def test_robots_listing_reports_online_flag():
    resp = requests.get(_url("/robots"), headers={"Authorization": f"Bearer {PROD_TOKEN}"}, timeout=10)
    assert resp.status_code == 200, f"Unexpected status {resp.status_code}: {resp.text}"
    for robot in resp.json()["robots"]:
        assert isinstance(robot["online"], bool)
        assert "private_key" not in robot
