from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.services.badges import notification_directory
from app.services.notification import BADGE_RECEIVED
from tests.conftest import auth


def test_register_webhook_defaults_to_badge_received(client: TestClient) -> None:
    resp = client.put(
        "/v1/notifications/webhook",
        json={"url": "https://hooks.example/alice"},
        headers=auth("alice"),
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "identity": "alice",
        "url": "https://hooks.example/alice",
        "capabilities": [BADGE_RECEIVED],
    }

    target = asyncio.run(notification_directory.lookup("alice"))
    assert target is not None
    assert BADGE_RECEIVED in target.capabilities


def test_register_webhook_with_explicit_capabilities(client: TestClient) -> None:
    resp = client.put(
        "/v1/notifications/webhook",
        json={"url": "http://hooks.example/bob", "capabilities": ["z:other", "a:other"]},
        headers=auth("bob"),
    )
    assert resp.json()["capabilities"] == ["a:other", "z:other"]


def test_register_webhook_rejects_non_http_url(client: TestClient) -> None:
    resp = client.put(
        "/v1/notifications/webhook",
        json={"url": "ftp://hooks.example/alice"},
        headers=auth("alice"),
    )
    assert resp.status_code == 422


@pytest.mark.parametrize(
    "url",
    [
        "http://127.0.0.1/hook",
        "http://localhost/hook",
        "http://10.0.0.5/hook",
        "http://169.254.169.254/latest/meta-data",
    ],
)
def test_register_webhook_rejects_internal_hosts(client: TestClient, url: str) -> None:
    resp = client.put(
        "/v1/notifications/webhook", json={"url": url}, headers=auth("alice")
    )
    assert resp.status_code == 422
    assert asyncio.run(notification_directory.lookup("alice")) is None


def test_register_webhook_requires_auth(client: TestClient) -> None:
    resp = client.put(
        "/v1/notifications/webhook", json={"url": "https://hooks.example/alice"}
    )
    assert resp.status_code == 401


def test_unregister_webhook(client: TestClient) -> None:
    client.put(
        "/v1/notifications/webhook",
        json={"url": "https://hooks.example/alice"},
        headers=auth("alice"),
    )
    resp = client.delete("/v1/notifications/webhook", headers=auth("alice"))
    assert resp.status_code == 204
    assert asyncio.run(notification_directory.lookup("alice")) is None


def test_unregister_without_webhook_is_404(client: TestClient) -> None:
    resp = client.delete("/v1/notifications/webhook", headers=auth("carol"))
    assert resp.status_code == 404
