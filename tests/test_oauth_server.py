"""Tests for the OAuth callback app."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from aide.errors import CalendarError, DeliveryFailure
from aide.google_calendar import GoogleCalendarClient
from aide.oauth_server import CONNECTED_TEXT, create_app


def _calendar(owner: str = "alice") -> MagicMock:
    calendar = MagicMock(spec=GoogleCalendarClient)
    calendar.exchange_code = AsyncMock(return_value=owner)
    return calendar


def test_health():
    client = TestClient(create_app(_calendar()))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_callback_requires_state_and_code():
    calendar = _calendar()
    client = TestClient(create_app(calendar))

    response = client.get("/auth/google/callback", params={"code": "abc"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing state or code."
    calendar.exchange_code.assert_not_awaited()


def test_callback_reports_denied_consent():
    client = TestClient(create_app(_calendar()))

    response = client.get("/auth/google/callback", params={"error": "access_denied"})

    assert response.status_code == 400
    assert "access_denied" in response.json()["detail"]


def test_callback_rejects_bad_state():
    calendar = _calendar()
    calendar.exchange_code = AsyncMock(side_effect=CalendarError("Invalid or expired authorization state"))
    client = TestClient(create_app(calendar))

    response = client.get("/auth/google/callback", params={"state": "forged", "code": "abc"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid or expired authorization state"


def test_callback_success_confirms_in_chat():
    calendar = _calendar()
    delivery = MagicMock()
    delivery.send_message = AsyncMock()
    client = TestClient(create_app(calendar, delivery))

    response = client.get("/auth/google/callback", params={"state": "s1", "code": "abc"})

    assert response.status_code == 200
    assert "Google Calendar connected" in response.text
    calendar.exchange_code.assert_awaited_once_with("abc", "s1")
    delivery.send_message.assert_awaited_once_with("alice", CONNECTED_TEXT)


def test_callback_succeeds_when_confirmation_fails():
    delivery = MagicMock()
    delivery.send_message = AsyncMock(side_effect=DeliveryFailure("Telegram sendMessage failed: blocked"))
    client = TestClient(create_app(_calendar(), delivery))

    response = client.get("/auth/google/callback", params={"state": "s1", "code": "abc"})

    assert response.status_code == 200
