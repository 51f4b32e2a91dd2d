"""Google Calendar client over httpx with per-owner OAuth tokens.

Tokens live in the ``google_tokens`` table. The authorization flow uses an
opaque random ``state`` that maps to the owner for ten minutes and can be
consumed once; access tokens are refreshed lazily when they are about to
expire.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any
from urllib.parse import urlencode

import httpx

from aide.db import Database
from aide.errors import CalendarError, CalendarNotAuthorized

LOGGER = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
)
OAUTH_STATE_TTL_SECONDS = 600

_EXPIRY_MARGIN_SECONDS = 60
_DEFAULT_EXPIRES_IN_SECONDS = 3600


class GoogleCalendarClient:
    """Primary-calendar operations on behalf of one owner at a time."""

    def __init__(
        self,
        db: Database,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timezone: str = "UTC",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._db = db
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._timezone = timezone
        self._timeout_seconds = timeout_seconds

    def is_authorized(self, owner_id: str) -> bool:
        return self._db.get_google_tokens(owner_id) is not None

    def auth_url(self, owner_id: str) -> str:
        """Consent URL carrying a fresh single-use state for ``owner_id``."""

        state = secrets.token_urlsafe(32)
        self._db.create_oauth_state(state, owner_id)
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, state: str) -> str:
        """Trade an authorization code for tokens; returns the owner id.

        Raises:
            CalendarError: unknown, reused or expired state, or the token
                endpoint rejected the code.
        """
        owner_id = self._db.consume_oauth_state(state, OAUTH_STATE_TTL_SECONDS)
        if owner_id is None:
            raise CalendarError("Invalid or expired authorization state")
        payload = await self._token_request(
            {
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        self._store_tokens(owner_id, payload)
        LOGGER.info("Stored Google Calendar tokens for %s", owner_id)
        return owner_id

    async def list_events(
        self,
        owner_id: str,
        max_results: int = 10,
        time_min: str | None = None,
        time_max: str | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "timeMin": time_min or _utc_now_rfc3339(),
            "maxResults": max_results,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if time_max:
            params["timeMax"] = time_max
        data = await self._request(owner_id, "GET", "/calendars/primary/events", params=params)
        return list(data.get("items") or [])

    async def search_events(self, owner_id: str, query: str, max_results: int = 10) -> list[dict[str, Any]]:
        data = await self._request(
            owner_id,
            "GET",
            "/calendars/primary/events",
            params={
                "q": query,
                "timeMin": _utc_now_rfc3339(),
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return list(data.get("items") or [])

    async def create_event(
        self,
        owner_id: str,
        summary: str,
        start_time: str,
        end_time: str,
        description: str | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": summary,
            "start": {"dateTime": start_time, "timeZone": self._timezone},
            "end": {"dateTime": end_time, "timeZone": self._timezone},
        }
        if description:
            body["description"] = description
        if location:
            body["location"] = location
        return await self._request(owner_id, "POST", "/calendars/primary/events", json_body=body)

    async def free_busy(self, owner_id: str, time_min: str, time_max: str) -> list[dict[str, Any]]:
        data = await self._request(
            owner_id,
            "POST",
            "/freeBusy",
            json_body={
                "timeMin": time_min,
                "timeMax": time_max,
                "timeZone": self._timezone,
                "items": [{"id": "primary"}],
            },
        )
        calendars = data.get("calendars") or {}
        return list((calendars.get("primary") or {}).get("busy") or [])

    async def _request(
        self,
        owner_id: str,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        token = await self._access_token(owner_id)
        async with httpx.AsyncClient(base_url=GOOGLE_CALENDAR_API, timeout=self._timeout_seconds) as client:
            try:
                response = await client.request(
                    method, path, params=params, json=json_body, headers={"Authorization": f"Bearer {token}"}
                )
                if response.status_code == 401:
                    token = await self._access_token(owner_id, force_refresh=True)
                    response = await client.request(
                        method, path, params=params, json=json_body, headers={"Authorization": f"Bearer {token}"}
                    )
            except httpx.HTTPError as exc:
                raise CalendarError(f"Google Calendar request failed: {exc}") from exc

        if response.status_code == 401:
            raise CalendarNotAuthorized("Google Calendar access was revoked or expired")
        if not 200 <= response.status_code < 300:
            raise CalendarError(
                f"Google Calendar returned {response.status_code}: {_google_error_message(response)}"
            )
        if response.status_code == 204:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarError("Google Calendar returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise CalendarError("Google Calendar returned an unexpected payload")
        return payload

    async def _access_token(self, owner_id: str, force_refresh: bool = False) -> str:
        tokens = self._db.get_google_tokens(owner_id)
        if tokens is None:
            raise CalendarNotAuthorized("Google Calendar is not connected")
        expires_at = tokens.get("expires_at")
        expired = expires_at is not None and expires_at - _EXPIRY_MARGIN_SECONDS <= time.time()
        if not (expired or force_refresh):
            return tokens["access_token"]
        if not tokens.get("refresh_token"):
            raise CalendarNotAuthorized("Google Calendar access expired; please authorize again")

        LOGGER.info("Refreshing Google access token for %s", owner_id)
        payload = await self._token_request(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": tokens["refresh_token"],
                "grant_type": "refresh_token",
            }
        )
        self._store_tokens(owner_id, payload)
        return payload["access_token"]

    async def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(GOOGLE_TOKEN_URL, data=data, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise CalendarError(f"Google OAuth token request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise CalendarError(
                f"Google OAuth token request failed ({response.status_code}): {_google_error_message(response)}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarError("Google OAuth token endpoint returned invalid JSON") from exc
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise CalendarError("Google OAuth token response is missing access_token")
        return payload

    def _store_tokens(self, owner_id: str, payload: dict[str, Any]) -> None:
        expires_in = payload.get("expires_in")
        if not isinstance(expires_in, (int, float)) or isinstance(expires_in, bool) or expires_in <= 0:
            expires_in = _DEFAULT_EXPIRES_IN_SECONDS
        self._db.save_google_tokens(
            owner_id,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=int(time.time() + expires_in),
            scope=payload.get("scope"),
        )


def format_event(event: dict[str, Any]) -> str:
    start = (event.get("start") or {}).get("dateTime") or (event.get("start") or {}).get("date") or "?"
    line = f"{event.get('summary') or '(no title)'} - {start}"
    if event.get("location"):
        line += f" @ {event['location']}"
    return line


def _google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return " ".join(error["message"].split())[:200]
        if isinstance(error, str) and error.strip():
            description = payload.get("error_description")
            return f"{error}: {description}"[:200] if description else error[:200]
    return " ".join(response.text.split())[:200] or "request failed without an error payload"


def _utc_now_rfc3339() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
