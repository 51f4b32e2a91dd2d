"""HTTP surface for the Google OAuth callback."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from aide.delivery import DeliveryAdapter
from aide.errors import AideError, CalendarError
from aide.google_calendar import GoogleCalendarClient

LOGGER = logging.getLogger(__name__)

CONNECTED_TEXT = "✅ Google Calendar connected! You can now ask me about your schedule."


def create_app(calendar: GoogleCalendarClient, delivery: DeliveryAdapter | None = None) -> FastAPI:
    """Build the app; ``delivery`` is used to confirm the connection in chat."""

    router = APIRouter(tags=["Auth"])

    @router.get("/auth/google/callback")
    async def oauth_callback(
        state: str | None = None, code: str | None = None, error: str | None = None
    ) -> PlainTextResponse:
        """Exchange the authorization code and store tokens for the state's owner."""
        if error:
            raise HTTPException(status_code=400, detail=f"Authorization was not granted: {error}")
        if not state or not code:
            raise HTTPException(status_code=400, detail="Missing state or code.")
        try:
            owner_id = await calendar.exchange_code(code, state)
        except CalendarError as exc:
            LOGGER.warning("OAuth callback rejected: %s", exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        if delivery is not None:
            try:
                await delivery.send_message(owner_id, CONNECTED_TEXT)
            except AideError as exc:
                LOGGER.warning("Could not confirm calendar connection to %s: %s", owner_id, exc)
        return PlainTextResponse("Google Calendar connected. You can close this window.")

    @router.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app = FastAPI(title="aide")
    app.include_router(router)
    return app


def build_server(app: FastAPI, host: str, port: int) -> uvicorn.Server:
    """uvicorn server sharing the caller's event loop and logging setup."""

    config = uvicorn.Config(app, host=host, port=port, log_level="info", log_config=None)
    return uvicorn.Server(config)
