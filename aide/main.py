"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging

from aide.agent_runtime import AgentRuntime
from aide.commands import CommandDispatcher
from aide.config import Settings, allowed_user_ids, google_calendar_enabled, load_settings
from aide.db import Database
from aide.errors import DeliveryFailure
from aide.google_calendar import GoogleCalendarClient
from aide.llm.openrouter import OpenRouterProvider
from aide.models import InboundMessage
from aide.oauth_server import build_server, create_app
from aide.scheduler import ProactiveBriefing, ScheduleDispatcher
from aide.telegram_adapter import TelegramAdapter
from aide.tools.calendar_tool import (
    CheckCalendarAuthTool,
    CreateCalendarEventTool,
    GetFreeBusyTool,
    ListCalendarEventsTool,
    SearchCalendarEventsTool,
)
from aide.tools.registry import ToolRegistry
from aide.tools.schedule_tool import (
    CreateScheduleTool,
    DeleteScheduleTool,
    ListSchedulesTool,
    UpdateScheduleTool,
)
from aide.tools.search_tool import WebSearchTool
from aide.tools.time_tool import GetCurrentTimeTool
from aide.tools.todo_tool import CompleteTaskTool, CreateTaskTool, GetTasksTool, UpdateTaskTool
from aide.tools.weather_tool import GetWeatherTool

LOGGER = logging.getLogger(__name__)


def build_tool_registry(
    db: Database, settings: Settings, calendar: GoogleCalendarClient | None
) -> ToolRegistry:
    """Register every capability; calendar tools only when OAuth is configured."""

    tools = ToolRegistry(db, timeout_seconds=settings.tool_timeout_seconds)
    tools.register(WebSearchTool())
    tools.register(GetWeatherTool())
    tools.register(GetCurrentTimeTool(settings.timezone))
    tools.register(GetTasksTool(db))
    tools.register(CreateTaskTool(db))
    tools.register(UpdateTaskTool(db))
    tools.register(CompleteTaskTool(db))
    tools.register(ListSchedulesTool(db))
    tools.register(CreateScheduleTool(db))
    tools.register(UpdateScheduleTool(db))
    tools.register(DeleteScheduleTool(db))
    if calendar is not None:
        tools.register(CheckCalendarAuthTool(calendar))
        tools.register(ListCalendarEventsTool(calendar))
        tools.register(CreateCalendarEventTool(calendar))
        tools.register(SearchCalendarEventsTool(calendar))
        tools.register(GetFreeBusyTool(calendar))
    return tools


async def cancel_tasks(tasks: list[asyncio.Task[None]]) -> None:
    """Cancel ``tasks`` and wait until each one has finished unwinding."""

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def run() -> None:
    """Initialize app layers and start processing loops."""

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = Database(settings.database_path, timezone_name=settings.timezone)
    db.initialize()

    calendar = None
    if google_calendar_enabled(settings):
        calendar = GoogleCalendarClient(
            db,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
            timezone=settings.timezone,
            timeout_seconds=settings.request_timeout_seconds,
        )
    else:
        LOGGER.info("Google Calendar disabled: GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not set")

    provider = OpenRouterProvider(settings)
    runtime = AgentRuntime(
        db=db,
        llm=provider,
        tool_registry=build_tool_registry(db, settings, calendar),
        request_timeout_seconds=settings.request_timeout_seconds,
        max_tool_rounds=settings.max_tool_rounds,
        memory_window_messages=settings.memory_window_messages,
        timezone=settings.timezone,
        command_dispatcher=CommandDispatcher(db),
    )

    telegram = TelegramAdapter(
        token=settings.telegram_bot_token,
        poll_timeout_seconds=settings.telegram_poll_timeout_seconds,
        allowed_user_ids=allowed_user_ids(settings),
    )

    dispatcher = ScheduleDispatcher(
        db=db,
        llm=provider,
        delivery=telegram,
        timezone=settings.timezone,
        catchup_minutes=settings.schedule_catchup_minutes,
        request_timeout_seconds=settings.request_timeout_seconds,
        tick_seconds=settings.schedule_tick_seconds,
    )
    proactive = ProactiveBriefing(
        db=db, runtime=runtime, delivery=telegram, tick_seconds=settings.proactive_tick_seconds
    )

    background = [
        asyncio.create_task(dispatcher.run_forever(), name="schedule-dispatcher"),
        asyncio.create_task(proactive.run_forever(), name="proactive-briefing"),
    ]
    server = None
    if calendar is not None:
        server = build_server(
            create_app(calendar, telegram), settings.oauth_server_host, settings.oauth_server_port
        )
        background.append(asyncio.create_task(server.serve(), name="oauth-server"))

    async def handle(message: InboundMessage) -> None:
        # Typing runs alongside so turns still take the thread lock in arrival order.
        typing = asyncio.create_task(telegram.send_chat_action(message.chat_id))
        in_flight.add(typing)
        typing.add_done_callback(in_flight.discard)
        reply = await runtime.handle_message(message)
        try:
            await telegram.send_message(message.chat_id, reply)
        except DeliveryFailure as exc:
            LOGGER.warning("Reply to %s not delivered: %s", message.chat_id, exc)

    in_flight: set[asyncio.Task[None]] = set()
    LOGGER.info("Assistant started (timezone %s)", settings.timezone)
    try:
        async for message in telegram.poll_messages():
            task = asyncio.create_task(handle(message))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
    finally:
        dispatcher.stop()
        proactive.stop()
        if server is not None:
            server.should_exit = True
        await cancel_tasks([*background, *in_flight])
        await telegram.close()
        LOGGER.info("Assistant shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
