"""Async dispatchers for scheduled messages and proactive briefings."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from aide.agent_runtime import AgentRuntime
from aide.db import Database
from aide.delivery import DeliveryAdapter
from aide.errors import AideError, ModelUnavailable
from aide.llm.base import LLMProvider
from aide.models import ChatMessage, Frequency, Role, ScheduleEntry, ScheduleKind
from aide.prompts import NOTHING_TO_REPORT, PROACTIVE_PROMPT, scheduled_prompt
from aide.recurrence import is_due, occurrence_slot, to_local_minute

LOGGER = logging.getLogger(__name__)


async def _run_aligned(
    tick: Callable[[], Awaitable[object]],
    interval_seconds: float,
    stop_event: asyncio.Event,
    name: str,
) -> None:
    """Call ``tick`` on every multiple of ``interval_seconds`` until stopped."""

    while not stop_event.is_set():
        delay = interval_seconds - (time.time() % interval_seconds)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        if stop_event.is_set():
            break
        try:
            await tick()
        except Exception:  # noqa: BLE001
            LOGGER.exception("%s tick failed", name)


class ScheduleDispatcher:
    """Fires due schedule entries and delivers them to their owners."""

    def __init__(
        self,
        db: Database,
        llm: LLMProvider,
        delivery: DeliveryAdapter,
        timezone: str = "UTC",
        catchup_minutes: int = 15,
        request_timeout_seconds: float = 60.0,
        tick_seconds: float = 60.0,
    ) -> None:
        self._db = db
        self._llm = llm
        self._delivery = delivery
        self._tz = ZoneInfo(timezone)
        self._catchup = timedelta(minutes=catchup_minutes)
        self._request_timeout_seconds = request_timeout_seconds
        self._tick_seconds = tick_seconds
        self._stop_event = asyncio.Event()

    async def tick(self, now: datetime | None = None) -> list[int]:
        """Fire every entry due at ``now``; returns the ids delivered.

        Naive ``now`` is taken as local time. One entry failing never stops
        the others; it stays unmarked and is retried on a later tick.
        """
        local_now = to_local_minute(now or datetime.now(timezone.utc), self._tz)
        due = [entry for entry in self._db.list_active_schedules() if is_due(entry, local_now, self._catchup)]
        if not due:
            return []
        LOGGER.info("Schedule tick %s: %d due", local_now.isoformat(timespec="minutes"), len(due))
        results = await asyncio.gather(*(self._fire(entry, local_now) for entry in due))
        return [entry.id for entry, fired in zip(due, results) if fired]

    async def _fire(self, entry: ScheduleEntry, local_now: datetime) -> bool:
        slot = occurrence_slot(entry, local_now)
        try:
            text = await self._render(entry, local_now)
            await self._delivery.send_message(entry.owner_id, text)
        except AideError as exc:
            LOGGER.warning("Schedule %d for %s failed: %s", entry.id, entry.owner_id, exc)
            return False
        except Exception:  # noqa: BLE001
            LOGGER.exception("Schedule %d for %s failed", entry.id, entry.owner_id)
            return False

        self._db.mark_schedule_fired(entry.id, slot)
        if entry.frequency is Frequency.ONCE and self._db.retire_one_time_schedule(entry):
            LOGGER.info("Deactivated one-time schedule %d", entry.id)
        LOGGER.info("Sent schedule %d to %s", entry.id, entry.owner_id)
        return True

    async def _render(self, entry: ScheduleEntry, local_now: datetime) -> str:
        if entry.kind is ScheduleKind.STATIC:
            return entry.content
        messages = [
            ChatMessage(role=Role.SYSTEM, content=scheduled_prompt(local_now)),
            ChatMessage(role=Role.USER, content=entry.content),
        ]
        try:
            response = await asyncio.wait_for(
                self._llm.generate(messages), timeout=self._request_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise ModelUnavailable(f"Model call timed out after {self._request_timeout_seconds:g}s") from exc
        if not response.content.strip():
            raise ModelUnavailable(f"Model returned no text for schedule {entry.id}")
        return response.content.strip()

    async def run_forever(self) -> None:
        """Tick on each interval boundary until stop() is called."""

        await _run_aligned(self.tick, self._tick_seconds, self._stop_event, "Schedule")

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()


class ProactiveBriefing:
    """Periodic check-in turn for owners who opted in with /proactive on."""

    def __init__(
        self,
        db: Database,
        runtime: AgentRuntime,
        delivery: DeliveryAdapter,
        tick_seconds: float = 3600.0,
    ) -> None:
        self._db = db
        self._runtime = runtime
        self._delivery = delivery
        self._tick_seconds = tick_seconds
        self._stop_event = asyncio.Event()

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Brief every opted-in owner; returns the owners a message was sent to."""

        owners = self._db.list_proactive_owners()
        if not owners:
            return []
        LOGGER.info(
            "Proactive tick %s for %d owner(s)",
            (now or datetime.now(timezone.utc)).isoformat(timespec="minutes"),
            len(owners),
        )
        results = await asyncio.gather(*(self._brief(owner_id) for owner_id in owners))
        return [owner_id for owner_id, sent in zip(owners, results) if sent]

    async def _brief(self, owner_id: str) -> bool:
        try:
            reply = await self._runtime.run_turn(proactive_thread_id(owner_id), owner_id, PROACTIVE_PROMPT)
            if NOTHING_TO_REPORT in reply:
                LOGGER.info("Nothing to report for %s", owner_id)
                return False
            await self._delivery.send_message(owner_id, reply)
        except AideError as exc:
            LOGGER.warning("Proactive briefing for %s failed: %s", owner_id, exc)
            return False
        except Exception:  # noqa: BLE001
            LOGGER.exception("Proactive briefing for %s failed", owner_id)
            return False
        return True

    async def run_forever(self) -> None:
        await _run_aligned(self.tick, self._tick_seconds, self._stop_event, "Proactive")

    def stop(self) -> None:
        self._stop_event.set()


def proactive_thread_id(owner_id: str) -> str:
    return f"proactive:{owner_id}"
