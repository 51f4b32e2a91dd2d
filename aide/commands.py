"""Command dispatcher for /-prefixed messages.

Commands bypass the LLM and act on the stores directly. An unrecognised
/command returns None, letting it fall through to the LLM.
"""

from __future__ import annotations

import html
import logging
from typing import TYPE_CHECKING

from aide.models import InboundMessage
from aide.recurrence import describe_frequency

if TYPE_CHECKING:
    from aide.db import Database

LOGGER = logging.getLogger(__name__)

WELCOME_TEXT = (
    "👋 Hi! I'm your AI assistant.\n\n"
    "I can:\n"
    "• Have conversations with memory\n"
    "• Search the web, check the weather, manage your to-dos and calendar\n"
    '• Schedule tasks (e.g. "Every Monday at 9am give me weekend ideas")\n'
    '• Set reminders (e.g. "Remind me every Sunday at 8pm to submit homework")\n\n'
    "Commands:\n"
    "/schedules - View your scheduled tasks\n"
    "/delete &lt;ID&gt; - Delete a schedule\n"
    "/proactive on|off - Hourly proactive briefings\n"
    "/reset - Clear conversation history"
)


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split a /-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased with any
        ``@botname`` suffix removed, or None if text is not a valid /command.
    """
    text = text.strip()
    if not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    command = parts[0].split("@", 1)[0].lower()
    if not command:
        return None
    return command, parts[1:]


class CommandDispatcher:
    """Routes /-prefixed messages to handlers, bypassing the LLM.

    Returns None for unrecognised commands so the caller can fall through.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def dispatch(self, message: InboundMessage) -> str | None:
        """Dispatch a message to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(message.text)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("Command dispatch: command=%r args=%r", command, args)
        if command in ("start", "help"):
            return WELCOME_TEXT
        if command == "schedules":
            return self._handle_list(message.owner_id)
        if command == "delete":
            return self._handle_delete(args, message.owner_id)
        if command == "reset":
            self._db.reset_context(message.thread_id)
            return "🔄 Conversation history cleared!"
        if command == "proactive":
            return self._handle_proactive(args, message.owner_id)
        return None

    def _handle_list(self, owner_id: str) -> str:
        schedules = self._db.list_schedules(owner_id)
        if not schedules:
            return "📅 You have no scheduled tasks."

        lines = ["📅 Your scheduled tasks:\n"]
        for i, entry in enumerate(schedules, start=1):
            lines.append(
                f"{i}. [{entry.kind.value}] {describe_frequency(entry).capitalize()} at {entry.time_of_day}\n"
                f'   "{html.escape(entry.content)}"\n'
                f"   ID: {entry.id}\n"
            )
        lines.append("To delete: /delete &lt;ID&gt;")
        return "\n".join(lines)

    def _handle_delete(self, args: list[str], owner_id: str) -> str:
        if not args or not args[0].isdigit():
            return "Usage: /delete &lt;ID&gt;\n\nUse /schedules to see your schedule IDs."
        if self._db.delete_schedule(int(args[0]), owner_id):
            return "✅ Schedule deleted!"
        return "❌ Schedule not found or you don't have permission to delete it."

    def _handle_proactive(self, args: list[str], owner_id: str) -> str:
        choice = args[0].lower() if args else ""
        if choice not in ("on", "off"):
            return "Usage: /proactive on|off"
        self._db.set_proactive(owner_id, choice == "on")
        if choice == "on":
            return "🔔 Proactive briefings enabled. I'll check in every hour when there's something worth knowing."
        return "🔕 Proactive briefings disabled."
