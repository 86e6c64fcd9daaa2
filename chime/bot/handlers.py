"""Telegram command handlers.

Every slash command goes through ``handle_command``, which decodes it once
into a typed command and hands it to the matching coroutine below. The
store, registry and messenger live in ``context.bot_data`` (set up by the app).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chime.bot.commands import (
    AddTask,
    CancelTask,
    Command,
    ListTasks,
    SetTimezone,
    SetupChannel,
    ShowHelp,
    parse_command,
)
from chime.errors import (
    CommandError,
    DeliveryError,
    InvalidScheduleError,
    MissingTimezoneError,
    PersistenceError,
    StorageError,
)
from chime.notifications.countdown import format_countdown
from chime.scheduler import recurrence

if TYPE_CHECKING:
    from telegram import Update
    from telegram.ext import ContextTypes

    from chime.notifications.messenger import MessageRef, Messenger
    from chime.scheduler.registry import JobRegistry
    from chime.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "I send you recurring reminders.\n\n"
    "/settimezone <Area/City> — set your timezone (required first)\n"
    "/setupchannel — send reminders to this chat\n"
    "/addtask <name> <schedule> <HH:MM> — add or replace a task\n"
    "    schedules: daily | weekly <day> | monthly <1-31> | custom <day,day>\n"
    "/canceltask <name> — stop a task\n"
    "/mytasks — list your tasks\n"
    "/help — this message"
)

GENERIC_FAILURE = "Something went wrong while saving your task. Please try again."

CHANNEL_CHECK_TEXT = "✅ This is a test message to verify reminder permissions."
CHANNEL_CHECK_TTL_SECONDS = 5.0

# Keeps delayed deletions referenced until they finish.
_background: set[asyncio.Task] = set()


def _command_name(update: Update) -> str:
    """Extract ``addtask`` from ``/addtask@ChimeBot rest of text``."""
    text = update.message.text or ""
    head = text.split(maxsplit=1)[0] if text.strip() else ""
    return head.lstrip("/").split("@", 1)[0]


def _services(context: ContextTypes.DEFAULT_TYPE) -> tuple[ScheduleStore, JobRegistry]:
    return context.bot_data["store"], context.bot_data["registry"]


async def handle_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Entry point for every slash command."""
    if update.message is None or update.effective_user is None:
        return
    try:
        command = parse_command(_command_name(update), list(context.args or []))
    except CommandError as exc:
        await update.message.reply_text(str(exc))
        return

    owner_id = str(update.effective_user.id)
    logger.info("Command %s from user %s", type(command).__name__, owner_id)
    try:
        reply = await execute(command, owner_id, str(update.effective_chat.id), context)
    except StorageError:
        logger.exception("Storage failure handling %s", type(command).__name__)
        reply = GENERIC_FAILURE
    await update.message.reply_text(reply)


async def execute(
    command: Command,
    owner_id: str,
    chat_id: str,
    context: ContextTypes.DEFAULT_TYPE,
) -> str:
    """Run a decoded command and return the reply text."""
    if isinstance(command, AddTask):
        return await _add_task(command, owner_id, context)
    if isinstance(command, CancelTask):
        return await _cancel_task(command, owner_id, context)
    if isinstance(command, SetTimezone):
        return await _set_timezone(command, owner_id, context)
    if isinstance(command, SetupChannel):
        return await _setup_channel(owner_id, chat_id, context)
    if isinstance(command, ListTasks):
        return await _list_tasks(owner_id, context)
    if isinstance(command, ShowHelp):
        return HELP_TEXT
    msg = f"Unhandled command: {command!r}"
    raise TypeError(msg)


# -- Commands --------------------------------------------------------------------


async def _add_task(command: AddTask, owner_id: str, context) -> str:
    store, registry = _services(context)
    try:
        next_at = await registry.schedule(
            owner_id, command.task_name, command.schedule, command.hour, command.minute
        )
    except MissingTimezoneError:
        await store.set_pending_task(owner_id, command.to_dict())
        return (
            "First, tell me your timezone with /settimezone <Area/City> "
            "(e.g. /settimezone Europe/Paris). I'll schedule "
            f'"{command.task_name}" right after.'
        )
    except InvalidScheduleError as exc:
        return f"Invalid schedule: {exc}"
    except PersistenceError:
        logger.exception("Could not schedule '%s' for user %s", command.task_name, owner_id)
        return GENERIC_FAILURE
    reply = _scheduled_reply(command, next_at)
    if not await store.get_user_channel(owner_id):
        reply += "\nTip: run /setupchannel in the chat where reminders should appear."
    return reply


def _scheduled_reply(command: AddTask, next_at: datetime) -> str:
    return (
        f'Task "{command.task_name}" has been scheduled!\n'
        f"🔔 {command.schedule.describe()} at {command.hour:02d}:{command.minute:02d}\n"
        f"⏰ Next reminder in: {format_countdown(next_at, datetime.now(UTC))}\n\n"
        "Use /mytasks to view all your tasks."
    )


async def _cancel_task(command: CancelTask, owner_id: str, context) -> str:
    _, registry = _services(context)
    try:
        existed = await registry.cancel(owner_id, command.task_name)
    except PersistenceError:
        logger.exception("Could not cancel '%s' for user %s", command.task_name, owner_id)
        return "Something went wrong while cancelling your task. Please try again."
    if not existed:
        return f'You have no task named "{command.task_name}".'
    return f'Cancelled task "{command.task_name}".'


async def _set_timezone(command: SetTimezone, owner_id: str, context) -> str:
    store, _ = _services(context)
    try:
        tz = recurrence.validate_timezone(command.timezone)
    except InvalidScheduleError:
        return f"Unknown timezone '{command.timezone}'. Use a name like Europe/Paris."

    await store.set_user_timezone(owner_id, command.timezone)
    local_now = datetime.now(tz).strftime("%H:%M")
    reply = f"Your timezone is now {command.timezone} (current time {local_now})."

    pending = await store.pop_pending_task(owner_id)
    if pending is None:
        return reply
    try:
        request = AddTask.from_dict(pending)
    except CommandError:
        logger.warning("Dropping unreadable pending task for user %s", owner_id)
        return reply
    return reply + "\n\n" + await _add_task(request, owner_id, context)


async def _setup_channel(owner_id: str, chat_id: str, context) -> str:
    store, _ = _services(context)
    messenger: Messenger = context.bot_data["messenger"]
    try:
        ref = await messenger.send_message(chat_id, CHANNEL_CHECK_TEXT)
    except DeliveryError as exc:
        logger.warning("Channel check failed for user %s in chat %s: %s", owner_id, chat_id, exc)
        return "Failed to set reminder channel. Please make sure I have proper permissions."

    await store.set_user_channel(owner_id, chat_id)
    task = asyncio.create_task(_delete_later(messenger, ref))
    _background.add(task)
    task.add_done_callback(_background.discard)
    return (
        "Reminders will be sent to this chat.\n"
        f"A test message has been sent and will be deleted in {CHANNEL_CHECK_TTL_SECONDS:g} seconds."
    )


async def _delete_later(messenger: Messenger, ref: MessageRef) -> None:
    await asyncio.sleep(CHANNEL_CHECK_TTL_SECONDS)
    try:
        await messenger.delete_message(ref)
    except DeliveryError as exc:
        logger.info("Could not delete channel check message %s: %s", ref.key, exc)


async def _list_tasks(owner_id: str, context) -> str:
    store, registry = _services(context)
    tasks = await store.list_tasks(owner_id)
    if not tasks:
        return "You have no active tasks. Add one with /addtask."

    now = datetime.now(UTC)
    blocks = []
    for task in tasks:
        job = registry.get_job(owner_id, task.name)
        next_text = format_countdown(job.next_occurrence, now) if job else "Not scheduled"
        blocks.append(f"{task.name}\n⏰ Next reminder: {next_text}\n📅 {task.describe()}")
    return "Your tasks:\n\n" + "\n\n".join(blocks)
