"""Reminder delivery — messenger abstraction, dispatch and live countdowns."""

from chime.notifications.countdown import CountdownTicker, format_countdown
from chime.notifications.dispatcher import NotificationDispatcher
from chime.notifications.messenger import MessageRef, Messenger
from chime.notifications.telegram_messenger import TelegramMessenger

__all__ = [
    "CountdownTicker",
    "MessageRef",
    "Messenger",
    "NotificationDispatcher",
    "TelegramMessenger",
    "format_countdown",
]
