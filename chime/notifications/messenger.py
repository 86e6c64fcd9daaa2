"""Messenger protocol — interface to the chat platform that shows reminders."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class MessageRef:
    """Handle to a message that was sent and may later be edited or deleted.

    Attributes:
        channel: Platform channel/chat identifier the message lives in.
        message_id: Platform message identifier within that channel.
    """

    channel: str
    message_id: str

    @property
    def key(self) -> str:
        """Stable identifier used to key countdown tickers."""
        return f"{self.channel}/{self.message_id}"


@runtime_checkable
class Messenger(Protocol):
    """Protocol that every chat platform adapter must satisfy.

    Implementations raise PermissionDenied, ChannelUnavailable or Expired
    (all DeliveryError) and never retry on their own.
    """

    @property
    def name(self) -> str:
        """Platform identifier (e.g. 'telegram')."""
        ...

    async def send_message(self, channel: str, content: str) -> MessageRef:
        """Post ``content`` to ``channel`` and return a handle to the message."""
        ...

    async def edit_message(self, ref: MessageRef, content: str) -> None:
        """Replace the text of a previously sent message."""
        ...

    async def delete_message(self, ref: MessageRef) -> None:
        """Remove a previously sent message."""
        ...
