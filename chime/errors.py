"""Exception taxonomy for the reminder engine."""


class ChimeError(Exception):
    """Base class for all reminder engine errors."""


class InvalidScheduleError(ChimeError):
    """A schedule spec, time of day, or timezone is malformed."""


class MissingTimezoneError(ChimeError):
    """The owner has not configured a timezone yet."""

    def __init__(self, owner_id: str) -> None:
        super().__init__(f"User {owner_id} has no timezone configured")
        self.owner_id = owner_id


class PersistenceError(ChimeError):
    """The schedule could not be durably saved or removed."""


class StorageError(ChimeError):
    """The key-value store failed (driver error, unreachable file, ...)."""


class DispatchError(ChimeError):
    """A reminder could not be delivered at fire time."""


class DeliveryError(ChimeError):
    """Base class for messaging failures. Never retried automatically."""


class PermissionDenied(DeliveryError):
    """The bot is not allowed to post or edit in the target channel."""


class ChannelUnavailable(DeliveryError):
    """The target channel does not exist or cannot be reached."""


class Expired(DeliveryError):
    """The message being edited or deleted no longer exists."""


class CommandError(ChimeError):
    """An inbound command could not be decoded."""
