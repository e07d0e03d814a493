from __future__ import annotations


class DispatchError(RuntimeError):
    """Base class for notification dispatch failures."""


class ConfigurationError(DispatchError):
    """A schedule or channel definition cannot be used; the affected item is skipped."""


class ChannelNotFound(ConfigurationError):
    def __init__(self, channel_id: str) -> None:
        super().__init__(f"channel {channel_id} not found or inactive")
        self.channel_id = channel_id


class StoreReadError(DispatchError):
    """Reading from the collaborator store failed; the whole run is aborted."""


class StoreWriteError(DispatchError):
    """Writing a single notification row failed."""


class DuplicateKeyError(StoreWriteError):
    """Another writer already inserted a row with the same idempotency key."""


class DeliveryError(DispatchError):
    """A single webhook target rejected or failed the POST."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(f"{target}: {reason}")
        self.target = target
        self.reason = reason


class NotificationNotFound(DispatchError):
    def __init__(self, notification_id: str) -> None:
        super().__init__(f"notification {notification_id} not found")
        self.notification_id = notification_id
