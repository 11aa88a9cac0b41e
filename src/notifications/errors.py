"""Exceptions raised by the notification engine."""


class NotificationError(Exception):
    """Base class for notification engine errors."""


class StorageError(NotificationError):
    """Raised when a key-value persistence read or write fails."""

    def __init__(self, message: str, key: str):
        super().__init__(message)
        self.key = key


class RemoteSyncError(NotificationError):
    """Raised by remote store clients; caught by the sync adapter."""

    def __init__(self, message: str, status_code: int = 0, policy_rejected: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.policy_rejected = policy_rejected
