# chatsync/core/errors.py
"""
Error taxonomy for the chat core.

Every core operation raises one of these instead of returning a status code.
Nothing here is retried; callers decide what to do with a failure.
"""


class ChatSyncError(Exception):
    """Base class for all chat core failures."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFound(ChatSyncError):
    """A room, message, request, user or notification id does not resolve."""

    status_code = 404


class AlreadyExists(ChatSyncError):
    status_code = 409


class AlreadyRequested(AlreadyExists):
    """A pending friend request already exists for the pair, in either direction."""


class InvalidState(ChatSyncError):
    """Responding to a non-pending request, self-targeted request, and similar."""

    status_code = 400


class StoreUnavailable(ChatSyncError):
    """The underlying document store operation failed."""

    status_code = 503
