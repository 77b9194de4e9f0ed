"""Controllers for the connection, receiver and media namespaces."""

from castlink.controllers.connection import ConnectionController
from castlink.controllers.exceptions import (
    CommandRejectedError,
    LaunchFailedError,
    NoActiveSessionError,
    NotRunningError,
    SessionExpiredError,
)
from castlink.controllers.media import MediaController
from castlink.controllers.receiver import ReceiverController, resolve_app_id

__all__ = [
    "CommandRejectedError",
    "ConnectionController",
    "LaunchFailedError",
    "MediaController",
    "NoActiveSessionError",
    "NotRunningError",
    "ReceiverController",
    "SessionExpiredError",
    "resolve_app_id",
]
