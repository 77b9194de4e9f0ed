"""Custom exception types for controller-level errors.

These signal a violated precondition or an explicit refusal by the device. They
are local to one operation and never affect other in-flight requests.
"""

from __future__ import annotations

from castlink.protocol.exceptions import CastError


class NotRunningError(CastError):
    """No running application matches the given session or transport id.

    Raised before anything is sent to the device.

    Attributes:
        session_id: Session or transport id that was not found

    """

    def __init__(self, session_id: str) -> None:
        self.session_id: str = session_id
        super().__init__(f"No running application with session or transport id {session_id!r}")


class NoActiveSessionError(CastError):
    """Media command issued before any media session is known."""

    def __init__(self, command: str) -> None:
        self.command: str = command
        super().__init__(f"Cannot {command}: no active media session")


class SessionExpiredError(CastError):
    """The application owning a media session stopped.

    Attributes:
        transport_id: Transport id of the application that went away

    """

    def __init__(self, transport_id: str, reason: str = "application_stopped") -> None:
        self.transport_id: str = transport_id
        self.reason: str = reason
        super().__init__(f"Media session on {transport_id} expired: {reason}")


class CommandRejectedError(CastError):
    """The device explicitly refused a command.

    Attributes:
        reply_type: Rejection message type (e.g., "INVALID_REQUEST", "LOAD_FAILED")
        reason: Reason string from the device, if any

    """

    def __init__(self, reply_type: str, reason: str = "") -> None:
        self.reply_type: str = reply_type
        self.reason: str = reason
        message = f"Command rejected by device: {reply_type}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class LaunchFailedError(CastError):
    """Application launch failed or never showed up as running in time.

    Attributes:
        app_id: Application id that was launched
        reason: Failure reason ("timeout" or the device's LAUNCH_ERROR reason)

    """

    def __init__(self, app_id: str, reason: str) -> None:
        self.app_id: str = app_id
        self.reason: str = reason
        super().__init__(f"Launch of {app_id} failed: {reason}")
