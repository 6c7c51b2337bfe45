"""Errors surfaced to callers of the HTTPS callable functions.

Trigger-driven paths never raise these; they exist so the callable entry
points can translate failures into the Firebase callable error format.
"""


class NotificationError(Exception):
    """Base class for errors reported back to a calling client."""

    status = "INTERNAL"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"status": self.status, "message": self.message}


class UnauthenticatedError(NotificationError):
    status = "UNAUTHENTICATED"
    http_status = 401


class NotFoundError(NotificationError):
    status = "NOT_FOUND"
    http_status = 404


class InvalidArgumentError(NotificationError):
    status = "INVALID_ARGUMENT"
    http_status = 400


class InternalError(NotificationError):
    pass
