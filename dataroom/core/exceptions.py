"""
Data room exception hierarchy.

Every service in ``dataroom.services`` raises one of these types and nothing
else for expected failures. Blueprints translate them into HTTP responses
through ``dataroom.utils.errors.error_response`` so status codes stay
consistent across routes.

Usage:
    from dataroom.core.exceptions import NotFoundError, ExpiredError

    raise NotFoundError(resource="ShareSession", resource_id=session_id)
    raise ExpiredError("ShareSession", session_id, expired_at=session.expires_at)
"""


class DataRoomError(Exception):
    """Base class for all governance-engine failures."""


class InvalidInputError(DataRoomError):
    """Raised when arguments are malformed, empty or reference unknown data.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidEntryError(InvalidInputError):
    """Raised by the access log when an entry is malformed."""


class NotFoundError(DataRoomError):
    """Raised when a session, NDA request, workflow or document id is unknown.

    Args:
        resource: Human-readable entity name (e.g. "ShareSession").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ExpiredError(DataRoomError):
    """Raised when a time-boxed entity (session, NDA request) is past its deadline."""

    def __init__(self, resource: str, resource_id: str, expired_at=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expired_at = expired_at
        msg = f"{resource} id={resource_id} has expired"
        if expired_at is not None:
            msg += f" (at {expired_at.isoformat()})"
        super().__init__(msg)


class RevokedError(DataRoomError):
    """Raised when a share session was explicitly deactivated."""

    def __init__(self, session_id: str) -> None:
        self.resource_id = session_id
        super().__init__(f"ShareSession id={session_id} has been revoked")


class UnauthorizedError(DataRoomError):
    """Raised when the actor is not an approver of the stage, not the
    intended signer of an NDA request, or not allowed to clear the log."""

    def __init__(self, message: str, actor: str | None = None) -> None:
        self.actor = actor
        super().__init__(message)


class WorkflowClosedError(DataRoomError):
    """Raised when a mutation targets a workflow or NDA request in a terminal state."""

    def __init__(self, resource: str, resource_id: str, status: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.status = status
        super().__init__(f"{resource} id={resource_id} is closed (status={status})")


class AccessDeniedError(DataRoomError):
    """Raised when the NDA gate, the visibility tier or the approval gate
    refuses access.

    The message does not say whether an NDA was declined or
    expired; both look the same to the caller.
    """

    def __init__(self, message: str, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)
