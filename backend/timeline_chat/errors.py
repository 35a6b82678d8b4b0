"""
Typed domain exceptions for the messaging core.

Store and service code raise these; the REST routers map them to HTTP
status codes and the socket gateway turns them into a single ``error``
event for the sender.

Usage:
    # In service layer
    raise NotFoundError("Conversation", conversation_id)

    # In route handler
    try:
        conversation = await service.get_conversation(conversation_id, user_id, "agent")
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""


class MessagingError(Exception):
    """Base exception for all messaging domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(MessagingError):
    """Bad or missing credentials. Terminal for a socket, maps to HTTP 401."""


class AuthorizationError(MessagingError):
    """Valid identity acting on a conversation it is not part of. Maps to HTTP 403."""

    def __init__(self, message: str = "Not authorized to access this conversation") -> None:
        super().__init__(message)


ForbiddenError = AuthorizationError


class NotFoundError(MessagingError):
    """Resource was not found. Maps to HTTP 404."""

    def __init__(self, resource_type: str, identifier: str = None) -> None:
        super().__init__(f"{resource_type} not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(MessagingError):
    """Concurrent insert violated a uniqueness constraint. Maps to HTTP 409."""


class ValidationError(MessagingError):
    """Invalid input such as empty message content. Maps to HTTP 400."""
