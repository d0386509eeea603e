"""Domain error taxonomy shared by the engines, the REST routes and the socket handlers.

Engines raise these; the REST boundary turns them into ``{success: False, message}``
with ``status_code``, the socket boundary into an ``{success: False, error}`` ack.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(AppError):
    """Entity does not exist."""
    status_code = 404


class ForbiddenError(AppError):
    """Caller is authenticated but not allowed to act on the entity."""
    status_code = 403


class ConflictError(AppError):
    """Request is valid but the current state disallows it."""
    status_code = 409


class InvalidArgumentError(AppError):
    status_code = 400


class InternalError(AppError):
    status_code = 500


class LastMessagePointerError(InternalError):
    """The message was stored but the conversation's last-message pointer was not updated.

    Callers should treat the send as successful; only list views may be stale.
    """

    def __init__(self, conversation_id, message_id, message=None):
        super().__init__(message or 'Message sent but conversation could not be updated')
        self.conversation_id = conversation_id
        self.message_id = message_id
