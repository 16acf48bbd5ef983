class ChatError(Exception):
    """Base class for errors raised by the room and message stores."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ChatError):
    """A required field is missing, empty or too long."""


class NotFound(ChatError):
    """The referenced room does not exist."""


class Forbidden(ChatError):
    """The presented room password does not verify."""


class MalformedEvent(ChatError):
    """A realtime payload could not be parsed or has an unknown type."""
