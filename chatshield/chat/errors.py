"""Typed errors raised by the chat use cases.

Each error carries an ``ErrorCode``; the HTTP status follows from the code.
They are raised only before a stream is opened (admission) or by the
non-streaming send; failures inside an open stream become an ``error``
event instead.
"""

from chatshield.api.errors import HTTP_STATUS, ErrorCode


class ChatError(Exception):
    """Base class for chat use-case errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.code]

    @property
    def details(self) -> dict | None:
        return None


class ChatValidationError(ChatError):
    code = ErrorCode.VALIDATION_ERROR


class ConversationNotFoundError(ChatError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, message: str = "Conversation not found") -> None:
        super().__init__(message)


class MessageNotFoundError(ChatError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, message: str = "Message not found") -> None:
        super().__init__(message)


class AuthenticationError(ChatError):
    code = ErrorCode.UNAUTHORIZED

    def __init__(self, message: str = "Missing caller identity") -> None:
        super().__init__(message)


class ForbiddenError(ChatError):
    code = ErrorCode.FORBIDDEN

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class RateLimitExceededError(ChatError):
    code = ErrorCode.RATE_LIMITED

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")
        self.retry_after = retry_after

    @property
    def details(self) -> dict:
        return {"retry_after": self.retry_after}


class QuotaExceededError(ChatError):
    code = ErrorCode.QUOTA_EXCEEDED

    def __init__(self, used: int, limit: int) -> None:
        super().__init__(f"Daily token limit exceeded ({used}/{limit}).")
        self.used = used
        self.limit = limit

    @property
    def details(self) -> dict:
        return {"used": self.used, "limit": self.limit}


class ProviderError(ChatError):
    code = ErrorCode.PROVIDER_ERROR

    def __init__(self, message: str = "Failed to get AI response") -> None:
        super().__init__(message)
