"""
Domain errors raised by the messaging services.

    ChatError (base)
    ├── ValidationError - malformed or invariant-violating input
    ├── NotFoundError   - entity absent, or caller is not a member
    └── ForbiddenError  - member lacking the privilege for the operation

Non-members always get NotFoundError so that existence does not leak.
The HTTP layer renders ``to_dict()`` with ``status_code``.
"""
from typing import Any, Dict, Optional


class ChatError(Exception):

    status_code: int = 400
    default_error_code: str = "CHAT_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(ChatError):

    status_code = 400
    default_error_code = "VALIDATION_ERROR"


class NotFoundError(ChatError):

    status_code = 404
    default_error_code = "NOT_FOUND"


class ForbiddenError(ChatError):

    status_code = 403
    default_error_code = "FORBIDDEN"
