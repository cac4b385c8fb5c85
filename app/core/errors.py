"""
Call Lifecycle Errors
Tagged error kinds raised by the call services and mapped to HTTP at the API edge
"""
from enum import Enum


class ErrorCode(str, Enum):
    """Error kind surfaced to callers of the call services"""
    FORBIDDEN = "FORBIDDEN"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


HTTP_STATUS_BY_CODE = {
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INTERNAL_SERVER_ERROR: 500,
}


class CallError(Exception):
    """
    Error raised by the call lifecycle services.

    Client kinds (FORBIDDEN, BAD_REQUEST, NOT_FOUND) carry an actionable
    message. INTERNAL_SERVER_ERROR carries a generic message only; the
    underlying cause is logged, never attached to the message.
    """

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_CODE[self.code]

    def to_dict(self) -> dict:
        return {"code": self.code.value, "detail": self.message}

    def __repr__(self) -> str:
        return f"CallError(code={self.code.value!r}, message={self.message!r})"
