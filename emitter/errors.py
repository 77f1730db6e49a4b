"""Errors reported back to clients by the broker's handlers."""

from __future__ import annotations

from typing import Any

_MAX_REQUEST = 0xFFFF


class EmitterError(Exception):
    """An error carrying an HTTP-like status and the id of the request it answers."""

    def __init__(self, status: int, message: str, request: int = 0) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.request = 0
        self.for_request(request)

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"EmitterError(status={self.status!r}, message={self.message!r}, "
            f"request={self.request!r})"
        )

    def copy(self) -> EmitterError:
        """Return an independent copy of this error."""
        return EmitterError(self.status, self.message, self.request)

    def for_request(self, request_id: int) -> None:
        """Bind this error to the request it answers."""
        if not 0 <= request_id <= _MAX_REQUEST:
            raise ValueError(f"request id {request_id} is out of range")
        self.request = request_id

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form; the request id is left out when it is zero."""
        data: dict[str, Any] = {}
        if self.request:
            data["req"] = self.request
        data["status"] = self.status
        data["message"] = self.message
        return data


def new_error(message: str) -> EmitterError:
    """Create a server error (status 500) with the given message."""
    return EmitterError(500, message)


ERR_BAD_REQUEST = EmitterError(400, "the request was invalid or cannot be otherwise served")
ERR_UNAUTHORIZED = EmitterError(
    401, "the security key provided is not authorized to perform this operation"
)
ERR_PAYMENT_REQUIRED = EmitterError(
    402, "the request can not be served, as the payment is required to proceed"
)
ERR_FORBIDDEN = EmitterError(
    403, "the request is understood, but it has been refused or access is not allowed"
)
ERR_NOT_FOUND = EmitterError(404, "the resource requested does not exist")
ERR_SERVER_ERROR = EmitterError(
    500, "an unexpected condition was encountered and no more specific message is suitable"
)
ERR_NOT_IMPLEMENTED = EmitterError(
    501,
    "the server either does not recognize the request method, "
    "or it lacks the ability to fulfill the request",
)
ERR_TARGET_INVALID = EmitterError(
    400, "channel should end with `/` for strict types or `/#/` for wildcards"
)
ERR_TARGET_TOO_LONG = EmitterError(400, "channel can not have more than 23 parts")
ERR_LINK_INVALID = EmitterError(
    400, "the link must be an alphanumeric string of 1 or 2 characters"
)
ERR_UNAUTHORIZED_EXT = EmitterError(
    401, "the security key with extend permission can only be used for private links"
)