"""Error payload helpers shared by the routers.

Errors use the shape {"error": {"code", "message", "status"}}.
"""

from fastapi import HTTPException

from subscription_sync.models.results import TransitionErrorKind, TransitionResult

_STATUS_NAMES = {
    400: "INVALID_ARGUMENT",
    404: "NOT_FOUND",
    409: "CONFLICT",
    502: "BAD_GATEWAY",
    503: "UNAVAILABLE",
}

_TRANSITION_STATUS_CODES = {
    TransitionErrorKind.NOT_FOUND: 404,
    TransitionErrorKind.CONFLICT: 409,
}


def error_detail(code: int, message: str) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "status": _STATUS_NAMES.get(code, "UNKNOWN"),
        }
    }


def http_error(code: int, message: str) -> HTTPException:
    return HTTPException(status_code=code, detail=error_detail(code, message))


def raise_for_transition(result: TransitionResult) -> None:
    """Raise the HTTP error matching a failed TransitionResult."""
    if result.error is None:
        return
    raise http_error(_TRANSITION_STATUS_CODES[result.error.kind], result.error.message)
