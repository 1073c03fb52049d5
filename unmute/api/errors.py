"""Mapping of service errors onto HTTP responses."""
from fastapi import HTTPException

from unmute.services import errors

_STATUS_CODES = {
    errors.InvalidRequestError: 400,
    errors.CallNotInProgressError: 400,
    errors.CallNotFoundError: 404,
    errors.ConfigurationError: 500,
    errors.UpstreamError: 500,
}


def http_error(error: errors.UnmuteError) -> HTTPException:
    """Build the HTTPException for a service error."""
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(error, cls)), 500
    )
    detail = {"message": error.message}
    if error.error:
        detail["error"] = error.error
    if isinstance(error, errors.CallNotInProgressError):
        detail["status"] = error.status
    return HTTPException(status_code=status_code, detail=detail)
