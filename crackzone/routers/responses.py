from typing import Any
from fastapi import HTTPException, status

from ..services.results import Err, ErrorKind, Result

ERROR_STATUS = {
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_IN_TEAM: status.HTTP_409_CONFLICT,
    ErrorKind.TEAM_FULL: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE_PENDING: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.LEADER_CANNOT_LEAVE: status.HTTP_409_CONFLICT,
}


def unwrap(result: Result) -> Any:
    """Return the Ok value or raise the HTTP error for the Err kind."""
    if isinstance(result, Err):
        raise HTTPException(
            status_code=ERROR_STATUS[result.kind],
            detail={"code": result.kind.value, "message": result.message}
        )
    return result.value
