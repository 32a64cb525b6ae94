"""Uniform JSON bodies for business failures"""

from typing import Any, Optional
from fastapi import status
from fastapi.responses import JSONResponse

# HTTP status per business error; anything unlisted is a plain 400
ERROR_STATUS = {
    "not_referrer": status.HTTP_403_FORBIDDEN,
    "not_approved": status.HTTP_403_FORBIDDEN,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "code_taken": status.HTTP_409_CONFLICT,
}


def failure_response(
    error: Optional[str],
    message: Optional[str],
    status_code: Optional[int] = None,
    **extra: Any,
) -> JSONResponse:
    content = {"success": False, "error": error, "message": message}
    content.update(extra)
    return JSONResponse(
        status_code=status_code or ERROR_STATUS.get(error, status.HTTP_400_BAD_REQUEST),
        content=content,
    )
