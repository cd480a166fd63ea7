"""JSON envelopes for the health and error responses.

Successful bodies look like ``{"data": ...}``. Errors look like
``{"error": {"message", "code", "details"?, "error_id"?}}``.
"""

from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


class DriveLinkResponse:
    @staticmethod
    def success(data: Any, status_code: int = status.HTTP_200_OK) -> JSONResponse:
        return JSONResponse(content=jsonable_encoder({"data": data}), status_code=status_code)

    @staticmethod
    def error(
        message: str,
        code: str = "API_ERROR",
        details: Any | None = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        error_id: str | None = None,
    ) -> JSONResponse:
        """Error envelope; ``error_id`` is only set for server-side failures."""
        error: dict[str, Any] = {"message": message, "code": code}
        if details is not None:
            error["details"] = details
        if error_id:
            error["error_id"] = error_id
        return JSONResponse(content=jsonable_encoder({"error": error}), status_code=status_code)
