"""
JSON envelope for API responses: {"ok", "data", "error", "message"}
"""
from typing import Any, Optional

from fastapi.responses import JSONResponse


def _envelope(ok: bool, status: int, data: Optional[Any], error: Optional[str], message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "ok": ok,
            "data": data if data is not None else {},
            "error": error,
            "message": message,
        },
    )


def success_response(data: Optional[Any] = None, message: str = "OK", status: int = 200) -> JSONResponse:
    return _envelope(True, status, data, None, message)


def error_response(error_code: str, status: int = 400, message: str = "An error occurred",
                   data: Optional[Any] = None) -> JSONResponse:
    return _envelope(False, status, data, error_code, message)
