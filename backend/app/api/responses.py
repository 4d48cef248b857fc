"""Response envelope helpers shared by every route module.

Success: ``{"success": true, "data": ...}``.
Failure: ``{"success": false, "error": {"code": ..., "message": ...}}``.
"""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.models.contracts import ErrorBody, ErrorCode, ErrorResponse

INTERNAL_ERROR_MESSAGE = "Something went wrong. Please try again in a few minutes."


class ApiError(Exception):
    """An expected failure that maps to a fixed status code and error code."""

    def __init__(self, status: int, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


# Missing and foreign-owned resources share one message so callers cannot probe existence
def cart_not_found(message: str = "Cart not found") -> ApiError:
    return ApiError(404, ErrorCode.CART_NOT_FOUND, message)


def product_not_found() -> ApiError:
    return ApiError(404, ErrorCode.PRODUCT_NOT_FOUND, "Product not found")


def invalid_uuid(status: int = 401) -> ApiError:
    return ApiError(status, ErrorCode.INVALID_UUID, "Invalid or missing user ID")


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [_dump(item) for item in data]
    return jsonable_encoder(data)


def ok(data: Any, status: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": True, "data": _dump(data)})


def error_response(status: int, code: ErrorCode, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(code=code, message=message))
    return JSONResponse(status_code=status, content=body.model_dump(mode="json"))
