"""Wire contracts for the cart API and the external-service adapters.

Python attributes are snake_case; the JSON the browser extension sends
and receives is camelCase (``isFrozen``, ``reportCount``, ``reviewsJson``).
Every response body is wrapped in ``{"success": ..., "data" | "error": ...}``.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ErrorCode(StrEnum):
    INVALID_UUID = "INVALID_UUID"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_URL = "INVALID_URL"
    INVALID_CART_ID = "INVALID_CART_ID"
    INVALID_TARGET_CART = "INVALID_TARGET_CART"
    CART_NOT_FOUND = "CART_NOT_FOUND"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    REPORT_NOT_FOUND = "REPORT_NOT_FOUND"
    CART_LIMIT_REACHED = "CART_LIMIT_REACHED"
    CART_NAME_EXISTS = "CART_NAME_EXISTS"
    PRODUCT_LIMIT_REACHED = "PRODUCT_LIMIT_REACHED"
    TARGET_CART_FULL = "TARGET_CART_FULL"
    DUPLICATE_PRODUCT = "DUPLICATE_PRODUCT"
    CART_FROZEN = "CART_FROZEN"
    NO_PRODUCTS = "NO_PRODUCTS"
    HAS_PENDING_PRODUCTS = "HAS_PENDING_PRODUCTS"
    HAS_FAILED_PRODUCTS = "HAS_FAILED_PRODUCTS"
    REPORT_TIMEOUT = "REPORT_TIMEOUT"
    REPORT_GENERATION_FAILED = "REPORT_GENERATION_FAILED"
    REPORT_UNAVAILABLE = "REPORT_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# === Adapter payloads ===


class ProductFacts(BaseModel):
    """Structured data extracted from a product page. name and price are required."""

    name: str
    price: str
    brand: str | None = None
    color: str | None = None
    dimensions: str | None = None
    description: str | None = None


ReviewSource = Literal["reddit", "forum", "general"]


class ReviewResult(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""
    source: ReviewSource


# === Requests ===


class InitUserRequest(_CamelModel):
    uuid: str | None = None


class CreateCartRequest(_CamelModel):
    name: str = Field(default="Unnamed Cart", min_length=1, max_length=100)


class UpdateCartRequest(_CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    is_active: bool | None = None


class AddProductRequest(_CamelModel):
    url: str | None = None


class MoveProductRequest(_CamelModel):
    target_cart_id: int | None = None


# === Responses ===


class UserOut(_CamelModel):
    id: int
    uuid: str


class CartOut(_CamelModel):
    id: int
    name: str
    is_active: bool
    is_frozen: bool
    report_count: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    product_count: int = 0


class ProductOut(_CamelModel):
    id: int
    cart_id: int
    url: str
    status: Literal["pending", "complete", "failed"]
    name: str | None = None
    price: str | None = None
    brand: str | None = None
    color: str | None = None
    dimensions: str | None = None
    description: str | None = None
    reviews_json: list[dict[str, Any]] | None = None
    scraped_at: datetime | None = None
    created_at: datetime | None = None


class ReportOut(_CamelModel):
    content: str
    generated_at: datetime | None = None


class GeneratedReportOut(_CamelModel):
    content: str
    report_count: int
    is_frozen: bool
    generated_at: datetime | None = None


class MessageOut(_CamelModel):
    message: str


class ErrorBody(BaseModel):
    code: ErrorCode
    message: str


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    error: ErrorBody
