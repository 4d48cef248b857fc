"""Cart lifecycle: report-count based freezing and the rules that gate it.

A cart moves one way only:

    active (report_count 0-2, is_frozen=False)
        --successful report that brings report_count to 3-->
    frozen (report_count >= 3, is_frozen=True)

There is no unfreeze; deleting the cart is the only way out. A frozen
cart stays readable and its products can still be deleted, but it cannot
accept new products (add or move-in) or generate another report.

The checks here are pure functions over rows already loaded by the
caller. They raise CartRuleViolation; the API layer renders it with the
violation's status and code.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from app.models.contracts import ErrorCode
from app.models.db import Cart, Product

MAX_CARTS_PER_USER = 10
MAX_PRODUCTS_PER_CART = 15
FREEZE_AT_REPORT_COUNT = 3

CartState = Literal["active", "frozen"]


class CartRuleViolation(Exception):
    """A business rule rejected the operation. ``code`` is what clients branch on."""

    def __init__(self, code: ErrorCode, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


def cart_state(cart: Cart) -> CartState:
    return "frozen" if cart.is_frozen else "active"


# --- Cart creation ---


def check_can_create_cart(existing_count: int, name_taken: bool) -> None:
    if existing_count >= MAX_CARTS_PER_USER:
        raise CartRuleViolation(
            ErrorCode.CART_LIMIT_REACHED,
            f"You've reached the maximum of {MAX_CARTS_PER_USER} carts",
        )
    if name_taken:
        raise CartRuleViolation(
            ErrorCode.CART_NAME_EXISTS, "A cart with this name already exists"
        )


# --- Product mutation gates ---


def check_can_add_product(cart: Cart, product_count: int, duplicate: bool) -> None:
    """Add gate: not frozen, then below the item limit, then URL not already present."""
    if cart.is_frozen:
        raise CartRuleViolation(ErrorCode.CART_FROZEN, "This cart has reached its report limit")
    if product_count >= MAX_PRODUCTS_PER_CART:
        raise CartRuleViolation(
            ErrorCode.PRODUCT_LIMIT_REACHED,
            f"This cart is full ({MAX_PRODUCTS_PER_CART} items maximum)",
        )
    if duplicate:
        raise CartRuleViolation(
            ErrorCode.DUPLICATE_PRODUCT, "This product is already in your cart"
        )


def check_move_target_open(target: Cart) -> None:
    if target.is_frozen:
        raise CartRuleViolation(
            ErrorCode.CART_FROZEN, "The target cart has reached its report limit"
        )


def check_move_target_accepts(target_count: int, duplicate: bool) -> None:
    """Move gate on the target cart, evaluated after the product is found."""
    if duplicate:
        raise CartRuleViolation(
            ErrorCode.DUPLICATE_PRODUCT, "This product is already in the target cart"
        )
    if target_count >= MAX_PRODUCTS_PER_CART:
        raise CartRuleViolation(
            ErrorCode.TARGET_CART_FULL,
            f"The target cart is full ({MAX_PRODUCTS_PER_CART} items maximum)",
        )


# --- Report gate ---


def check_report_gate(cart: Cart | None, products: Sequence[Product]) -> list[Product]:
    """Run the report precondition chain; the first failing check wins.

    Order: owned cart -> not frozen -> has products -> none pending ->
    none failed -> at least one complete. Pending is checked before
    failed, so a cart with both reports HAS_PENDING_PRODUCTS.

    Returns the complete products to feed to report generation.
    """
    if cart is None:
        raise CartRuleViolation(ErrorCode.CART_NOT_FOUND, "Cart not found", status=404)
    if cart.is_frozen:
        raise CartRuleViolation(ErrorCode.CART_FROZEN, "This cart has reached its report limit")
    if not products:
        raise CartRuleViolation(ErrorCode.NO_PRODUCTS, "Add products to generate report")
    if any(p.status == "pending" for p in products):
        raise CartRuleViolation(
            ErrorCode.HAS_PENDING_PRODUCTS, "Please wait for all products to finish loading"
        )
    if any(p.status == "failed" for p in products):
        raise CartRuleViolation(
            ErrorCode.HAS_FAILED_PRODUCTS, "Remove failed items to generate report"
        )
    complete = [p for p in products if p.status == "complete"]
    if not complete:
        raise CartRuleViolation(ErrorCode.NO_PRODUCTS, "Add products to generate report")
    return complete
