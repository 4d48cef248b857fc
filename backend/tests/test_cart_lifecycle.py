"""Tests for the cart lifecycle rules (pure functions, no database)."""

from types import SimpleNamespace

import pytest

from app.models.contracts import ErrorCode
from app.workflows.cart_lifecycle import (
    FREEZE_AT_REPORT_COUNT,
    MAX_CARTS_PER_USER,
    MAX_PRODUCTS_PER_CART,
    CartRuleViolation,
    cart_state,
    check_can_add_product,
    check_can_create_cart,
    check_move_target_accepts,
    check_move_target_open,
    check_report_gate,
)


def _cart(frozen=False, report_count=0):
    return SimpleNamespace(is_frozen=frozen, report_count=report_count)


def _products(*statuses):
    return [SimpleNamespace(status=s, name=f"p{i}") for i, s in enumerate(statuses)]


def _code(fn, *args) -> ErrorCode:
    with pytest.raises(CartRuleViolation) as exc_info:
        fn(*args)
    return exc_info.value.code


class TestFreezing:
    """Freeze threshold and derived state."""

    def test_threshold(self):
        """Carts freeze at the third report."""
        assert FREEZE_AT_REPORT_COUNT == 3

    def test_state(self):
        """State follows is_frozen."""
        assert cart_state(_cart()) == "active"
        assert cart_state(_cart(frozen=True)) == "frozen"


class TestCreateCart:
    """check_can_create_cart"""

    def test_below_limit(self):
        """Nine existing carts and a fresh name pass."""
        check_can_create_cart(MAX_CARTS_PER_USER - 1, name_taken=False)

    def test_limit_before_name(self):
        """At the limit, the limit error wins over a duplicate name."""
        code = _code(check_can_create_cart, MAX_CARTS_PER_USER, True)
        assert code == ErrorCode.CART_LIMIT_REACHED

    def test_name_taken(self):
        """Duplicate name -> CART_NAME_EXISTS."""
        assert _code(check_can_create_cart, 0, True) == ErrorCode.CART_NAME_EXISTS


class TestAddProduct:
    """check_can_add_product: frozen, then limit, then duplicate."""

    def test_ok(self):
        """Open cart with room and a new URL passes."""
        check_can_add_product(_cart(), 0, False)

    def test_frozen_first(self):
        """Frozen wins over full and duplicate."""
        code = _code(check_can_add_product, _cart(frozen=True), MAX_PRODUCTS_PER_CART, True)
        assert code == ErrorCode.CART_FROZEN

    def test_limit_before_duplicate(self):
        """Full wins over duplicate."""
        code = _code(check_can_add_product, _cart(), MAX_PRODUCTS_PER_CART, True)
        assert code == ErrorCode.PRODUCT_LIMIT_REACHED

    def test_duplicate(self):
        """Duplicate URL -> DUPLICATE_PRODUCT."""
        assert _code(check_can_add_product, _cart(), 3, True) == ErrorCode.DUPLICATE_PRODUCT


class TestMoveChecks:
    """Target-side move checks."""

    def test_frozen_target(self):
        """Frozen target -> CART_FROZEN."""
        assert _code(check_move_target_open, _cart(frozen=True)) == ErrorCode.CART_FROZEN

    def test_duplicate_before_full(self):
        """Duplicate URL in target wins over a full target."""
        code = _code(check_move_target_accepts, MAX_PRODUCTS_PER_CART, True)
        assert code == ErrorCode.DUPLICATE_PRODUCT

    def test_full(self):
        """Full target -> TARGET_CART_FULL."""
        code = _code(check_move_target_accepts, MAX_PRODUCTS_PER_CART, False)
        assert code == ErrorCode.TARGET_CART_FULL


class TestReportGate:
    """check_report_gate ordering."""

    def test_missing_cart(self):
        """No cart -> 404 CART_NOT_FOUND."""
        with pytest.raises(CartRuleViolation) as exc_info:
            check_report_gate(None, [])
        assert exc_info.value.code == ErrorCode.CART_NOT_FOUND
        assert exc_info.value.status == 404

    def test_frozen_before_products(self):
        """Frozen is checked before the product list."""
        assert _code(check_report_gate, _cart(frozen=True), []) == ErrorCode.CART_FROZEN

    def test_empty(self):
        """No products -> NO_PRODUCTS."""
        assert _code(check_report_gate, _cart(), []) == ErrorCode.NO_PRODUCTS

    def test_pending_before_failed(self):
        """Pending wins over failed."""
        code = _code(check_report_gate, _cart(), _products("failed", "pending", "complete"))
        assert code == ErrorCode.HAS_PENDING_PRODUCTS

    def test_failed(self):
        """Any failed product blocks the report."""
        code = _code(check_report_gate, _cart(), _products("complete", "failed"))
        assert code == ErrorCode.HAS_FAILED_PRODUCTS

    def test_returns_complete_products(self):
        """All complete -> the complete list is returned in order."""
        products = _products("complete", "complete")
        assert check_report_gate(_cart(report_count=2), products) == products
