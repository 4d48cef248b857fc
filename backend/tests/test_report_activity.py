"""Tests for generate_cart_report races that the HTTP tests cannot stage.

The fake generator mutates the cart from a second session while
"Gemini" is running, simulating a concurrent request.
"""

import pytest
from sqlalchemy import update

from app.activities.report import ReportUnavailableError, generate_cart_report
from app.models.contracts import ErrorCode
from app.models.db import Cart, Product, User
from app.repos import carts as cart_repo
from app.repos import reports as report_repo
from app.workflows.cart_lifecycle import CartRuleViolation


class _RacingGenerator:
    def __init__(self, during_generate):
        self._during_generate = during_generate

    async def generate(self, products) -> str:
        await self._during_generate()
        return "<p>report</p>"


@pytest.fixture
async def ids(sessionmaker) -> tuple[int, int]:
    async with sessionmaker() as session:
        user = User(uuid="report-user")
        session.add(user)
        await session.flush()
        cart = Cart(user_id=user.id, name="Lamps", report_count=2)
        session.add(cart)
        await session.flush()
        session.add(Product(cart_id=cart.id, url="https://a", status="complete", name="A", price="$1"))
        await session.commit()
        return user.id, cart.id


class TestGenerateCartReport:
    """Report generation against concurrent cart changes."""

    @pytest.mark.asyncio
    async def test_third_report_freezes(self, sessionmaker, ids):
        """Report count 2 -> 3 freezes the cart and stores the report."""
        user_id, cart_id = ids

        async def nothing():
            return None

        async with sessionmaker() as session:
            result = await generate_cart_report(session, _RacingGenerator(nothing), user_id, cart_id)
        assert result.report_count == 3
        assert result.is_frozen is True
        assert result.content == "<p>report</p>"

    @pytest.mark.asyncio
    async def test_frozen_while_generating(self, sessionmaker, ids):
        """A cart frozen by a concurrent report rejects this one and stores nothing."""
        user_id, cart_id = ids

        async def freeze():
            async with sessionmaker() as other:
                await other.execute(
                    update(Cart).where(Cart.id == cart_id).values(report_count=3, is_frozen=True)
                )
                await other.commit()

        async with sessionmaker() as session:
            with pytest.raises(CartRuleViolation) as exc_info:
                await generate_cart_report(session, _RacingGenerator(freeze), user_id, cart_id)
        assert exc_info.value.code == ErrorCode.CART_FROZEN

        async with sessionmaker() as session:
            assert await report_repo.get_for_cart(session, cart_id) is None
            cart = await cart_repo.get_owned(session, cart_id, user_id)
        assert cart.report_count == 3

    @pytest.mark.asyncio
    async def test_deleted_while_generating(self, sessionmaker, ids):
        """A cart deleted mid-generation reports CART_NOT_FOUND."""
        user_id, cart_id = ids

        async def delete():
            async with sessionmaker() as other:
                await cart_repo.delete(other, cart_id)
                await other.commit()

        async with sessionmaker() as session:
            with pytest.raises(CartRuleViolation) as exc_info:
                await generate_cart_report(session, _RacingGenerator(delete), user_id, cart_id)
        assert exc_info.value.code == ErrorCode.CART_NOT_FOUND
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_no_generator(self, sessionmaker, ids):
        """Passing the gate without a generator raises ReportUnavailableError."""
        user_id, cart_id = ids
        async with sessionmaker() as session:
            with pytest.raises(ReportUnavailableError):
                await generate_cart_report(session, None, user_id, cart_id)
