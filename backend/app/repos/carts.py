"""Cart queries. Every lookup is scoped by owning user."""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import false, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import Cart, Product


async def get_owned(session: AsyncSession, cart_id: int, user_id: int) -> Cart | None:
    result = await session.execute(
        select(Cart).where(Cart.id == cart_id, Cart.user_id == user_id).limit(1)
    )
    return result.scalar_one_or_none()


async def lock_owned(session: AsyncSession, cart_id: int, user_id: int) -> Cart | None:
    """Write-lock the user's cart for the rest of the transaction and return it fresh.

    Product-limit checks count under this lock, so concurrent adds or moves
    into one cart serialise. The lock is a self-assigning UPDATE: a row lock
    on Postgres, the database write lock on SQLite (which has no FOR UPDATE).
    Returns None when the cart does not exist or belongs to someone else.
    """
    result = await session.execute(
        update(Cart)
        .where(Cart.id == cart_id, Cart.user_id == user_id)
        .values(updated_at=Cart.updated_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    refreshed = await session.execute(
        select(Cart).where(Cart.id == cart_id).execution_options(populate_existing=True)
    )
    return refreshed.scalar_one()


async def list_with_counts(session: AsyncSession, user_id: int) -> list[tuple[Cart, int]]:
    """User's carts oldest-first, each paired with its product count."""
    stmt = (
        select(Cart, func.count(Product.id))
        .outerjoin(Product, Product.cart_id == Cart.id)
        .where(Cart.user_id == user_id)
        .group_by(Cart.id)
        .order_by(Cart.created_at, Cart.id)
    )
    result = await session.execute(stmt)
    return [(cart, int(count)) for cart, count in result.all()]


async def count_for_user(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(select(func.count(Cart.id)).where(Cart.user_id == user_id))
    return int(result.scalar_one())


async def get_by_name(session: AsyncSession, user_id: int, name: str) -> Cart | None:
    result = await session.execute(
        select(Cart).where(Cart.user_id == user_id, Cart.name == name).limit(1)
    )
    return result.scalar_one_or_none()


async def create(session: AsyncSession, user_id: int, name: str) -> Cart:
    cart = Cart(user_id=user_id, name=name, is_active=False, report_count=0, is_frozen=False)
    session.add(cart)
    await session.flush()
    await session.refresh(cart)
    return cart


async def clear_active(session: AsyncSession, user_id: int, keep_cart_id: int) -> None:
    """Unset is_active on every cart of the user except ``keep_cart_id``."""
    await session.execute(
        update(Cart)
        .where(Cart.user_id == user_id, Cart.id != keep_cart_id)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )


async def update_fields(session: AsyncSession, cart: Cart, **fields: Any) -> Cart:
    for key, value in fields.items():
        setattr(cart, key, value)
    cart.updated_at = func.now()
    await session.flush()
    await session.refresh(cart)
    return cart


async def delete(session: AsyncSession, cart_id: int) -> None:
    """Delete a cart; products and report go with it via ON DELETE CASCADE."""
    await session.execute(sa_delete(Cart).where(Cart.id == cart_id))


async def record_report(session: AsyncSession, cart_id: int, freeze_at: int) -> Cart | None:
    """Increment report_count and recompute is_frozen in one statement.

    Conditional on the cart still being unfrozen, so two reports racing
    past the gate cannot push the count beyond the freeze point. Returns
    the updated cart, or None when the cart was frozen (or deleted) in
    the meantime. The caller commits together with the report upsert.
    """
    stmt = (
        update(Cart)
        .where(Cart.id == cart_id, Cart.is_frozen == false())
        .values(
            report_count=Cart.report_count + 1,
            is_frozen=(Cart.report_count + 1) >= freeze_at,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        return None
    refreshed = await session.execute(
        select(Cart).where(Cart.id == cart_id).execution_options(populate_existing=True)
    )
    return refreshed.scalar_one()
