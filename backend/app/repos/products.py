"""Product queries and the enrichment pipeline's terminal writes."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.contracts import ProductFacts, ReviewResult
from app.models.db import Product

_SCRAPE_FIELDS = ("name", "price", "brand", "color", "dimensions", "description")


async def get_in_cart(session: AsyncSession, product_id: int, cart_id: int) -> Product | None:
    result = await session.execute(
        select(Product).where(Product.id == product_id, Product.cart_id == cart_id).limit(1)
    )
    return result.scalar_one_or_none()


async def get(session: AsyncSession, product_id: int) -> Product | None:
    return await session.get(Product, product_id, populate_existing=True)


async def list_for_cart(session: AsyncSession, cart_id: int) -> list[Product]:
    """Products oldest-first; the extension polls this for enrichment status."""
    result = await session.execute(
        select(Product)
        .where(Product.cart_id == cart_id)
        .order_by(Product.created_at, Product.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def count_for_cart(session: AsyncSession, cart_id: int) -> int:
    result = await session.execute(
        select(func.count(Product.id)).where(Product.cart_id == cart_id)
    )
    return int(result.scalar_one())


async def find_by_url(session: AsyncSession, cart_id: int, url: str) -> Product | None:
    result = await session.execute(
        select(Product).where(Product.cart_id == cart_id, Product.url == url).limit(1)
    )
    return result.scalar_one_or_none()


async def create_pending(session: AsyncSession, cart_id: int, url: str) -> Product:
    product = Product(cart_id=cart_id, url=url, status="pending")
    session.add(product)
    await session.flush()
    await session.refresh(product)
    return product


async def move(session: AsyncSession, product: Product, target_cart_id: int) -> Product:
    """Reassign cart_id only; status and enrichment fields are untouched."""
    product.cart_id = target_cart_id
    await session.flush()
    await session.refresh(product)
    return product


async def delete(session: AsyncSession, product_id: int) -> None:
    await session.execute(sa_delete(Product).where(Product.id == product_id))


async def mark_complete(
    session: AsyncSession,
    product_id: int,
    facts: ProductFacts,
    reviews: list[ReviewResult],
) -> bool:
    """Write facts, reviews and status=complete in one UPDATE.

    An empty review list is stored as NULL. Only a pending row is updated;
    returns False when no row matched (deleted mid-flight).
    """
    values = facts.model_dump(include=set(_SCRAPE_FIELDS))
    result = await session.execute(
        update(Product)
        .where(Product.id == product_id, Product.status == "pending")
        .values(
            **values,
            reviews_json=[r.model_dump() for r in reviews] or None,
            scraped_at=datetime.now(timezone.utc),
            status="complete",
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount > 0


async def mark_failed(session: AsyncSession, product_id: int) -> bool:
    """Set status=failed with every scrape-derived field cleared.

    Only a pending row is updated, so a late safety-net call can never
    downgrade a product that already completed.
    """
    result = await session.execute(
        update(Product)
        .where(Product.id == product_id, Product.status == "pending")
        .values(
            **dict.fromkeys(_SCRAPE_FIELDS),
            reviews_json=None,
            scraped_at=None,
            status="failed",
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount > 0


async def list_stale_pending(session: AsyncSession, older_than: datetime) -> list[Product]:
    result = await session.execute(
        select(Product)
        .where(Product.status == "pending", Product.created_at < older_than)
        .order_by(Product.created_at, Product.id)
    )
    return list(result.scalars().all())
