from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import Report
from app.utils.database import dialect_insert


async def get_for_cart(session: AsyncSession, cart_id: int) -> Report | None:
    result = await session.execute(
        select(Report)
        .where(Report.cart_id == cart_id)
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert(session: AsyncSession, cart_id: int, content: str) -> Report:
    """Insert the cart's report, or overwrite it if one exists (one report per cart)."""
    insert = dialect_insert(session, Report)
    stmt = insert.values(cart_id=cart_id, content=content).on_conflict_do_update(
        index_elements=[Report.cart_id],
        set_={"content": insert.excluded.content, "generated_at": func.now()},
    )
    await session.execute(stmt)
    report = await get_for_cart(session, cart_id)
    assert report is not None  # just written in this transaction
    return report
