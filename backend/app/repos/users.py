from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import User
from app.utils.database import dialect_insert


async def get_by_uuid(session: AsyncSession, uuid: str) -> User | None:
    result = await session.execute(select(User).where(User.uuid == uuid).limit(1))
    return result.scalar_one_or_none()


async def lock(session: AsyncSession, user_id: int) -> None:
    """Write-lock the user row until commit so cart-limit checks serialise.

    Same self-assigning UPDATE as ``carts.lock_owned``.
    """
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(created_at=User.created_at)
        .execution_options(synchronize_session=False)
    )


async def get_or_create(session: AsyncSession, uuid: str) -> tuple[User, bool]:
    """Return the user for ``uuid``, inserting it on first sight.

    Insert-on-conflict-do-nothing followed by a select, so two concurrent
    inits with the same uuid converge on one row. Returns (user, created).
    """
    stmt = dialect_insert(session, User).values(uuid=uuid).on_conflict_do_nothing(
        index_elements=[User.uuid]
    )
    result = await session.execute(stmt)
    await session.commit()
    user = await get_by_uuid(session, uuid)
    assert user is not None  # inserted above or already present
    return user, result.rowcount == 1
