"""Shared FastAPI dependencies: request session and caller identity."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.responses import invalid_uuid
from app.models.db import User
from app.repos import users as user_repo
from app.utils.database import get_session

SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def current_user(
    session: SessionDep,
    x_user_uuid: Annotated[str | None, Header()] = None,
) -> User:
    """Resolve the X-User-UUID header to a known user, else 401 INVALID_UUID.

    The uuid is a bearer identifier generated on the device, not a secret
    exchanged through any auth protocol.
    """
    if not x_user_uuid or not x_user_uuid.strip():
        raise invalid_uuid()
    user = await user_repo.get_by_uuid(session, x_user_uuid.strip())
    if user is None:
        raise invalid_uuid()
    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


CurrentUser = Annotated[User, Depends(current_user)]
