"""User bootstrap. The extension calls this once with its locally generated uuid."""

import structlog
from fastapi import APIRouter

from app.api.deps import SessionDep
from app.api.responses import invalid_uuid, ok
from app.models.contracts import InitUserRequest, UserOut
from app.repos import users as user_repo

logger = structlog.get_logger()

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/init")
async def init_user(body: InitUserRequest, session: SessionDep):
    """Create the user on first call, return the same user on every later call."""
    uuid = (body.uuid or "").strip()
    if not uuid or len(uuid) > 36:
        raise invalid_uuid(status=400)

    user, created = await user_repo.get_or_create(session, uuid)
    if created:
        logger.info("user_created", user_id=user.id)
    return ok(UserOut.model_validate(user))
