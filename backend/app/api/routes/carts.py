"""Cart CRUD. Every route is scoped to the caller's own carts."""

import structlog
from fastapi import APIRouter
from sqlalchemy.exc import IntegrityError

from app.api.deps import CurrentUser, SessionDep
from app.api.responses import ApiError, cart_not_found, ok
from app.models.contracts import (
    CartOut,
    CreateCartRequest,
    ErrorCode,
    MessageOut,
    UpdateCartRequest,
)
from app.models.db import Cart
from app.repos import carts as cart_repo
from app.repos import products as product_repo
from app.repos import users as user_repo
from app.workflows.cart_lifecycle import check_can_create_cart

logger = structlog.get_logger()

router = APIRouter(prefix="/carts", tags=["carts"])

_NAME_EXISTS = (ErrorCode.CART_NAME_EXISTS, "A cart with this name already exists")


def _cart_out(cart: Cart, product_count: int) -> CartOut:
    return CartOut.model_validate(cart).model_copy(update={"product_count": product_count})


@router.get("")
async def list_carts(user: CurrentUser, session: SessionDep):
    """User's carts, oldest first, with product counts."""
    rows = await cart_repo.list_with_counts(session, user.id)
    return ok([_cart_out(cart, count) for cart, count in rows])


@router.post("")
async def create_cart(body: CreateCartRequest, user: CurrentUser, session: SessionDep):
    await user_repo.lock(session, user.id)
    existing = await cart_repo.count_for_user(session, user.id)
    name_taken = await cart_repo.get_by_name(session, user.id, body.name) is not None
    check_can_create_cart(existing, name_taken)

    try:
        cart = await cart_repo.create(session, user.id, body.name)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ApiError(400, *_NAME_EXISTS) from exc

    logger.info("cart_created", cart_id=cart.id)
    return ok(_cart_out(cart, 0))


@router.patch("/{cart_id}")
async def update_cart(
    cart_id: int, body: UpdateCartRequest, user: CurrentUser, session: SessionDep
):
    """Rename a cart and/or mark it active (clearing active on the user's other carts)."""
    cart = await cart_repo.get_owned(session, cart_id, user.id)
    if cart is None:
        raise cart_not_found()

    if body.name is not None and body.name != cart.name:
        if await cart_repo.get_by_name(session, user.id, body.name) is not None:
            raise ApiError(400, *_NAME_EXISTS)

    fields = body.model_dump(exclude_none=True)
    try:
        if body.is_active:
            await cart_repo.clear_active(session, user.id, keep_cart_id=cart.id)
        cart = await cart_repo.update_fields(session, cart, **fields)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ApiError(400, *_NAME_EXISTS) from exc

    product_count = await product_repo.count_for_cart(session, cart_id)
    logger.info("cart_updated", cart_id=cart_id, fields=sorted(fields))
    return ok(_cart_out(cart, product_count))


@router.delete("/{cart_id}")
async def delete_cart(cart_id: int, user: CurrentUser, session: SessionDep):
    """Delete a cart together with its products and report."""
    if await cart_repo.get_owned(session, cart_id, user.id) is None:
        raise cart_not_found()

    await cart_repo.delete(session, cart_id)
    await session.commit()
    logger.info("cart_deleted", cart_id=cart_id)
    return ok(MessageOut(message="Cart deleted successfully"))
