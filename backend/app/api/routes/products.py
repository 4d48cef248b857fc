"""Product routes: list (polled for enrichment status), add, delete, move.

Adding a product inserts a pending row, commits, hands the row to the
enrichment service and returns immediately. The client polls the list
endpoint to see the product turn complete or failed.
"""

import structlog
from fastapi import APIRouter, Request
from sqlalchemy.exc import IntegrityError

from app.api.deps import CurrentUser, SessionDep
from app.api.responses import ApiError, cart_not_found, ok, product_not_found
from app.models.contracts import (
    AddProductRequest,
    ErrorCode,
    MessageOut,
    MoveProductRequest,
    ProductOut,
)
from app.repos import carts as cart_repo
from app.repos import products as product_repo
from app.workflows.cart_lifecycle import (
    check_can_add_product,
    check_move_target_accepts,
    check_move_target_open,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/carts/{cart_id}/products", tags=["products"])


@router.get("")
async def list_products(cart_id: int, user: CurrentUser, session: SessionDep):
    if await cart_repo.get_owned(session, cart_id, user.id) is None:
        raise cart_not_found()
    items = await product_repo.list_for_cart(session, cart_id)
    return ok([ProductOut.model_validate(p) for p in items])


@router.post("")
async def add_product(
    cart_id: int,
    body: AddProductRequest,
    request: Request,
    user: CurrentUser,
    session: SessionDep,
):
    """Insert a pending product and launch its enrichment in the background."""
    url = (body.url or "").strip()
    if not url:
        raise ApiError(400, ErrorCode.INVALID_URL, "Product URL is required")

    cart = await cart_repo.lock_owned(session, cart_id, user.id)
    if cart is None:
        raise cart_not_found()

    count = await product_repo.count_for_cart(session, cart_id)
    duplicate = await product_repo.find_by_url(session, cart_id, url) is not None
    check_can_add_product(cart, count, duplicate)

    try:
        product = await product_repo.create_pending(session, cart_id, url)
        await session.commit()
    except IntegrityError as exc:
        # Same URL added concurrently; the unique (cart_id, url) index caught it
        await session.rollback()
        raise ApiError(
            400, ErrorCode.DUPLICATE_PRODUCT, "This product is already in your cart"
        ) from exc

    request.app.state.enrichment.schedule(product.id, product.url)
    logger.info("product_added", cart_id=cart_id, product_id=product.id)
    return ok(ProductOut.model_validate(product))


@router.delete("/{product_id}")
async def delete_product(cart_id: int, product_id: int, user: CurrentUser, session: SessionDep):
    """Remove a product. Allowed on frozen carts."""
    if await cart_repo.get_owned(session, cart_id, user.id) is None:
        raise cart_not_found()
    if await product_repo.get_in_cart(session, product_id, cart_id) is None:
        raise product_not_found()

    await product_repo.delete(session, product_id)
    await session.commit()
    logger.info("product_deleted", cart_id=cart_id, product_id=product_id)
    return ok(MessageOut(message="Product deleted successfully"))


@router.post("/{product_id}/move")
async def move_product(
    cart_id: int,
    product_id: int,
    body: MoveProductRequest,
    user: CurrentUser,
    session: SessionDep,
):
    """Move a product to another of the user's carts. Enrichment is not re-run."""
    target_id = body.target_cart_id
    if not target_id:
        raise ApiError(400, ErrorCode.INVALID_TARGET_CART, "Target cart ID is required")

    if await cart_repo.get_owned(session, cart_id, user.id) is None:
        raise cart_not_found()
    target = await cart_repo.lock_owned(session, target_id, user.id)
    if target is None:
        raise cart_not_found("Target cart not found")
    check_move_target_open(target)

    product = await product_repo.get_in_cart(session, product_id, cart_id)
    if product is None:
        raise product_not_found()

    duplicate = await product_repo.find_by_url(session, target_id, product.url) is not None
    target_count = await product_repo.count_for_cart(session, target_id)
    check_move_target_accepts(target_count, duplicate)

    try:
        product = await product_repo.move(session, product, target_id)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ApiError(
            400, ErrorCode.DUPLICATE_PRODUCT, "This product is already in the target cart"
        ) from exc

    logger.info("product_moved", product_id=product_id, from_cart=cart_id, to_cart=target_id)
    return ok(ProductOut.model_validate(product))
