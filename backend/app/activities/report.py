"""Cart report generation: gate -> Gemini -> report upsert + freeze bookkeeping.

Runs on the request path. The read transaction is closed before the
Gemini call so no database transaction stays open for up to two minutes.
The report upsert and the report_count/is_frozen update then commit as a
single transaction: either both are visible or neither is.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.contracts import ErrorCode, GeneratedReportOut
from app.repos import carts as cart_repo
from app.repos import products as product_repo
from app.repos import reports as report_repo
from app.workflows.cart_lifecycle import (
    FREEZE_AT_REPORT_COUNT,
    CartRuleViolation,
    cart_state,
    check_report_gate,
)

if TYPE_CHECKING:
    from app.utils.gemini_report import ReportGenerator

logger = structlog.get_logger()


class ReportUnavailableError(RuntimeError):
    """Report generation is not configured on this deployment."""


async def generate_cart_report(
    session: AsyncSession,
    generator: ReportGenerator | None,
    user_id: int,
    cart_id: int,
) -> GeneratedReportOut:
    """Generate (or regenerate) the report for one of the user's carts.

    Raises CartRuleViolation for gate failures, ReportUnavailableError when
    no generator is configured, and lets ReportTimeoutError /
    ReportGenerationError from the adapter propagate. Nothing is written
    unless generation succeeds.
    """
    cart = await cart_repo.get_owned(session, cart_id, user_id)
    cart_products = await product_repo.list_for_cart(session, cart_id) if cart else []
    complete = check_report_gate(cart, cart_products)
    assert cart is not None  # check_report_gate raised otherwise

    if generator is None:
        raise ReportUnavailableError("GEMINI_MODEL is not configured")

    # End the read transaction before the long external call
    await session.commit()

    logger.info(
        "report_requested",
        cart_id=cart_id,
        num_products=len(complete),
        report_count=cart.report_count,
    )
    content = await generator.generate(complete)

    try:
        updated = await cart_repo.record_report(session, cart_id, FREEZE_AT_REPORT_COUNT)
        if updated is None:
            # Frozen or deleted by a concurrent request while Gemini was running
            await session.rollback()
            if await cart_repo.get_owned(session, cart_id, user_id) is None:
                raise CartRuleViolation(ErrorCode.CART_NOT_FOUND, "Cart not found", status=404)
            raise CartRuleViolation(
                ErrorCode.CART_FROZEN, "This cart has reached its report limit"
            )
        report = await report_repo.upsert(session, cart_id, content)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "report_generated",
        cart_id=cart_id,
        report_count=updated.report_count,
        state=cart_state(updated),
        chars=len(content),
    )
    return GeneratedReportOut(
        content=report.content,
        report_count=updated.report_count,
        is_frozen=updated.is_frozen,
        generated_at=report.generated_at,
    )
