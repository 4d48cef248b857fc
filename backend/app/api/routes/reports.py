"""Cart report routes: generate (gated, counts toward freezing) and fetch."""

import structlog
from fastapi import APIRouter, Request

from app.activities.report import ReportUnavailableError, generate_cart_report
from app.api.deps import CurrentUser, SessionDep
from app.api.responses import ApiError, cart_not_found, ok
from app.models.contracts import ErrorCode, ReportOut
from app.repos import carts as cart_repo
from app.repos import reports as report_repo
from app.utils.gemini_report import ReportGenerationError, ReportTimeoutError

logger = structlog.get_logger()

router = APIRouter(prefix="/carts/{cart_id}/report", tags=["reports"])


@router.post("")
async def create_report(cart_id: int, request: Request, user: CurrentUser, session: SessionDep):
    generator = request.app.state.report_generator
    try:
        result = await generate_cart_report(session, generator, user.id, cart_id)
    except ReportTimeoutError as exc:
        raise ApiError(
            408, ErrorCode.REPORT_TIMEOUT, "Report generation took too long. Please try again."
        ) from exc
    except ReportGenerationError as exc:
        raise ApiError(
            500, ErrorCode.REPORT_GENERATION_FAILED, "Report generation failed. Please try again."
        ) from exc
    except ReportUnavailableError as exc:
        logger.error("report_generator_not_configured", cart_id=cart_id)
        raise ApiError(
            503, ErrorCode.REPORT_UNAVAILABLE, "Report generation is currently unavailable."
        ) from exc
    return ok(result)


@router.get("")
async def get_report(cart_id: int, user: CurrentUser, session: SessionDep):
    if await cart_repo.get_owned(session, cart_id, user.id) is None:
        raise cart_not_found()
    report = await report_repo.get_for_cart(session, cart_id)
    if report is None:
        raise ApiError(404, ErrorCode.REPORT_NOT_FOUND, "No report exists for this cart")
    return ok(ReportOut.model_validate(report))
