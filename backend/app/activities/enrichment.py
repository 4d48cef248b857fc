"""Product enrichment pipeline: URL -> extracted facts -> reviews -> terminal status.

Runs detached from the request that created the product. Steps are
strictly sequential with no retries:

1. Extract facts from the page (Firecrawl). Timeout, None, or missing
   name/price is a hard failure: status=failed, nothing else persisted.
2. Search reviews (Exa). Never fails the pipeline; an error or timeout
   just means an empty review list.
3. One UPDATE writes facts, reviews (empty stored as NULL), scraped_at
   and status=complete.

A product is written exactly once, so clients polling the product list
only ever see pending, then complete or failed. Any unexpected exception
is caught at the top and forces status=failed, so a product is never
left pending by a crash in this module.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Literal, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.contracts import ProductFacts, ReviewResult
from app.repos import products as product_repo

if TYPE_CHECKING:
    from app.utils.tasks import BackgroundTaskRunner

logger = structlog.get_logger()

# "orphaned": the product row was gone (or already terminal) at the final write
RunOutcome = Literal["complete", "failed", "orphaned"]


class Extractor(Protocol):
    async def extract(self, url: str) -> ProductFacts | None: ...


class ReviewSource(Protocol):
    async def search(self, product_name: str) -> list[ReviewResult]: ...


def has_required_fields(facts: ProductFacts | None) -> bool:
    if facts is None:
        return False
    price = facts.price.strip()
    return bool(facts.name.strip()) and bool(price) and price != "N/A"


async def _extract(extractor: Extractor, url: str) -> ProductFacts | None:
    try:
        return await extractor.extract(url)
    except TimeoutError:
        logger.warning("product_extraction_timeout")
        return None


async def _search_reviews(searcher: ReviewSource, name: str) -> list[ReviewResult]:
    # The searcher is contracted never to raise; guard anyway so reviews can't fail a product
    try:
        return await searcher.search(name)
    except Exception as exc:
        logger.warning("review_search_degraded", reason="adapter_raised", error_type=type(exc).__name__)
        return []


async def _mark_failed(sessionmaker: async_sessionmaker[AsyncSession], product_id: int) -> bool:
    async with sessionmaker() as session:
        written = await product_repo.mark_failed(session, product_id)
    if not written:
        logger.info("product_enrichment_orphaned", final_status="failed")
    return written


async def _run(
    product_id: int,
    url: str,
    sessionmaker: async_sessionmaker[AsyncSession],
    extractor: Extractor,
    searcher: ReviewSource,
) -> RunOutcome:
    facts = await _extract(extractor, url)
    if facts is None or not has_required_fields(facts):
        if not await _mark_failed(sessionmaker, product_id):
            return "orphaned"
        logger.info("product_enrichment_failed", reason="extraction")
        return "failed"

    reviews = await _search_reviews(searcher, facts.name)

    async with sessionmaker() as session:
        written = await product_repo.mark_complete(session, product_id, facts, reviews)
    if not written:
        # Product deleted (or moved to a terminal state) while we were working
        logger.info("product_enrichment_orphaned", final_status="complete")
        return "orphaned"
    logger.info("product_enrichment_complete", num_reviews=len(reviews))
    return "complete"


async def enrich_product(
    product_id: int,
    url: str,
    *,
    sessionmaker: async_sessionmaker[AsyncSession],
    extractor: Extractor,
    searcher: ReviewSource,
) -> RunOutcome:
    """Run the pipeline once for one product and return how it ended."""
    with structlog.contextvars.bound_contextvars(product_id=product_id):
        logger.info("product_enrichment_start", url=url[:200])
        try:
            return await _run(product_id, url, sessionmaker, extractor, searcher)
        except Exception:
            logger.exception("product_enrichment_crashed")
            try:
                await _mark_failed(sessionmaker, product_id)
            except Exception:
                # Nothing left to fall back to; the product stays pending until recovered
                logger.exception("product_enrichment_mark_failed_error")
            return "failed"


class EnrichmentService:
    """Launches pipeline runs on the shared task runner.

    Built once at startup with the adapters and session factory, stored on
    ``app.state`` and used by the product routes.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        runner: BackgroundTaskRunner,
        extractor: Extractor,
        searcher: ReviewSource,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._runner = runner
        self._extractor = extractor
        self._searcher = searcher

    def schedule(self, product_id: int, url: str) -> None:
        """Start one detached pipeline run; the caller does not wait for it."""
        self._runner.spawn(
            enrich_product(
                product_id,
                url,
                sessionmaker=self._sessionmaker,
                extractor=self._extractor,
                searcher=self._searcher,
            ),
            name=f"enrich-product-{product_id}",
        )

    async def recover_stale_pending(self, older_than_minutes: int) -> int:
        """Re-enqueue products left pending by a previous process. Returns how many."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        async with self._sessionmaker() as session:
            stale = await product_repo.list_stale_pending(session, cutoff)
        for product in stale:
            self.schedule(product.id, product.url)
        logger.info("pending_recovery_sweep", requeued=len(stale), older_than_min=older_than_minutes)
        return len(stale)
