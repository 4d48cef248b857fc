"""Tests for the product enrichment pipeline.

Runs ``enrich_product`` directly against a SQLite database with the fake
adapters from conftest, then reads the row back.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import update

from app.activities.enrichment import EnrichmentService, enrich_product, has_required_fields
from app.models.contracts import ProductFacts
from app.models.db import Cart, Product, User
from app.repos import products as product_repo
from app.utils.firecrawl import ExtractionTimeoutError
from app.utils.tasks import BackgroundTaskRunner

URL = "https://shop.example.com/desk"


@pytest.fixture
async def product_id(sessionmaker) -> int:
    async with sessionmaker() as session:
        user = User(uuid="enrichment-user")
        session.add(user)
        await session.flush()
        cart = Cart(user_id=user.id, name="Desks")
        session.add(cart)
        await session.flush()
        product = await product_repo.create_pending(session, cart.id, URL)
        await session.commit()
        return product.id


async def _load(sessionmaker, product_id) -> Product | None:
    async with sessionmaker() as session:
        return await product_repo.get(session, product_id)


async def _run(product_id, sessionmaker, extractor, searcher) -> str:
    return await enrich_product(
        product_id, URL, sessionmaker=sessionmaker, extractor=extractor, searcher=searcher
    )


class TestHasRequiredFields:
    """Name and price must both be present."""

    def test_complete(self):
        """Name and price -> True."""
        assert has_required_fields(ProductFacts(name="Desk", price="$10"))

    def test_blank_name(self):
        """Whitespace name -> False."""
        assert not has_required_fields(ProductFacts(name=" ", price="$10"))

    def test_na_price(self):
        """N/A price -> False."""
        assert not has_required_fields(ProductFacts(name="Desk", price="N/A"))

    def test_none(self):
        """No facts -> False."""
        assert not has_required_fields(None)


class TestPipelineOutcomes:
    """Each path ends in exactly one terminal status."""

    @pytest.mark.asyncio
    async def test_success(self, sessionmaker, extractor, searcher, product_id):
        """Facts and reviews are written together with status complete."""
        status = await _run(product_id, sessionmaker, extractor, searcher)
        assert status == "complete"

        product = await _load(sessionmaker, product_id)
        assert product.status == "complete"
        assert product.name == "Walnut Standing Desk"
        assert product.brand == "Deskly"
        assert product.scraped_at is not None
        assert product.reviews_json == [
            {
                "url": "https://www.reddit.com/r/desks/comments/abc",
                "title": "Six months with the Walnut desk",
                "snippet": "Sturdy, motor is quiet.",
                "source": "reddit",
            }
        ]
        assert searcher.calls == ["Walnut Standing Desk"]

    @pytest.mark.asyncio
    async def test_no_reviews_stored_as_null(self, sessionmaker, extractor, searcher, product_id):
        """An empty review list is stored as NULL, not []."""
        searcher.reviews = []
        await _run(product_id, sessionmaker, extractor, searcher)
        product = await _load(sessionmaker, product_id)
        assert product.status == "complete"
        assert product.reviews_json is None

    @pytest.mark.asyncio
    async def test_extraction_none(self, sessionmaker, extractor, searcher, product_id):
        """Extractor returning None -> failed, reviews never searched."""
        extractor.results[URL] = None
        assert await _run(product_id, sessionmaker, extractor, searcher) == "failed"

        product = await _load(sessionmaker, product_id)
        assert product.status == "failed"
        assert product.name is None
        assert product.scraped_at is None
        assert searcher.calls == []

    @pytest.mark.asyncio
    async def test_extraction_timeout(self, sessionmaker, extractor, searcher, product_id):
        """Extraction timeout -> failed."""
        extractor.results[URL] = ExtractionTimeoutError("180s")
        assert await _run(product_id, sessionmaker, extractor, searcher) == "failed"
        assert (await _load(sessionmaker, product_id)).status == "failed"

    @pytest.mark.asyncio
    async def test_missing_price(self, sessionmaker, extractor, searcher, product_id):
        """Facts without a usable price -> failed with nothing persisted."""
        extractor.results[URL] = ProductFacts(name="Desk", price="N/A", brand="Deskly")
        assert await _run(product_id, sessionmaker, extractor, searcher) == "failed"

        product = await _load(sessionmaker, product_id)
        assert product.status == "failed"
        assert product.brand is None

    @pytest.mark.asyncio
    async def test_review_error_still_completes(self, sessionmaker, extractor, searcher, product_id):
        """A raising review searcher cannot fail the product."""
        searcher.error = RuntimeError("exa exploded")
        assert await _run(product_id, sessionmaker, extractor, searcher) == "complete"
        product = await _load(sessionmaker, product_id)
        assert product.status == "complete"
        assert product.reviews_json is None

    @pytest.mark.asyncio
    async def test_unexpected_crash_marks_failed(self, sessionmaker, extractor, searcher, product_id):
        """An unexpected exception in the extractor is caught and forces failed."""
        extractor.results[URL] = KeyError("bug")
        assert await _run(product_id, sessionmaker, extractor, searcher) == "failed"
        assert (await _load(sessionmaker, product_id)).status == "failed"

    @pytest.mark.asyncio
    async def test_crash_in_final_write(self, sessionmaker, extractor, searcher, product_id):
        """If the complete write itself blows up, the safety net still marks failed."""
        with patch(
            "app.activities.enrichment.product_repo.mark_complete",
            new_callable=AsyncMock,
            side_effect=RuntimeError("db hiccup"),
        ):
            assert await _run(product_id, sessionmaker, extractor, searcher) == "failed"
        assert (await _load(sessionmaker, product_id)).status == "failed"


class TestTerminalWrites:
    """Final writes only ever apply to pending rows."""

    @pytest.mark.asyncio
    async def test_deleted_mid_flight(self, sessionmaker, extractor, searcher, product_id):
        """A product deleted before the final write ends orphaned, not complete."""
        async with sessionmaker() as session:
            await product_repo.delete(session, product_id)
            await session.commit()

        with patch("app.activities.enrichment.logger") as mock_logger:
            assert await _run(product_id, sessionmaker, extractor, searcher) == "orphaned"
        events = [c.args[0] for c in mock_logger.info.call_args_list]
        assert "product_enrichment_orphaned" in events
        assert "product_enrichment_complete" not in events
        assert await _load(sessionmaker, product_id) is None

    @pytest.mark.asyncio
    async def test_deleted_then_extract_fails(self, sessionmaker, extractor, searcher, product_id):
        """A failed extraction for a deleted product ends orphaned, not failed."""
        extractor.results[URL] = None
        async with sessionmaker() as session:
            await product_repo.delete(session, product_id)
            await session.commit()

        with patch("app.activities.enrichment.logger") as mock_logger:
            assert await _run(product_id, sessionmaker, extractor, searcher) == "orphaned"
        events = [c.args[0] for c in mock_logger.info.call_args_list]
        assert "product_enrichment_failed" not in events

    @pytest.mark.asyncio
    async def test_failed_never_overwrites_complete(self, sessionmaker, product_id):
        """mark_failed on a completed product is a no-op."""
        async with sessionmaker() as session:
            await product_repo.mark_complete(
                session, product_id, ProductFacts(name="Desk", price="$10"), []
            )
        async with sessionmaker() as session:
            assert await product_repo.mark_failed(session, product_id) is False
        assert (await _load(sessionmaker, product_id)).status == "complete"


class TestEnrichmentService:
    """Scheduling on the task runner and the stale-pending sweep."""

    @pytest.mark.asyncio
    async def test_schedule_runs_in_background(self, sessionmaker, extractor, searcher, product_id):
        """schedule() returns immediately; draining the runner finishes the product."""
        runner = BackgroundTaskRunner()
        service = EnrichmentService(sessionmaker, runner, extractor, searcher)

        service.schedule(product_id, URL)
        assert runner.pending_count == 1
        await runner.drain()

        assert runner.pending_count == 0
        assert (await _load(sessionmaker, product_id)).status == "complete"

    @pytest.mark.asyncio
    async def test_recover_stale_pending(self, sessionmaker, extractor, searcher, product_id):
        """Pending products older than the cutoff are re-enqueued; fresh ones are left alone."""
        async with sessionmaker() as session:
            await session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(created_at=datetime.now(timezone.utc) - timedelta(hours=1))
            )
            product = await session.get(Product, product_id)
            fresh = await product_repo.create_pending(
                session, product.cart_id, "https://shop.example.com/fresh"
            )
            await session.commit()

        runner = BackgroundTaskRunner()
        service = EnrichmentService(sessionmaker, runner, extractor, searcher)
        assert await service.recover_stale_pending(older_than_minutes=10) == 1
        await runner.drain()

        assert extractor.calls == [URL]
        assert (await _load(sessionmaker, product_id)).status == "complete"
        assert (await _load(sessionmaker, fresh.id)).status == "pending"
