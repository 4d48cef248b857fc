"""Review search via the Exa search API.

Three queries per product run concurrently (reddit, forum, general) and
race a single 180s timeout. Reviews are an enrichment, not a requirement:
any error or timeout degrades to an empty list and is never raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from app.models.contracts import ReviewResult, ReviewSource

logger = structlog.get_logger()

REVIEW_SEARCH_TIMEOUT = 180.0  # seconds
SNIPPET_MAX_CHARS = 1000

# (source tag, query suffix, num results)
REVIEW_QUERIES: tuple[tuple[ReviewSource, str, int], ...] = (
    ("reddit", "review reddit", 3),
    ("forum", "review forum", 3),
    ("general", "review", 4),
)


@dataclass(frozen=True)
class ExaConfig:
    api_key: str
    base_url: str = "https://api.exa.ai"
    timeout: float = REVIEW_SEARCH_TIMEOUT


def build_review_query(product_name: str, suffix: str) -> str:
    """Quote the product name so Exa matches it as a phrase."""
    return f'"{product_name}" {suffix}'


def _to_reviews(results: list[dict[str, Any]], source: ReviewSource) -> list[ReviewResult]:
    reviews = []
    for r in results:
        url = r.get("url")
        if not url:
            continue
        reviews.append(
            ReviewResult(
                url=url,
                title=r.get("title") or "",
                snippet=(r.get("text") or "")[:SNIPPET_MAX_CHARS],
                source=source,
            )
        )
    return reviews


class ReviewSearcher:
    """SearchReviews(productName) -> list[ReviewResult]. Never raises."""

    def __init__(self, config: ExaConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = http_client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _search(self, query: str, num_results: int) -> list[dict[str, Any]]:
        resp = await self._client.post(
            f"{self._config.base_url}/search",
            headers={"x-api-key": self._config.api_key},
            json={
                "query": query,
                "numResults": num_results,
                "useAutoprompt": False,
                "contents": {"text": {"maxCharacters": SNIPPET_MAX_CHARS}},
            },
            timeout=self._config.timeout + 5,
        )
        resp.raise_for_status()
        results: list[dict[str, Any]] = resp.json().get("results") or []
        return results

    async def search(self, product_name: str) -> list[ReviewResult]:
        logger.info("review_search_start", product_name=product_name[:100])
        try:
            async with asyncio.timeout(self._config.timeout):
                result_sets = await asyncio.gather(
                    *(
                        self._search(build_review_query(product_name, suffix), num)
                        for _, suffix, num in REVIEW_QUERIES
                    )
                )
            reviews: list[ReviewResult] = []
            for (source, _, _), results in zip(REVIEW_QUERIES, result_sets, strict=True):
                reviews.extend(_to_reviews(results, source))
        except TimeoutError:
            logger.warning("review_search_degraded", reason="timeout", timeout_s=self._config.timeout)
            return []
        except Exception as exc:
            logger.warning(
                "review_search_degraded",
                reason="error",
                error_type=type(exc).__name__,
                error=str(exc)[:200],
            )
            return []

        logger.info("review_search_complete", total=len(reviews))
        return reviews
