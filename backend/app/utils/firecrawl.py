"""Page-data extraction via the Firecrawl scrape API.

One call per product URL: Firecrawl renders the page and fills a JSON
schema (name, price, brand, color, dimensions, description). The adapter
owns its 180s timeout and maps every non-timeout failure to ``None`` so the
enrichment pipeline only has two outcomes to handle besides success.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from app.models.contracts import ProductFacts

logger = structlog.get_logger()

EXTRACTION_TIMEOUT = 180.0  # seconds

EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Product name/title"},
        "price": {"type": "string", "description": "Current price including currency symbol"},
        "brand": {"type": "string", "description": "Brand or manufacturer name"},
        "color": {"type": "string", "description": "Product color if applicable"},
        "dimensions": {"type": "string", "description": "Size or dimensions"},
        "description": {"type": "string", "description": "Product description, max 500 chars"},
    },
    "required": ["name", "price"],
}

# Column widths in the products table
_FIELD_LIMITS = {
    "name": 500,
    "price": 50,
    "brand": 200,
    "color": 100,
    "dimensions": 200,
    "description": 2000,
}


class ExtractionTimeoutError(TimeoutError):
    """Firecrawl did not answer within EXTRACTION_TIMEOUT."""


@dataclass(frozen=True)
class FirecrawlConfig:
    api_key: str
    base_url: str = "https://api.firecrawl.dev"
    timeout: float = EXTRACTION_TIMEOUT


def _clean(value: Any, field: str) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    return value[: _FIELD_LIMITS[field]]


def parse_extraction(payload: dict[str, Any]) -> ProductFacts | None:
    """Turn a Firecrawl scrape response into ProductFacts.

    Returns None when the scrape reported failure, the target page was a
    404, or a required field (name, price) is missing. A price of "N/A"
    counts as missing: Firecrawl emits it for out-of-stock or error pages.
    """
    if not payload.get("success", False):
        return None
    data = payload.get("data") or {}
    extracted = data.get("json")
    if not isinstance(extracted, dict):
        return None

    status_code = (data.get("metadata") or {}).get("statusCode")
    name = _clean(extracted.get("name"), "name")
    price = _clean(extracted.get("price"), "price")
    if not name or not price or price == "N/A" or status_code == 404:
        logger.warning(
            "extraction_missing_required_fields",
            has_name=name is not None,
            price=price,
            status_code=status_code,
        )
        return None

    return ProductFacts(
        name=name,
        price=price,
        brand=_clean(extracted.get("brand"), "brand"),
        color=_clean(extracted.get("color"), "color"),
        dimensions=_clean(extracted.get("dimensions"), "dimensions"),
        description=_clean(extracted.get("description"), "description"),
    )


class ProductExtractor:
    """Extract(url) -> ProductFacts | None, raising ExtractionTimeoutError on timeout."""

    def __init__(self, config: FirecrawlConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = http_client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _scrape(self, url: str) -> httpx.Response:
        return await self._client.post(
            f"{self._config.base_url}/v2/scrape",
            headers={"Authorization": f"Bearer {self._config.api_key}"},
            json={
                "url": url,
                "formats": [{"type": "json", "schema": EXTRACTION_SCHEMA}],
            },
            # Slightly above the race bound so asyncio.timeout is what fires
            timeout=self._config.timeout + 5,
        )

    async def extract(self, url: str) -> ProductFacts | None:
        logger.info("extraction_start", url=url[:200])
        try:
            async with asyncio.timeout(self._config.timeout):
                response = await self._scrape(url)
        except (TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("extraction_timeout", url=url[:200], timeout_s=self._config.timeout)
            raise ExtractionTimeoutError(
                f"Extraction timed out after {self._config.timeout:.0f}s"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("extraction_request_failed", url=url[:200], error=type(exc).__name__)
            return None

        if response.status_code != 200:
            logger.warning("extraction_http_error", url=url[:200], status=response.status_code)
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("extraction_invalid_json", url=url[:200])
            return None
        if not isinstance(payload, dict):
            return None

        facts = parse_extraction(payload)
        if facts is not None:
            logger.info(
                "extraction_complete",
                url=url[:200],
                name=facts.name[:100],
                price=facts.price,
                has_brand=facts.brand is not None,
            )
        return facts
