"""Comparison-report generation with Gemini.

Builds one prompt embedding every product's facts plus up to five review
highlights, asks Gemini for semantic HTML, and races the call against a
120s timeout. Unlike the extraction and review adapters this one runs on
the synchronous request path, so its failures surface to the caller as
ReportTimeoutError or ReportGenerationError.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from google import genai

logger = structlog.get_logger()

REPORT_TIMEOUT = 120.0  # seconds
MAX_REVIEW_HIGHLIGHTS = 5


class ReportConfigError(RuntimeError):
    """Gemini model or API key missing; the report adapter cannot be built."""


class ReportTimeoutError(TimeoutError):
    """Gemini did not answer within REPORT_TIMEOUT."""


class ReportGenerationError(Exception):
    """Gemini failed or returned nothing usable."""


class ReportProduct(Protocol):
    name: str | None
    price: str | None
    brand: str | None
    color: str | None
    dimensions: str | None
    description: str | None
    reviews_json: list[dict[str, Any]] | None


@dataclass(frozen=True)
class GeminiConfig:
    api_key: str
    model: str
    timeout: float = REPORT_TIMEOUT


def normalize_model_name(model: str) -> str:
    """Strip the optional ``models/`` prefix the Gemini console shows."""
    model = model.strip()
    return model.removeprefix("models/")


def _review_highlight(review: dict[str, Any]) -> str:
    return review.get("title") or (review.get("snippet") or "")[:100]


def _format_product(index: int, product: ReportProduct) -> str:
    reviews = product.reviews_json if isinstance(product.reviews_json, list) else []
    review_summary = (
        f"{len(reviews)} reviews found from various sources" if reviews else "No reviews found"
    )
    lines = [
        f"Product {index}:",
        f"- Name: {product.name}",
        f"- Price: {product.price}",
        f"- Brand: {product.brand or 'Unknown'}",
        f"- Specifications: {product.dimensions or 'N/A'}, {product.color or 'N/A'}",
        f"- Description: {product.description or 'No description available'}",
        f"- Reviews: {review_summary}",
    ]
    if reviews:
        lines.append("")
        lines.append("Review highlights:")
        lines.extend(f"  • {_review_highlight(r)}" for r in reviews[:MAX_REVIEW_HIGHLIGHTS])
    return "\n".join(lines)


def build_prompt(products: Sequence[ReportProduct]) -> str:
    products_list = "\n\n".join(
        _format_product(i, product) for i, product in enumerate(products, start=1)
    )
    return f"""You are a product comparison expert. Generate a detailed comparison report for the following products.

PRODUCTS:
{products_list}

Generate a report with these sections:

1. EXECUTIVE SUMMARY
Recommend the best value option with brief reasoning (2-3 sentences).

2. COMPARISON TABLE
Create a clean HTML table comparing price and key specifications side-by-side.

3. REVIEW ANALYSIS
For each product, summarize consumer sentiment based on the reviews provided. If no reviews were found for a product, note that user feedback was unavailable.

4. PROS AND CONS
List pros and cons for each product based on specifications and reviews (if available).

5. FINAL RECOMMENDATION
Provide a detailed recommendation with reasoning based on value, features, and user feedback.

IMPORTANT: Format the entire output as clean, semantic HTML suitable for display. Use proper HTML tags (h2, h3, p, table, ul, li, etc.). Do not use markdown. Make it visually clear and well-structured."""


def strip_html_fence(text: str) -> str:
    """Remove a markdown code fence Gemini sometimes wraps around HTML output."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = text.removeprefix("```")
    for lang in ("html", "HTML"):
        text = text.removeprefix(lang)
    text = text.lstrip("\n")
    return text.rsplit("```", 1)[0].strip()


class ReportGenerator:
    """GenerateReport(products) -> HTML string."""

    def __init__(self, config: GeminiConfig, client: genai.Client | None = None) -> None:
        model = normalize_model_name(config.model or "")
        if not model:
            raise ReportConfigError("GEMINI_MODEL is not set")
        if client is None and not config.api_key:
            raise ReportConfigError("GEMINI_API_KEY is not set")
        self.model = model
        self._timeout = config.timeout
        self._client = client or genai.Client(api_key=config.api_key)

    async def generate(self, products: Sequence[ReportProduct]) -> str:
        prompt = build_prompt(products)
        logger.info(
            "report_generation_start",
            model=self.model,
            num_products=len(products),
            prompt_chars=len(prompt),
        )
        try:
            # The SDK call is sync; run it in the thread pool under the timeout
            async with asyncio.timeout(self._timeout):
                response = await asyncio.to_thread(
                    self._client.models.generate_content,
                    model=self.model,
                    contents=prompt,
                )
            text = response.text or ""
        except TimeoutError as exc:
            logger.warning("report_generation_timeout", timeout_s=self._timeout)
            raise ReportTimeoutError(
                f"Report generation timed out after {self._timeout:.0f}s"
            ) from exc
        except Exception as exc:
            logger.error(
                "report_generation_failed",
                error_type=type(exc).__name__,
                error=str(exc)[:200],
            )
            raise ReportGenerationError(f"{type(exc).__name__}: {str(exc)[:200]}") from exc

        html = strip_html_fence(text)
        if not html:
            logger.error("report_generation_empty", model=self.model)
            raise ReportGenerationError("Gemini returned an empty report")

        logger.info("report_generation_complete", chars=len(html))
        return html
