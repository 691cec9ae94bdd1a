"""
Relay Chat Executors - Web Search

Web search via the SearXNG JSON API. Results come back as
``{summary, results[{title, url, content}]}`` so they can be rendered into
assistant text on later turns.
"""

import logging
import re
from html import unescape
from typing import Any, Dict, List

import httpx

from config import runtime_config
from errors import ExternalServiceError, ValidationError, handle_async_tool_errors

logger = logging.getLogger(__name__)

CONTENT_PREVIEW_CHARS = 300


def _strip_html(value: str) -> str:
    cleaned = re.sub(r"<[^>]+>", " ", value or "")
    cleaned = unescape(cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _deduplicate_results(results: List[Dict]) -> List[Dict]:
    """Remove duplicate results by URL."""
    seen_urls = set()
    unique = []

    for result in results:
        url = result.get("url", "")
        normalized = url.lower().split("?")[0].rstrip("/")
        if normalized not in seen_urls:
            seen_urls.add(normalized)
            unique.append(result)

    return unique


def _parse_json_results(data: Dict[str, Any], limit: int) -> List[Dict[str, str]]:
    results: List[Dict[str, str]] = []
    for item in data.get("results", []):
        url = (item.get("url") or "").strip()
        if not url:
            continue
        results.append(
            {
                "title": _strip_html(item.get("title") or ""),
                "url": url,
                "content": _strip_html(item.get("content") or "")[:CONTENT_PREVIEW_CHARS],
            }
        )
    return _deduplicate_results(results)[:limit]


def _build_summary(data: Dict[str, Any], results: List[Dict[str, str]]) -> str:
    """Direct answers or infobox text when SearXNG has them, else the top snippets."""
    answers = [_strip_html(a if isinstance(a, str) else a.get("answer", "")) for a in data.get("answers") or []]
    answers = [a for a in answers if a]
    if answers:
        return " ".join(answers)

    for infobox in data.get("infoboxes") or []:
        content = _strip_html(infobox.get("content") or "")
        if content:
            return content

    snippets = [r["content"] for r in results[:3] if r.get("content")]
    return " ".join(snippets)


async def _fetch_searx(query: str) -> Dict[str, Any]:
    if not runtime_config.web_search_enabled:
        raise ExternalServiceError(
            "Web search is disabled",
            details="Set WEB_SEARCH_ENABLED=true to enable SearXNG search.",
            service="searxng",
            status_code=503,
        )

    searxng_url = runtime_config.searxng_url.rstrip("/")
    try:
        async with httpx.AsyncClient(timeout=runtime_config.searxng_timeout_s, follow_redirects=True) as client:
            response = await client.get(
                f"{searxng_url}/search",
                params={"q": query, "format": "json", "categories": "general"},
            )
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as exc:
        status_code = exc.response.status_code
        raise ExternalServiceError(
            "Search service error",
            details=f"SearXNG returned status {status_code}",
            service="searxng",
            status_code=status_code,
        ) from exc
    except httpx.TimeoutException as exc:
        raise ExternalServiceError(
            "Search service timed out",
            details="The search request took too long. Try again.",
            service="searxng",
        ) from exc
    except httpx.RequestError as exc:
        raise ExternalServiceError(
            "Search service unavailable",
            details="Could not connect to the search service",
            service="searxng",
        ) from exc
    except ValueError as exc:
        raise ExternalServiceError(
            "Search service returned invalid JSON",
            details=str(exc),
            service="searxng",
        ) from exc


@handle_async_tool_errors("web_search")
async def web_search(query: str = "") -> Dict[str, Any]:
    """
    Search the web via SearXNG.

    Args:
        query: Search query

    Returns:
        {"success", "query", "summary", "results", "result_count"}
    """
    query = (query or "").strip()
    if not query:
        raise ValidationError("Search query is empty", parameter="query")

    data = await _fetch_searx(query)
    results = _parse_json_results(data, limit=runtime_config.web_search_max_results)
    summary = _build_summary(data, results)
    logger.info(f"Web search: {query!r} -> {len(results)} results")

    return {
        "success": True,
        "query": query,
        "summary": summary,
        "results": results,
        "result_count": len(results),
    }
