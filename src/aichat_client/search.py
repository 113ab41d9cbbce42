"""Brave web-search tool.

Exposed to the model as ``brave-web-search``. Every failure (missing API
key, invalid arguments, HTTP or decoding errors) comes back as an
error-shaped result dict instead of an exception, so the surrounding
exchange can carry on.
"""

import logging
from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .config import get_brave_api_key
from .core import format_iso, utc_now

logger = logging.getLogger(__name__)

TOOL_NAME = "brave-web-search"
TOOL_DESCRIPTION = (
    "Search the web with Brave Search. Use this tool when you need up-to-date "
    "information, news, or details about recent events."
)
BRAVE_SEARCH_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"
SOURCE = "Brave Search"
DEFAULT_RESULT_COUNT = 3
MAX_RESULT_COUNT = 5


class SearchInput(BaseModel):
    """Arguments accepted by the search tool; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=3, description="Search query to send to Brave Search.")
    count: Optional[int] = Field(
        default=None, ge=1, le=MAX_RESULT_COUNT,
        description="Number of results to return (1-5). Defaults to 3.",
    )
    country: Optional[str] = Field(
        default=None, min_length=2, max_length=2,
        description="Two-letter country code to localize results (e.g., US, GB).",
    )
    freshness: Optional[Literal["hour", "day", "week", "month"]] = Field(
        default=None, description="Restrict results to a specific freshness window.",
    )


def tool_schema() -> dict:
    """Return the OpenAI-style function declaration for the tool."""
    return {
        "type": "function",
        "function": {
            "name": TOOL_NAME,
            "description": TOOL_DESCRIPTION,
            "parameters": SearchInput.model_json_schema(),
        },
    }


def normalize_count(count: int | None) -> int:
    if not isinstance(count, int) or isinstance(count, bool):
        return DEFAULT_RESULT_COUNT
    return min(max(count, 1), MAX_RESULT_COUNT)


def to_results(payload: dict, count: int) -> list[dict]:
    """Extract ``{title, url, description}`` entries from a Brave response."""
    web = payload.get("web")
    raw_results = web.get("results") if isinstance(web, dict) else None
    if not isinstance(raw_results, list):
        return []

    results = []
    for raw in raw_results[:count]:
        if not isinstance(raw, dict) or not raw.get("url"):
            continue
        results.append({
            "title": raw.get("title") or raw["url"],
            "url": raw["url"],
            "description": raw.get("description") or raw.get("snippet") or "",
        })
    return results


def build_success_result(query: str, results: list[dict]) -> dict:
    result = {
        "query": query,
        "results": results,
        "totalResults": len(results),
        "source": SOURCE,
        "fetchedAt": format_iso(utc_now()),
    }
    if not results:
        result["message"] = "No results found."
    return result


def build_error_result(query: str, error: str) -> dict:
    return {
        "query": query,
        "results": [],
        "totalResults": 0,
        "source": SOURCE,
        "fetchedAt": format_iso(utc_now()),
        "error": error,
    }


async def execute_search(
    search: SearchInput,
    api_key: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict:
    """Run one search request. A failed attempt is reported, not retried."""
    api_key = api_key or get_brave_api_key()
    if not api_key:
        return build_error_result(
            search.query,
            "Brave Search API key is not configured. Please set BRAVE_SEARCH_API_KEY on the server.",
        )

    count = normalize_count(search.count)
    params = {"q": search.query, "count": str(count)}
    if search.country:
        params["country"] = search.country
    if search.freshness:
        params["freshness"] = search.freshness
    headers = {
        "Accept": "application/json",
        "Cache-Control": "no-store",
        "X-Subscription-Token": api_key,
    }

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10.0) as own_client:
                response = await own_client.get(BRAVE_SEARCH_ENDPOINT, params=params, headers=headers)
        else:
            response = await client.get(BRAVE_SEARCH_ENDPOINT, params=params, headers=headers)

        if not response.is_success:
            detail = response.text[:500] if response.text else response.reason_phrase
            return build_error_result(
                search.query,
                f"Brave Search request failed with status {response.status_code}: {detail}",
            )

        payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Brave Search request failed: %s", e)
        return build_error_result(search.query, str(e) or "Unknown Brave Search error")

    if not isinstance(payload, dict):
        return build_error_result(search.query, "Unexpected Brave Search response")

    original = payload.get("query")
    resolved_query = original.get("original") if isinstance(original, dict) else None
    return build_success_result(resolved_query or search.query, to_results(payload, count))


async def run_search_tool(
    arguments: Any,
    api_key: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict:
    """Validate raw tool-call arguments and execute the search."""
    query = arguments.get("query") if isinstance(arguments, dict) else None
    query = query if isinstance(query, str) else ""
    try:
        search = SearchInput.model_validate(arguments)
    except PydanticValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        return build_error_result(query, f"Invalid search arguments: {messages}")
    return await execute_search(search, api_key=api_key, client=client)
