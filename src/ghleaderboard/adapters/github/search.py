from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import httpx

from ghleaderboard.core.errors import UpstreamAuthError, UpstreamHTTPError, UpstreamRateLimited
from ghleaderboard.core.models import EventCategory, ensure_utc

SEARCH_PATH = "/search/issues"
# The search API never returns more than this many results for one query.
SEARCH_RESULT_CAP = 1000

CATEGORY_QUERIES: dict[EventCategory, str] = {
    EventCategory.PR_OPENED: "is:pr",
    EventCategory.PR_MERGED: "is:pr is:merged",
    EventCategory.ISSUE_OPENED: "is:issue",
}


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int | None
    reset_at: datetime | None


class GitHubSearchAdapter:
    """Paginated, date-chunked, throttled reader over the GitHub issue search API."""

    def __init__(
        self,
        token: str,
        org: str,
        api_base: str = "https://api.github.com",
        *,
        request_delay: float = 2.5,
        chunk_days: int = 30,
        per_page: int = 100,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not token:
            raise UpstreamAuthError("A GitHub access token is required")
        self._logger = logging.getLogger(self.__class__.__name__)
        self._org = org
        self._request_delay = request_delay
        self._chunk = timedelta(days=chunk_days)
        self._per_page = per_page
        self._max_pages = max(1, SEARCH_RESULT_CAP // per_page)
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=api_base,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            transport=transport,
        )

    @property
    def org(self) -> str:
        return self._org

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubSearchAdapter":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def fetch_category(
        self,
        category: EventCategory,
        start: datetime,
        end: datetime,
        *,
        org: str | None = None,
    ) -> list[dict[str, Any]]:
        org_name = org or self._org
        base_query = f"org:{org_name} {CATEGORY_QUERIES[category]}"
        items: list[dict[str, Any]] = []
        self._logger.info(
            "Searching GitHub",
            extra={
                "category": category.value,
                "org": org_name,
                "start": ensure_utc(start).isoformat(),
                "end": ensure_utc(end).isoformat(),
            },
        )
        for chunk_start, chunk_end in chunk_date_range(start, end, self._chunk):
            query = f"{base_query} created:{_range_qualifier(chunk_start, chunk_end)}"
            items.extend(await self._search_all_pages(query))
        self._logger.info(
            "Search complete",
            extra={"category": category.value, "org": org_name, "count": len(items)},
        )
        return items

    async def _search_all_pages(self, query: str) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        for page in range(1, self._max_pages + 1):
            data = await self._request(
                {"q": query, "per_page": self._per_page, "page": page}
            )
            if data.get("incomplete_results"):
                self._logger.warning("GitHub search returned incomplete results", extra={"q": query, "page": page})
            page_items = data.get("items") or []
            results.extend(page_items)
            if len(page_items) < self._per_page:
                return results
        self._logger.warning(
            "GitHub search result cap reached; narrow chunk_days to see everything",
            extra={"q": query, "cap": SEARCH_RESULT_CAP},
        )
        return results

    async def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.get(SEARCH_PATH, params=params)
        except httpx.HTTPError as exc:
            await self._sleep(self._request_delay)
            raise UpstreamHTTPError(None, str(exc), SEARCH_PATH) from exc
        # Unconditional: every call spends from the same search budget.
        await self._sleep(self._request_delay)

        rate_limit = _parse_rate_limit(response.headers)
        if rate_limit.remaining is not None and rate_limit.remaining <= 1:
            self._logger.warning(
                "GitHub rate limit nearly exhausted",
                extra={
                    "remaining": rate_limit.remaining,
                    "reset_at": rate_limit.reset_at.isoformat()
                    if rate_limit.reset_at
                    else None,
                },
            )

        if response.status_code == 401:
            raise UpstreamAuthError(f"GitHub rejected the access token: {response.text[:200]}")
        if response.status_code in {403, 429} and (
            rate_limit.remaining == 0 or "rate limit" in response.text.lower()
        ):
            raise UpstreamRateLimited(response.status_code, response.text, SEARCH_PATH)
        if not response.is_success:
            raise UpstreamHTTPError(response.status_code, response.text, SEARCH_PATH)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamHTTPError(response.status_code, response.text, SEARCH_PATH) from exc


def chunk_date_range(
    start: datetime, end: datetime, step: timedelta
) -> list[tuple[datetime, datetime]]:
    """Split [start, end) into consecutive half-open sub-ranges of at most `step`."""
    if step <= timedelta(0):
        raise ValueError("step must be positive")
    start = ensure_utc(start)
    end = ensure_utc(end)
    chunks: list[tuple[datetime, datetime]] = []
    cursor = start
    while cursor < end:
        upper = min(cursor + step, end)
        chunks.append((cursor, upper))
        cursor = upper
    return chunks


def _range_qualifier(start: datetime, end: datetime) -> str:
    # Search ranges are inclusive and second-granular; [start, end) becomes start..end-1s.
    last = end - timedelta(seconds=1)
    if last < start:
        last = start
    return f"{_search_timestamp(start)}..{_search_timestamp(last)}"


def _search_timestamp(value: datetime) -> str:
    return ensure_utc(value).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%S+00:00")


def _parse_rate_limit(headers: httpx.Headers) -> RateLimitStatus:
    remaining = headers.get("X-RateLimit-Remaining")
    reset = headers.get("X-RateLimit-Reset")
    remaining_val = int(remaining) if remaining and remaining.isdigit() else None
    reset_at = (
        datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset and reset.isdigit() else None
    )
    return RateLimitStatus(remaining=remaining_val, reset_at=reset_at)
