import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import httpx
import structlog

from xsearch.config import X_BASE_URL
from xsearch.errors import FetchError, NotFoundError, RateLimited
from xsearch.models import (
    DegradedOmit,
    Found,
    LookupResult,
    NotFound,
    Record,
    UsageReport,
    UserProfile,
)
from xsearch.normalize import (
    format_timestamp,
    parse_records,
    parse_since,
    parse_usage,
    parse_user,
)

logger = structlog.get_logger()

# stay under 450 requests per 15 minute window
RATE_DELAY_SECONDS = 0.35
# used when a 429 carries no x-rate-limit-reset header
DEFAULT_RATE_LIMIT_WAIT = 60
ERROR_BODY_LIMIT = 200

RECORD_FIELDS: "dict[str, str]" = {
    "tweet.fields": "created_at,public_metrics,author_id,conversation_id,entities",
    "expansions": "author_id",
    "user.fields": "username,name,public_metrics",
}


def _clamp(value: "int", low: "int", high: "int") -> "int":
    return max(min(value, high), low)


class XClient:
    """
    XClient implements the RecordSource protocol for the X API v2
    read endpoints. Pages are fetched strictly one after another,
    following meta.next_token, with a fixed delay between requests.

    Rate limiting is reported as RateLimited and never retried here;
    the caller decides whether to wait and resubmit.
    """

    def __init__(
        self,
        token_provider: "Callable[[], str]",
        base_url: "str" = X_BASE_URL,
        page_delay: "float" = RATE_DELAY_SECONDS,
        sleep: "Callable[[float], Awaitable[None]]" = asyncio.sleep,
        clock: "Callable[[], float]" = time.time,
    ) -> "None":
        self._token_provider = token_provider
        self._token: "str | None" = None
        self._page_delay = page_delay
        self._sleep = sleep
        self._clock = clock
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            base_url=base_url,
            timeout=10.0,
        )

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    def _auth_headers(self) -> "dict[str, str]":
        # resolved lazily so a missing credential fails before any request
        if self._token is None:
            self._token = self._token_provider()
        return {"Authorization": f"Bearer {self._token}"}

    def _rate_limit_wait(self, resp: "httpx.Response") -> "int":
        reset = resp.headers.get("x-rate-limit-reset")
        if not reset:
            return DEFAULT_RATE_LIMIT_WAIT
        try:
            return max(int(reset) - int(self._clock()), 1)
        except ValueError:
            return DEFAULT_RATE_LIMIT_WAIT

    async def _send(self, path: "str", params: "dict[str, str]") -> "httpx.Response":
        headers = self._auth_headers()
        logger.debug("x_request", path=path)
        try:
            resp = await self._client.get(path, params=params, headers=headers)
        except httpx.TransportError as exc:
            # status 0 marks a failure before any HTTP response
            raise FetchError(0, str(exc)[:ERROR_BODY_LIMIT]) from exc

        if resp.status_code == 429:
            wait = self._rate_limit_wait(resp)
            logger.warning("x_rate_limited", path=path, retry_after=wait)
            raise RateLimited(wait)

        return resp

    async def _get_json(self, path: "str", params: "dict[str, str]") -> "dict":
        resp = await self._send(path, params)
        if not resp.is_success:
            raise FetchError(resp.status_code, resp.text[:ERROR_BODY_LIMIT])
        return self._decode(resp)

    def _decode(self, resp: "httpx.Response") -> "dict":
        try:
            return resp.json()
        except ValueError as exc:
            # gateways sometimes answer 2xx with an HTML page
            raise FetchError(
                resp.status_code,
                "invalid JSON body: " + resp.text[:ERROR_BODY_LIMIT],
            ) from exc

    async def _paginate(
        self,
        path: "str",
        params: "dict[str, str]",
        pages: "int",
    ) -> "list[Record]":
        """
        fetches up to `pages` pages and concatenates their records
        in fetch order.
        """
        records: "list[Record]" = []
        next_token = ""

        for page in range(pages):
            page_params = dict(params)
            if next_token:
                page_params["pagination_token"] = next_token

            try:
                payload = await self._get_json(path, page_params)
            except (RateLimited, FetchError) as exc:
                # earlier pages were already served and billed
                exc.fetched = list(records)
                raise
            page_records = parse_records(payload)
            records.extend(page_records)
            logger.debug(
                "x_fetch_page",
                path=path,
                page=page + 1,
                record_count=len(page_records),
            )

            next_token = (payload.get("meta") or {}).get("next_token") or ""
            # stop when there are no more pages to fetch
            if not next_token:
                break
            if page < pages - 1:
                await self._sleep(self._page_delay)

        return records

    async def search(
        self,
        query: "str",
        *,
        page_size: "int" = 100,
        pages: "int" = 1,
        sort_order: "str" = "relevancy",
        since: "str | None" = None,
    ) -> "list[Record]":
        """
        searches recent posts (last 7 days).
        """
        params = {
            "query": query,
            "max_results": str(_clamp(page_size, 10, 100)),
            "sort_order": sort_order,
            **RECORD_FIELDS,
        }
        if since:
            now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
            start_time = parse_since(since, now)
            if start_time:
                params["start_time"] = start_time
            else:
                logger.warning("x_since_ignored", since=since)

        return await self._paginate("/tweets/search/recent", params, max(pages, 1))

    async def list_records(
        self,
        list_id: "str",
        *,
        page_size: "int" = 100,
        pages: "int" = 1,
    ) -> "list[Record]":
        params = {"max_results": str(_clamp(page_size, 1, 100)), **RECORD_FIELDS}
        return await self._paginate(f"/lists/{list_id}/tweets", params, max(pages, 1))

    async def lookup(self, record_id: "str") -> "LookupResult":
        """
        fetches a single post. A deleted or unknown post is NotFound;
        any other failure, except rate limiting, is DegradedOmit.
        """
        resp = await self._send(f"/tweets/{record_id}", dict(RECORD_FIELDS))

        if resp.status_code == 404:
            return NotFound(record_id)
        if not resp.is_success:
            return DegradedOmit(
                record_id, resp.status_code, resp.text[:ERROR_BODY_LIMIT]
            )

        try:
            payload = resp.json()
        except ValueError:
            return DegradedOmit(record_id, resp.status_code, "invalid JSON body")

        records = parse_records(payload)
        if not records:
            # the API answers 200 with an errors array for deleted posts
            return NotFound(record_id)
        return Found(records[0])

    async def get_user(self, username: "str") -> "UserProfile":
        username = username.lstrip("@")
        payload = await self._get_json(
            f"/users/by/username/{username}",
            {"user.fields": "public_metrics,description,created_at"},
        )
        user = parse_user(payload)
        if user is None:
            raise NotFoundError(f"User @{username} not found")
        return user

    async def fetch_usage(self, days: "int" = 7) -> "UsageReport | None":
        """
        fetches real post consumption from the usage endpoint. Returns
        None when the endpoint is not available for this app (403/404).
        """
        end = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        start = end - timedelta(days=days)
        resp = await self._send(
            "/usage/tweets",
            {"start_time": format_timestamp(start), "end_time": format_timestamp(end)},
        )

        if resp.status_code in (403, 404):
            logger.debug("x_usage_unavailable", status=resp.status_code)
            return None
        if not resp.is_success:
            raise FetchError(resp.status_code, resp.text[:ERROR_BODY_LIMIT])

        return parse_usage(self._decode(resp), start, end)
