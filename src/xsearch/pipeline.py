import time
from dataclasses import dataclass
from typing import Awaitable, TypeVar

import structlog

from xsearch.aggregate import RECENT, dedupe, filter_engagement, sort_by
from xsearch.cache import QuerySignature, ResultCache
from xsearch.errors import (
    BudgetDenied,
    FetchError,
    PersistenceError,
    RateLimited,
    XSearchError,
)
from xsearch.ledger import BudgetAlert, BudgetLedger, LedgerState
from xsearch.metrics import MetricsUpdater
from xsearch.models import (
    METRIC_NAMES,
    DailyUsage,
    DegradedOmit,
    Found,
    LookupResult,
    Record,
    UsageReport,
    UserProfile,
    cost_of,
)
from xsearch.provider.base import RecordSource

logger = structlog.get_logger()

T = TypeVar("T")

# admission estimates assume every requested page comes back full
PAGE_ESTIMATE = 100
DEFAULT_CACHE_TTL_SECONDS = 15 * 60
QUICK_CACHE_TTL_SECONDS = 60 * 60
# search window of the recent-search endpoint, used in cache keys
DEFAULT_SINCE = "7d"


@dataclass(frozen=True, slots=True)
class SearchOptions:
    pages: "int" = 1
    # a metric name from METRIC_NAMES, or "recent"
    sort: "str" = "likes"
    since: "str | None" = None
    min_likes: "int | None" = None
    min_impressions: "int | None" = None
    cache_ttl_seconds: "float" = DEFAULT_CACHE_TTL_SECONDS

    def __post_init__(self) -> "None":
        if self.sort != RECENT and self.sort not in METRIC_NAMES:
            raise ValueError(f"unknown sort mode: {self.sort}")
        if self.pages < 1:
            raise ValueError("pages must be >= 1")


@dataclass(frozen=True, slots=True)
class SearchResult:
    records: "tuple[Record, ...]"
    # number of records fetched or served before filtering
    raw_count: "int"
    cached: "bool" = False
    alert: "BudgetAlert | None" = None

    @property
    def billed_reads(self) -> "int":
        return 0 if self.cached else self.raw_count

    @property
    def cost_usd(self) -> "float":
        return cost_of(self.billed_reads)


@dataclass(frozen=True, slots=True)
class ThreadResult:
    records: "tuple[Record, ...]"
    root: "LookupResult"
    alert: "BudgetAlert | None" = None


@dataclass(frozen=True, slots=True)
class ProfileResult:
    user: "UserProfile"
    records: "tuple[Record, ...]"
    alert: "BudgetAlert | None" = None


class Pipeline:
    """
    Pipeline is the budget-gated cached-fetch flow. For every logical
    query it asks the ledger for admission, serves from the cache when
    possible, otherwise fetches through the record source, dedupes,
    caches the result and records the billed reads in the ledger.

    It runs one operation at a time; pagination happens inside the
    source and is strictly sequential.
    """

    def __init__(
        self,
        source: "RecordSource",
        ledger: "BudgetLedger",
        cache: "ResultCache",
        metrics: "MetricsUpdater",
    ) -> "None":
        self._source = source
        self._ledger = ledger
        self._cache = cache
        self._metrics = metrics

    async def close(self) -> "None":
        await self._source.close()

    def _admit(self, operation: "str", estimated_units: "int") -> "None":
        admission = self._ledger.admit(estimated_units)
        if not admission.allowed:
            self._metrics.inc_budget_denial(operation)
            logger.warning("budget_denied", operation=operation, reason=admission.reason)
            raise BudgetDenied(admission.reason or "budget limit reached")

    def _record(self, operation: "str", reads: "int") -> "BudgetAlert | None":
        alert = self._ledger.record(reads)
        self._metrics.record_reads(operation, reads, cost_of(reads))
        if alert is not None:
            logger.warning(
                "budget_alert",
                level=alert.level,
                window=alert.window,
                spent_usd=alert.spent_usd,
                limit_usd=alert.limit_usd,
            )
        return alert

    async def _fetch(self, operation: "str", pending: "Awaitable[T]") -> "T":
        start = time.monotonic()
        try:
            return await pending
        except RateLimited as exc:
            self._metrics.inc_fetch_error(operation, "rate_limited")
            self._record_partial(operation, exc)
            raise
        except FetchError as exc:
            self._metrics.inc_fetch_error(operation, "http")
            self._record_partial(operation, exc)
            raise
        finally:
            self._metrics.observe_fetch_duration(operation, time.monotonic() - start)

    def _record_partial(
        self, operation: "str", exc: "RateLimited | FetchError"
    ) -> "None":
        # pages served before a failing page are still charged by the API
        if exc.fetched:
            logger.warning(
                "partial_fetch_billed", operation=operation, reads=len(exc.fetched)
            )
            self._record(operation, len(exc.fetched))

    def _store(self, signature: "QuerySignature", records: "list[Record]") -> "None":
        # a failed cache write must not lose an already paid-for result
        try:
            self._cache.set(signature, records)
        except PersistenceError:
            logger.warning("cache_store_failed", key=signature.key, exc_info=True)

    async def search(
        self,
        query: "str",
        options: "SearchOptions | None" = None,
    ) -> "SearchResult":
        """
        runs a recent-posts search through the budget gate and the
        cache, then applies the engagement filter and metric sort.
        Billing always uses the raw fetched count, before filters.
        """
        options = options or SearchOptions()
        self._admit("search", options.pages * PAGE_ESTIMATE)

        signature = QuerySignature.build(
            query,
            sort=options.sort,
            since=options.since or DEFAULT_SINCE,
            pages=options.pages,
        )
        cached = self._cache.get(signature, options.cache_ttl_seconds)
        self._metrics.cache_lookup(cached is not None)

        alert: "BudgetAlert | None" = None
        if cached is not None:
            logger.info("cache_hit", query=query, record_count=len(cached))
            records = list(cached)
            raw_count = len(records)
        else:
            logger.info("cache_miss", query=query, pages=options.pages)
            fetched = await self._fetch(
                "search",
                self._source.search(
                    query,
                    pages=options.pages,
                    sort_order="recency" if options.sort == RECENT else "relevancy",
                    since=options.since,
                ),
            )
            raw_count = len(fetched)
            records = dedupe(fetched)
            self._store(signature, records)
            alert = self._record("search", raw_count)

        records = filter_engagement(
            records,
            min_likes=options.min_likes,
            min_impressions=options.min_impressions,
        )
        records = sort_by(records, options.sort)

        return SearchResult(
            records=tuple(records),
            raw_count=raw_count,
            cached=cached is not None,
            alert=alert,
        )

    async def fetch_by_id(self, record_id: "str") -> "Record | None":
        self._admit("lookup", 1)
        result = await self._fetch("lookup", self._source.lookup(record_id))

        if isinstance(result, Found):
            self._record("lookup", 1)
            return result.record
        if isinstance(result, DegradedOmit):
            raise FetchError(result.status, result.detail)
        return None

    async def thread(self, root_id: "str", pages: "int" = 2) -> "ThreadResult":
        """
        fetches a conversation by its root id. The root post is
        prepended when it can be looked up; a deleted or unavailable
        root is omitted rather than failing the thread.
        """
        self._admit("thread", pages * PAGE_ESTIMATE + 1)

        conversation = await self._fetch(
            "thread",
            self._source.search(
                f"conversation_id:{root_id}", pages=pages, sort_order="recency"
            ),
        )
        try:
            root = await self._fetch("thread", self._source.lookup(root_id))
        except XSearchError:
            # the conversation pages were already billed
            self._record("thread", len(conversation))
            raise

        records = list(conversation)
        reads = len(conversation)
        if isinstance(root, Found):
            records.insert(0, root.record)
            reads += 1
        elif isinstance(root, DegradedOmit):
            logger.warning(
                "thread_root_omitted", root_id=root_id, status=root.status
            )

        alert = self._record("thread", reads)
        return ThreadResult(records=tuple(dedupe(records)), root=root, alert=alert)

    async def profile(
        self,
        username: "str",
        count: "int" = 20,
        include_replies: "bool" = False,
    ) -> "ProfileResult":
        page_size = max(min(count, 100), 10)
        self._admit("profile", page_size)

        user = await self._fetch("profile", self._source.get_user(username))
        query = f"from:{user.username} -is:retweet"
        if not include_replies:
            query += " -is:reply"

        records = await self._fetch(
            "profile",
            self._source.search(query, page_size=page_size, sort_order="recency"),
        )
        alert = self._record("profile", len(records))
        return ProfileResult(user=user, records=tuple(dedupe(records)), alert=alert)

    async def list_timeline(self, list_id: "str", pages: "int" = 1) -> "SearchResult":
        self._admit("list", pages * PAGE_ESTIMATE)
        fetched = await self._fetch(
            "list", self._source.list_records(list_id, pages=pages)
        )
        alert = self._record("list", len(fetched))
        return SearchResult(
            records=tuple(dedupe(fetched)), raw_count=len(fetched), alert=alert
        )

    async def usage_report(self, days: "int" = 7) -> "UsageReport":
        """
        returns post consumption from the remote usage endpoint, or
        from the local ledger when that endpoint is unavailable.
        """
        report = await self._fetch("usage", self._source.fetch_usage(days))
        if report is not None:
            return report

        t = self._ledger.status().tracking
        history = t.history or {t.today: t.today_reads}
        return UsageReport(
            days=tuple(DailyUsage(d, n) for d, n in sorted(history.items())),
            total_reads=t.rolling_reads,
            period_start=t.last_reset[:10] or t.today,
            period_end=t.today,
            source="local",
        )

    def cache_clear(self) -> "int":
        return self._cache.clear()

    def cache_prune(self) -> "int":
        return self._cache.prune()

    def ledger_status(self) -> "LedgerState":
        return self._ledger.status()

    def set_daily_limit(self, limit_usd: "float") -> "LedgerState":
        return self._ledger.set_daily_limit(limit_usd)

    def set_monthly_limit(self, limit_usd: "float") -> "LedgerState":
        return self._ledger.set_monthly_limit(limit_usd)

    def reset_ledger(self) -> "LedgerState":
        return self._ledger.reset()
