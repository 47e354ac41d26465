import httpx
import pytest
import respx
from prometheus_client import CollectorRegistry

from xsearch.cache import QuerySignature, ResultCache
from xsearch.config import X_BASE_URL
from xsearch.errors import BudgetDenied, FetchError, RateLimited
from xsearch.ledger import BudgetLedger
from xsearch.metrics import MetricsUpdater
from xsearch.models import (
    DegradedOmit,
    Found,
    LookupResult,
    NotFound,
    Record,
    UsageReport,
    UserProfile,
)
from xsearch.pipeline import Pipeline, SearchOptions
from xsearch.provider.x import XClient


class MockSource:
    """
    A mock record source that returns pre-configured records and
    remembers how it was called.
    """

    def __init__(
        self,
        records: "list[Record] | None" = None,
        lookups: "dict[str, LookupResult | Exception] | None" = None,
        error: "Exception | None" = None,
        usage: "UsageReport | None" = None,
    ) -> "None":
        self._records = records or []
        self._lookups = lookups or {}
        self._error = error
        self._usage = usage
        self.search_calls: "list[dict]" = []
        self.lookup_calls: "list[str]" = []
        self.closed = False

    async def search(
        self,
        query: "str",
        *,
        page_size: "int" = 100,
        pages: "int" = 1,
        sort_order: "str" = "relevancy",
        since: "str | None" = None,
    ) -> "list[Record]":
        self.search_calls.append(
            {
                "query": query,
                "page_size": page_size,
                "pages": pages,
                "sort_order": sort_order,
                "since": since,
            }
        )
        if self._error is not None:
            raise self._error
        return list(self._records)

    async def list_records(
        self, list_id: "str", *, page_size: "int" = 100, pages: "int" = 1
    ) -> "list[Record]":
        return list(self._records)

    async def lookup(self, record_id: "str") -> "LookupResult":
        self.lookup_calls.append(record_id)
        result = self._lookups.get(record_id, NotFound(record_id))
        if isinstance(result, Exception):
            raise result
        return result

    async def get_user(self, username: "str") -> "UserProfile":
        return UserProfile(id="u1", username=username.lstrip("@"), name="Alice")

    async def fetch_usage(self, days: "int" = 7) -> "UsageReport | None":
        return self._usage

    async def close(self) -> "None":
        self.closed = True


@pytest.fixture()
def ledger(tmp_path, clock) -> "BudgetLedger":
    return BudgetLedger(tmp_path / "budget.json", clock=clock)


@pytest.fixture()
def cache(tmp_path, clock) -> "ResultCache":
    return ResultCache(tmp_path / "cache.json", clock=clock)


def _pipeline(
    source: "MockSource",
    ledger: "BudgetLedger",
    cache: "ResultCache",
    registry: "CollectorRegistry",
) -> "Pipeline":
    return Pipeline(source, ledger, cache, MetricsUpdater(registry=registry))


class TestPipelineSearch:
    @pytest.mark.asyncio
    async def test_miss_fetches_caches_and_bills(
        self, ledger, cache, registry, make_record
    ) -> "None":
        source = MockSource([make_record("1", likes=1), make_record("2", likes=9)])
        pipeline = _pipeline(source, ledger, cache, registry)

        result = await pipeline.search("python", SearchOptions(pages=2))

        assert result.cached is False
        assert [r.id for r in result.records] == ["2", "1"]
        assert result.billed_reads == 2
        assert source.search_calls[0]["pages"] == 2
        assert source.search_calls[0]["sort_order"] == "relevancy"
        assert ledger.load().tracking.today_reads == 2
        assert registry.get_sample_value(
            "xsearch_post_reads_total", {"operation": "search"}
        ) == 2.0
        assert registry.get_sample_value(
            "xsearch_cache_lookups_total", {"result": "miss"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_hit_skips_fetch_and_billing(
        self, ledger, cache, registry, make_record
    ) -> "None":
        source = MockSource([make_record("1")])
        pipeline = _pipeline(source, ledger, cache, registry)

        await pipeline.search("python")
        result = await pipeline.search("python")

        assert result.cached is True
        assert result.billed_reads == 0
        assert len(source.search_calls) == 1
        assert ledger.load().tracking.today_reads == 1
        assert registry.get_sample_value(
            "xsearch_cache_lookups_total", {"result": "hit"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(
        self, ledger, cache, registry, clock, make_record
    ) -> "None":
        source = MockSource([make_record("1")])
        pipeline = _pipeline(source, ledger, cache, registry)
        options = SearchOptions(cache_ttl_seconds=60)

        await pipeline.search("python", options)
        clock.advance(60)
        result = await pipeline.search("python", options)

        assert result.cached is False
        assert len(source.search_calls) == 2
        assert ledger.load().tracking.today_reads == 2

    @pytest.mark.asyncio
    async def test_budget_denied_before_any_fetch(
        self, ledger, cache, registry, make_record
    ) -> "None":
        ledger.set_daily_limit(0.10)
        source = MockSource([make_record("1")])
        pipeline = _pipeline(source, ledger, cache, registry)

        with pytest.raises(BudgetDenied) as excinfo:
            await pipeline.search("python")

        assert "daily" in excinfo.value.reason
        assert source.search_calls == []
        assert registry.get_sample_value(
            "xsearch_budget_denials_total", {"operation": "search"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_bills_raw_count_before_dedupe_and_filters(
        self, ledger, cache, registry, make_record
    ) -> "None":
        records = [
            make_record("1", likes=50),
            make_record("2", likes=1),
            make_record("1", likes=50),
        ]
        pipeline = _pipeline(MockSource(records), ledger, cache, registry)

        result = await pipeline.search("python", SearchOptions(min_likes=10))

        assert [r.id for r in result.records] == ["1"]
        assert result.raw_count == 3
        assert ledger.load().tracking.today_reads == 3

    @pytest.mark.asyncio
    async def test_recent_sort_asks_for_recency(
        self, ledger, cache, registry, make_record
    ) -> "None":
        records = [make_record("a", likes=1), make_record("b", likes=5)]
        source = MockSource(records)
        pipeline = _pipeline(source, ledger, cache, registry)

        result = await pipeline.search("python", SearchOptions(sort="recent", since="1d"))

        assert source.search_calls[0]["sort_order"] == "recency"
        assert source.search_calls[0]["since"] == "1d"
        assert [r.id for r in result.records] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_budget_alert_is_returned(
        self, ledger, cache, registry, make_record
    ) -> "None":
        ledger.set_daily_limit(1.00)
        ledger.record(100)
        records = [make_record(str(i)) for i in range(80)]
        pipeline = _pipeline(MockSource(records), ledger, cache, registry)

        result = await pipeline.search("python")

        assert result.alert is not None
        assert result.alert.level == "approaching"

    @pytest.mark.asyncio
    async def test_rate_limit_propagates_and_is_counted(
        self, ledger, cache, registry
    ) -> "None":
        source = MockSource(error=RateLimited(30))
        pipeline = _pipeline(source, ledger, cache, registry)

        with pytest.raises(RateLimited):
            await pipeline.search("python")

        assert ledger.load().tracking.today_reads == 0
        assert registry.get_sample_value(
            "xsearch_fetch_errors_total",
            {"operation": "search", "kind": "rate_limited"},
        ) == 1.0


class TestPipelineLookups:
    @pytest.mark.asyncio
    async def test_fetch_by_id_found(
        self, ledger, cache, registry, make_record
    ) -> "None":
        source = MockSource(lookups={"7": Found(make_record("7"))})
        pipeline = _pipeline(source, ledger, cache, registry)

        record = await pipeline.fetch_by_id("7")

        assert record is not None
        assert record.id == "7"
        assert ledger.load().tracking.today_reads == 1

    @pytest.mark.asyncio
    async def test_fetch_by_id_not_found(self, ledger, cache, registry) -> "None":
        pipeline = _pipeline(MockSource(), ledger, cache, registry)
        assert await pipeline.fetch_by_id("7") is None
        assert ledger.load().tracking.today_reads == 0

    @pytest.mark.asyncio
    async def test_fetch_by_id_degraded_raises(self, ledger, cache, registry) -> "None":
        source = MockSource(lookups={"7": DegradedOmit("7", 500, "boom")})
        pipeline = _pipeline(source, ledger, cache, registry)
        with pytest.raises(FetchError) as excinfo:
            await pipeline.fetch_by_id("7")
        assert excinfo.value.status == 500

    @pytest.mark.asyncio
    async def test_thread_prepends_root(
        self, ledger, cache, registry, make_record
    ) -> "None":
        source = MockSource(
            records=[make_record("11"), make_record("12")],
            lookups={"10": Found(make_record("10"))},
        )
        pipeline = _pipeline(source, ledger, cache, registry)

        result = await pipeline.thread("10")

        assert [r.id for r in result.records] == ["10", "11", "12"]
        assert source.search_calls[0]["query"] == "conversation_id:10"
        assert source.search_calls[0]["sort_order"] == "recency"
        assert source.search_calls[0]["pages"] == 2
        assert ledger.load().tracking.today_reads == 3

    @pytest.mark.asyncio
    async def test_thread_omits_unavailable_root(
        self, ledger, cache, registry, make_record
    ) -> "None":
        source = MockSource(
            records=[make_record("11")],
            lookups={"10": DegradedOmit("10", 503, "unavailable")},
        )
        pipeline = _pipeline(source, ledger, cache, registry)

        result = await pipeline.thread("10")

        assert [r.id for r in result.records] == ["11"]
        assert isinstance(result.root, DegradedOmit)
        assert ledger.load().tracking.today_reads == 1

    @pytest.mark.asyncio
    async def test_thread_omits_deleted_root(
        self, ledger, cache, registry, make_record
    ) -> "None":
        source = MockSource(records=[make_record("11")])
        pipeline = _pipeline(source, ledger, cache, registry)

        result = await pipeline.thread("10")

        assert [r.id for r in result.records] == ["11"]
        assert result.root == NotFound("10")

    @pytest.mark.asyncio
    async def test_thread_bills_conversation_when_root_lookup_fails(
        self, ledger, cache, registry, make_record
    ) -> "None":
        source = MockSource(
            records=[make_record("11"), make_record("12")],
            lookups={"10": RateLimited(15)},
        )
        pipeline = _pipeline(source, ledger, cache, registry)

        with pytest.raises(RateLimited):
            await pipeline.thread("10")
        assert ledger.load().tracking.today_reads == 2

    @pytest.mark.asyncio
    async def test_profile_builds_query(
        self, ledger, cache, registry, make_record
    ) -> "None":
        source = MockSource(records=[make_record("1")])
        pipeline = _pipeline(source, ledger, cache, registry)

        result = await pipeline.profile("@alice", count=5)

        assert result.user.username == "alice"
        call = source.search_calls[0]
        assert call["query"] == "from:alice -is:retweet -is:reply"
        assert call["page_size"] == 10
        assert ledger.load().tracking.today_reads == 1

    @pytest.mark.asyncio
    async def test_list_timeline(self, ledger, cache, registry, make_record) -> "None":
        source = MockSource(records=[make_record("1"), make_record("1")])
        pipeline = _pipeline(source, ledger, cache, registry)

        result = await pipeline.list_timeline("L1")

        assert [r.id for r in result.records] == ["1"]
        assert ledger.load().tracking.today_reads == 2


class TestPipelineMaintenance:
    @pytest.mark.asyncio
    async def test_usage_falls_back_to_ledger(self, ledger, cache, registry) -> "None":
        ledger.record(40)
        pipeline = _pipeline(MockSource(), ledger, cache, registry)

        report = await pipeline.usage_report()

        assert report.source == "local"
        assert report.total_reads == 40
        assert [(d.date, d.reads) for d in report.days] == [("2026-03-10", 40)]

    @pytest.mark.asyncio
    async def test_cache_and_ledger_maintenance(
        self, ledger, cache, registry, make_record
    ) -> "None":
        pipeline = _pipeline(MockSource([make_record("1")]), ledger, cache, registry)
        await pipeline.search("python")

        pipeline.set_daily_limit(2.0)
        pipeline.set_monthly_limit(30.0)
        state = pipeline.reset_ledger()

        assert state.daily_limit_usd == 2.0
        assert pipeline.ledger_status().monthly_limit_usd == 30.0
        assert pipeline.ledger_status().tracking.today_reads == 0
        assert pipeline.cache_prune() == 0
        assert pipeline.cache_clear() == 1

    @pytest.mark.asyncio
    async def test_close_closes_source(self, ledger, cache, registry) -> "None":
        source = MockSource()
        await _pipeline(source, ledger, cache, registry).close()
        assert source.closed is True


class TestSearchOptions:
    def test_rejects_unknown_sort(self) -> "None":
        with pytest.raises(ValueError):
            SearchOptions(sort="followers")

    def test_rejects_zero_pages(self) -> "None":
        with pytest.raises(ValueError):
            SearchOptions(pages=0)


class TestPipelinePartialFetch:
    @pytest.mark.asyncio
    async def test_search_bills_pages_served_before_rate_limit(
        self, ledger, cache, registry, make_record
    ) -> "None":
        error = RateLimited(30)
        error.fetched = [make_record(str(i)) for i in range(100)]
        pipeline = _pipeline(MockSource(error=error), ledger, cache, registry)

        with pytest.raises(RateLimited):
            await pipeline.search("python", SearchOptions(pages=2))

        assert ledger.load().tracking.today_reads == 100
        assert registry.get_sample_value(
            "xsearch_post_reads_total", {"operation": "search"}
        ) == 100.0

    @pytest.mark.asyncio
    async def test_thread_bills_pages_served_before_http_error(
        self, ledger, cache, registry, make_record
    ) -> "None":
        error = FetchError(503, "unavailable")
        error.fetched = [make_record("11"), make_record("12")]
        source = MockSource(error=error)
        pipeline = _pipeline(source, ledger, cache, registry)

        with pytest.raises(FetchError):
            await pipeline.thread("10")

        assert ledger.load().tracking.today_reads == 2
        assert source.lookup_calls == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_x_client_second_page_rate_limited(
        self, ledger, cache, registry
    ) -> "None":
        first = {
            "data": [
                {"id": str(i), "text": "hi", "author_id": "u1"} for i in range(100)
            ],
            "meta": {"result_count": 100, "next_token": "p2"},
        }
        respx.get(f"{X_BASE_URL}/tweets/search/recent").mock(
            side_effect=[
                httpx.Response(200, json=first),
                httpx.Response(429),
            ]
        )

        async def _no_sleep(seconds: "float") -> "None":
            return None

        client = XClient(token_provider=lambda: "test-token", sleep=_no_sleep)
        pipeline = Pipeline(client, ledger, cache, MetricsUpdater(registry=registry))

        with pytest.raises(RateLimited) as excinfo:
            await pipeline.search("python", SearchOptions(pages=2))
        await pipeline.close()

        assert len(excinfo.value.fetched) == 100
        assert ledger.load().tracking.today_reads == 100
        # nothing is cached for a partial result
        assert cache.get(
            QuerySignature.build("python", sort="likes", since="7d", pages=2), 900
        ) is None
