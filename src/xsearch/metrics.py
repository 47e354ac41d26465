from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


class MetricsUpdater:
    """
    records pipeline activity in Prometheus metrics:
     - post_reads_total / cost_usd_total: paid reads and their
     cost, labeled by operation.
     - cache_lookups_total: cache hits and misses.
     - budget_denials_total: requests blocked by the ledger.
     - fetch_errors_total: failed fetches, labeled by error kind.
     - fetch_duration_seconds: wall time of remote fetches.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._reads: "Counter" = Counter(
            "xsearch_post_reads_total",
            "Total post reads billed by the X API",
            ["operation"],
            registry=registry,
        )
        self._cost: "Counter" = Counter(
            "xsearch_cost_usd_total",
            "Estimated cost in USD of billed post reads",
            ["operation"],
            registry=registry,
        )
        self._cache_lookups: "Counter" = Counter(
            "xsearch_cache_lookups_total",
            "Result cache lookups by outcome",
            ["result"],
            registry=registry,
        )
        self._denials: "Counter" = Counter(
            "xsearch_budget_denials_total",
            "Requests blocked by the budget ledger",
            ["operation"],
            registry=registry,
        )
        self._fetch_errors: "Counter" = Counter(
            "xsearch_fetch_errors_total",
            "Failed remote fetches by operation and error kind",
            ["operation", "kind"],
            registry=registry,
        )
        self._fetch_duration: "Histogram" = Histogram(
            "xsearch_fetch_duration_seconds",
            "Duration of remote fetches",
            ["operation"],
            registry=registry,
        )

    @property
    def registry(self) -> "CollectorRegistry":
        return self._registry

    def record_reads(self, operation: "str", reads: "int", cost_usd: "float") -> "None":
        self._reads.labels(operation=operation).inc(reads)
        self._cost.labels(operation=operation).inc(cost_usd)

    def cache_lookup(self, hit: "bool") -> "None":
        self._cache_lookups.labels(result="hit" if hit else "miss").inc()

    def inc_budget_denial(self, operation: "str") -> "None":
        self._denials.labels(operation=operation).inc()

    def inc_fetch_error(self, operation: "str", kind: "str") -> "None":
        self._fetch_errors.labels(operation=operation, kind=kind).inc()

    def observe_fetch_duration(
        self, operation: "str", duration_seconds: "float"
    ) -> "None":
        self._fetch_duration.labels(operation=operation).observe(duration_seconds)
