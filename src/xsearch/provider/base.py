from typing import Protocol, Sequence

from xsearch.models import LookupResult, Record, UsageReport, UserProfile


class RecordSource(Protocol):
    """
    RecordSource stands as the common protocol the pipeline fetches
    through. Implementations talk to a pay-per-use read API and
    return normalized Record values in fetch order.
    """

    async def search(
        self,
        query: "str",
        *,
        page_size: "int" = 100,
        pages: "int" = 1,
        sort_order: "str" = "relevancy",
        since: "str | None" = None,
    ) -> "Sequence[Record]": ...

    async def list_records(
        self,
        list_id: "str",
        *,
        page_size: "int" = 100,
        pages: "int" = 1,
    ) -> "Sequence[Record]": ...

    async def lookup(self, record_id: "str") -> "LookupResult": ...

    async def get_user(self, username: "str") -> "UserProfile": ...

    async def fetch_usage(self, days: "int" = 7) -> "UsageReport | None": ...

    async def close(self) -> "None": ...
