from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from xsearch.models import Record


class XSearchError(Exception):
    """
    base class for every error surfaced by the fetch pipeline.
    """


class ConfigError(XSearchError):
    """
    raised when required configuration, such as the bearer
    token, cannot be resolved.
    """


class BudgetDenied(XSearchError):
    def __init__(self, reason: "str") -> "None":
        super().__init__(reason)
        self.reason = reason


class RateLimited(XSearchError):
    """
    raised on HTTP 429. Carries the number of seconds until the
    provider's rate-limit window resets. Never retried automatically.

    When raised part way through pagination, `fetched` holds the
    records of the pages that were already served.
    """

    def __init__(self, retry_after: "int") -> "None":
        super().__init__(f"Rate limited, retry after {retry_after}s")
        self.retry_after = retry_after
        self.fetched: "list[Record]" = []


class FetchError(XSearchError):
    def __init__(self, status: "int", body: "str") -> "None":
        super().__init__(f"X API {status}: {body}")
        self.status = status
        self.body = body
        # pages served before the failing request
        self.fetched: "list[Record]" = []


class NotFoundError(XSearchError):
    pass


class PersistenceError(XSearchError):
    """
    raised when local state (ledger, cache, watchlist) cannot be
    written. Read failures degrade to defaults instead.
    """
