from dataclasses import asdict, dataclass, field

# pay-per-use price of a single post read
UNIT_PRICE_USD = 0.005

METRIC_NAMES: "tuple[str, ...]" = (
    "likes",
    "retweets",
    "replies",
    "quotes",
    "impressions",
    "bookmarks",
)


def cost_of(reads: "int") -> "float":
    """
    converts a read count to USD, rounded so repeated accumulation
    does not drift away from reads * UNIT_PRICE_USD.
    """
    return round(reads * UNIT_PRICE_USD, 6)


@dataclass(frozen=True, slots=True)
class Metrics:
    """
    Metrics holds the public engagement counters of a post.
    """

    likes: "int" = 0
    retweets: "int" = 0
    replies: "int" = 0
    quotes: "int" = 0
    impressions: "int" = 0
    bookmarks: "int" = 0


@dataclass(frozen=True, slots=True)
class Record:
    """
    Record is a normalized post, joined to its author. It is a
    value object and is never mutated after normalization.
    """

    id: "str"
    text: "str"
    author_id: "str"
    username: "str"
    name: "str"
    created_at: "str"
    # id of the thread root this post belongs to
    conversation_id: "str"
    metrics: "Metrics" = field(default_factory=Metrics)
    urls: "tuple[str, ...]" = ()
    mentions: "tuple[str, ...]" = ()
    hashtags: "tuple[str, ...]" = ()

    @property
    def url(self) -> "str":
        return f"https://x.com/{self.username}/status/{self.id}"

    def metric(self, name: "str") -> "int":
        return getattr(self.metrics, name)

    def to_dict(self) -> "dict[str, object]":
        data = asdict(self)
        data["urls"] = list(self.urls)
        data["mentions"] = list(self.mentions)
        data["hashtags"] = list(self.hashtags)
        data["url"] = self.url
        return data

    @classmethod
    def from_dict(cls, data: "dict") -> "Record":
        """
        rebuilds a record from the dict produced by to_dict().
        """
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            author_id=data.get("author_id", ""),
            username=data.get("username", "?"),
            name=data.get("name", "?"),
            created_at=data.get("created_at", ""),
            conversation_id=data.get("conversation_id", ""),
            metrics=Metrics(**data.get("metrics", {})),
            urls=tuple(data.get("urls", ())),
            mentions=tuple(data.get("mentions", ())),
            hashtags=tuple(data.get("hashtags", ())),
        )


@dataclass(frozen=True, slots=True)
class UserProfile:
    id: "str"
    username: "str"
    name: "str"
    description: "str" = ""
    created_at: "str" = ""
    followers: "int" = 0
    following: "int" = 0
    post_count: "int" = 0


@dataclass(frozen=True, slots=True)
class Found:
    record: "Record"


@dataclass(frozen=True, slots=True)
class NotFound:
    record_id: "str"


@dataclass(frozen=True, slots=True)
class DegradedOmit:
    """
    DegradedOmit marks a lookup that failed for a reason other than
    the record not existing. Callers decide whether to omit it or fail.
    """

    record_id: "str"
    status: "int"
    detail: "str" = ""


LookupResult = Found | NotFound | DegradedOmit


@dataclass(frozen=True, slots=True)
class DailyUsage:
    # YYYY-MM-DD
    date: "str"
    reads: "int"

    @property
    def cost_usd(self) -> "float":
        return cost_of(self.reads)


@dataclass(frozen=True, slots=True)
class UsageReport:
    """
    UsageReport summarizes post reads over a period, either as
    reported by the remote usage endpoint or by the local ledger.
    """

    days: "tuple[DailyUsage, ...]"
    total_reads: "int"
    period_start: "str"
    period_end: "str"
    # "remote" or "local"
    source: "str" = "remote"

    @property
    def total_cost_usd(self) -> "float":
        return cost_of(self.total_reads)
