import re
from datetime import datetime, timedelta, timezone

from xsearch.models import DailyUsage, Metrics, Record, UsageReport, UserProfile

UNKNOWN = "?"

# (record field, X API public_metrics key)
_METRIC_KEYS: "tuple[tuple[str, str], ...]" = (
    ("likes", "like_count"),
    ("retweets", "retweet_count"),
    ("replies", "reply_count"),
    ("quotes", "quote_count"),
    ("impressions", "impression_count"),
    ("bookmarks", "bookmark_count"),
)

_SHORTHAND = re.compile(r"^(\d+)(m|h|d)$")
_UNIT_SECONDS = {"m": 60, "h": 3600, "d": 86400}


def _count(value: "object") -> "int":
    try:
        return max(int(value), 0)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def _entity_values(entities: "dict", kind: "str", key: "str") -> "tuple[str, ...]":
    return tuple(
        item[key]
        for item in entities.get(kind) or []
        if isinstance(item, dict) and item.get(key)
    )


def _items(payload: "dict") -> "list[dict]":
    """
    returns the page items regardless of response shape. Single-item
    lookups carry an object in "data", or occasionally the post at the
    top level, and are treated as a one-element page.
    """
    data = payload.get("data")
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        return [data]
    if data is None and "id" in payload and "text" in payload:
        return [payload]
    return []


def parse_record(item: "dict", users: "dict[str, dict]") -> "Record":
    author_id = str(item.get("author_id") or "")
    user = users.get(author_id, {})
    raw_metrics = item.get("public_metrics") or {}
    entities = item.get("entities") or {}

    return Record(
        id=str(item["id"]),
        text=item.get("text") or "",
        author_id=author_id,
        username=user.get("username") or UNKNOWN,
        name=user.get("name") or UNKNOWN,
        created_at=item.get("created_at") or "",
        conversation_id=str(item.get("conversation_id") or ""),
        metrics=Metrics(
            **{field: _count(raw_metrics.get(key)) for field, key in _METRIC_KEYS}
        ),
        urls=_entity_values(entities, "urls", "expanded_url"),
        mentions=_entity_values(entities, "mentions", "username"),
        hashtags=_entity_values(entities, "hashtags", "tag"),
    )


def parse_records(payload: "dict") -> "list[Record]":
    """
    normalizes one response page into records, joining each item to
    the side-loaded users table in "includes".

    Every missing-field default lives in this module: unknown authors
    become "?", missing metrics become 0 and missing entity arrays
    become empty tuples. The rest of the package only sees Record
    values.
    """
    includes = payload.get("includes") or {}
    users = {
        str(u["id"]): u
        for u in includes.get("users") or []
        if isinstance(u, dict) and "id" in u
    }
    return [parse_record(item, users) for item in _items(payload) if "id" in item]


def parse_user(payload: "dict") -> "UserProfile | None":
    data = payload.get("data")
    if not isinstance(data, dict) or "id" not in data:
        return None

    metrics = data.get("public_metrics") or {}
    return UserProfile(
        id=str(data["id"]),
        username=data.get("username") or UNKNOWN,
        name=data.get("name") or UNKNOWN,
        description=data.get("description") or "",
        created_at=data.get("created_at") or "",
        followers=_count(metrics.get("followers_count")),
        following=_count(metrics.get("following_count")),
        post_count=_count(metrics.get("tweet_count")),
    )


def parse_usage(payload: "dict", start: "datetime", end: "datetime") -> "UsageReport":
    """
    folds the usage endpoint document into per-day read counts.
    Each day may list usage for several apps; their reads are summed.
    """
    data = payload.get("data")
    if isinstance(data, dict):
        days = data.get("daily_project_usage") or []
    elif isinstance(data, list):
        days = data
    else:
        days = []

    daily: "list[DailyUsage]" = []
    for day in days:
        if not isinstance(day, dict):
            continue
        reads = sum(
            _count(app.get("tweets"))
            for app in day.get("usage") or []
            if isinstance(app, dict)
        )
        date = str(day.get("date") or "unknown")[:10]
        daily.append(DailyUsage(date=date, reads=reads))

    return UsageReport(
        days=tuple(daily),
        total_reads=sum(d.reads for d in daily),
        period_start=start.date().isoformat(),
        period_end=end.date().isoformat(),
        source="remote",
    )


def format_timestamp(moment: "datetime") -> "str":
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_since(value: "str", now: "datetime") -> "str | None":
    """
    turns a time-window selector into an ISO 8601 start_time.
    Accepts shorthand like "30m", "3h", "7d" or a raw ISO 8601 timestamp.
    Returns None when the value is not understood.
    """
    match = _SHORTHAND.match(value.strip())
    if match:
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        return format_timestamp(now - timedelta(seconds=seconds))

    if "T" in value or "-" in value:
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return format_timestamp(moment)

    return None
