from typing import Iterable

from xsearch.models import METRIC_NAMES, Record

# sort mode that keeps the order the endpoint returned
RECENT = "recent"


def dedupe(records: "Iterable[Record]") -> "list[Record]":
    """
    drops records whose id was already seen, keeping the first
    occurrence and the original order.
    """
    seen: "set[str]" = set()
    unique: "list[Record]" = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        unique.append(record)
    return unique


def filter_engagement(
    records: "Iterable[Record]",
    min_likes: "int | None" = None,
    min_impressions: "int | None" = None,
) -> "list[Record]":
    """
    keeps records meeting every given minimum. A missing or zero
    threshold imposes no constraint.
    """
    kept: "list[Record]" = []
    for record in records:
        if min_likes and record.metrics.likes < min_likes:
            continue
        if min_impressions and record.metrics.impressions < min_impressions:
            continue
        kept.append(record)
    return kept


def sort_by(records: "Iterable[Record]", metric: "str" = "likes") -> "list[Record]":
    """
    stable descending sort on a single metric. "recent" is a no-op
    since the endpoint already returns results in recency order.
    """
    if metric == RECENT:
        return list(records)
    if metric not in METRIC_NAMES:
        raise ValueError(f"unknown sort metric: {metric}")
    return sorted(records, key=lambda r: r.metric(metric), reverse=True)
