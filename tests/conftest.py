from datetime import datetime, timezone
from typing import Callable

import pytest
from prometheus_client import CollectorRegistry

from xsearch.models import Metrics, Record


class FakeClock:
    """
    a settable replacement for time.time.
    """

    def __init__(self, now: "float") -> "None":
        self.now = now

    def __call__(self) -> "float":
        return self.now

    def advance(self, seconds: "float") -> "None":
        self.now += seconds


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def clock() -> "FakeClock":
    # midday UTC, so small advances never cross a day boundary
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc).timestamp())


@pytest.fixture()
def make_record() -> "Callable[..., Record]":
    def _make(
        record_id: "str",
        likes: "int" = 0,
        impressions: "int" = 0,
        retweets: "int" = 0,
        username: "str" = "alice",
    ) -> "Record":
        return Record(
            id=record_id,
            text=f"post {record_id}",
            author_id="u1",
            username=username,
            name="Alice",
            created_at="2026-03-10T11:00:00.000Z",
            conversation_id=record_id,
            metrics=Metrics(likes=likes, impressions=impressions, retweets=retweets),
        )

    return _make
