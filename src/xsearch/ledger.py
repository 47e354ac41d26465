import os
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from xsearch.models import UNIT_PRICE_USD, cost_of
from xsearch.store import JsonStore

logger = structlog.get_logger()

ROLLING_WINDOW_DAYS = 30
DEFAULT_WARN_THRESHOLD = 0.8

EXCEEDED = "exceeded"
APPROACHING = "approaching"


@dataclass(frozen=True, slots=True)
class Tracking:
    """
    Tracking is the mutable accounting block of the ledger. Costs are
    always derived from read counts via cost_of().
    """

    # UTC day, YYYY-MM-DD
    today: "str"
    today_reads: "int" = 0
    today_cost: "float" = 0.0
    rolling_reads: "int" = 0
    rolling_cost: "float" = 0.0
    # ISO timestamp of the last explicit reset
    last_reset: "str" = ""
    # UTC day -> reads, pruned to the rolling window
    history: "dict[str, int]" = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LedgerState:
    tracking: "Tracking"
    # 0 means unlimited
    daily_limit_usd: "float" = 0.0
    # applies to the rolling 30-day window, 0 means unlimited
    monthly_limit_usd: "float" = 0.0
    warn_threshold: "float" = DEFAULT_WARN_THRESHOLD

    def to_document(self) -> "dict[str, object]":
        t = self.tracking
        return {
            "dailyLimitUsd": self.daily_limit_usd,
            "monthlyLimitUsd": self.monthly_limit_usd,
            "warnThreshold": self.warn_threshold,
            "localTracking": {
                "today": t.today,
                "todayPostReads": t.today_reads,
                "todayCost": t.today_cost,
                "rollingPostReads": t.rolling_reads,
                "rollingCost": t.rolling_cost,
                "lastReset": t.last_reset,
                "history": dict(sorted(t.history.items())),
            },
        }

    @classmethod
    def from_document(cls, doc: "dict") -> "LedgerState":
        """
        builds state from a persisted document. Costs are recomputed
        from read counts rather than trusted from disk.
        """
        raw = doc["localTracking"]
        today_reads = int(raw.get("todayPostReads", 0))
        rolling_reads = int(raw.get("rollingPostReads", 0))
        tracking = Tracking(
            today=str(raw["today"]),
            today_reads=today_reads,
            today_cost=cost_of(today_reads),
            rolling_reads=rolling_reads,
            rolling_cost=cost_of(rolling_reads),
            last_reset=str(raw.get("lastReset", "")),
            history={str(k): int(v) for k, v in (raw.get("history") or {}).items()},
        )
        return cls(
            tracking=tracking,
            daily_limit_usd=float(doc.get("dailyLimitUsd", 0)),
            monthly_limit_usd=float(doc.get("monthlyLimitUsd", 0)),
            warn_threshold=float(doc.get("warnThreshold", DEFAULT_WARN_THRESHOLD)),
        )


def default_state(now: "datetime") -> "LedgerState":
    return LedgerState(
        tracking=Tracking(today=now.date().isoformat(), last_reset=now.isoformat())
    )


def rollover(state: "LedgerState", now: "datetime") -> "LedgerState":
    """
    returns the state as seen on now's UTC day: today's counters are
    zeroed when the day has advanced and history older than the rolling
    window is dropped from the rolling totals. Never moves the day back.
    """
    t = state.tracking
    day = now.date().isoformat()
    cutoff = (now.date() - timedelta(days=ROLLING_WINDOW_DAYS - 1)).isoformat()

    history = {d: n for d, n in t.history.items() if d >= cutoff}
    rolling_reads = t.rolling_reads
    if len(history) != len(t.history):
        rolling_reads = sum(history.values())

    if day > t.today:
        t = replace(t, today=day, today_reads=0, today_cost=0.0)

    return replace(
        state,
        tracking=replace(
            t,
            rolling_reads=rolling_reads,
            rolling_cost=cost_of(rolling_reads),
            history=history,
        ),
    )


@dataclass(frozen=True, slots=True)
class Admission:
    allowed: "bool"
    reason: "str | None" = None


@dataclass(frozen=True, slots=True)
class BudgetAlert:
    # EXCEEDED or APPROACHING
    level: "str"
    # "daily" or "monthly"
    window: "str"
    spent_usd: "float"
    limit_usd: "float"

    @property
    def message(self) -> "str":
        if self.level == EXCEEDED:
            return (
                f"{self.window.upper()} BUDGET EXCEEDED: "
                f"${self.spent_usd:.2f} / ${self.limit_usd:.2f}"
            )
        pct = round(self.spent_usd / self.limit_usd * 100)
        return (
            f"Budget warning: ${self.spent_usd:.2f} / ${self.limit_usd:.2f} "
            f"{self.window} limit ({pct}%)"
        )

    def __str__(self) -> "str":
        return self.message


class BudgetLedger:
    """
    BudgetLedger: Is the persisted cost-accounting state for paid
    post reads. It gates requests before they are issued (admit) and
    records the actual reads afterwards (record).

    Day rollover is lazy: every operation first applies rollover() for
    the current UTC day. Loading is lenient (corrupt or missing state
    starts fresh) while every mutation is persisted immediately and a
    failed write raises PersistenceError.
    """

    def __init__(
        self,
        path: "str | os.PathLike[str]",
        clock: "Callable[[], float]" = time.time,
    ) -> "None":
        self._store = JsonStore(path)
        self._clock = clock
        self._lock: "threading.Lock" = threading.Lock()

    def _now(self) -> "datetime":
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _read(self, now: "datetime") -> "LedgerState":
        try:
            doc = self._store.load()
            if doc is None:
                return default_state(now)
            return LedgerState.from_document(doc)  # type: ignore[arg-type]
        except (OSError, ValueError, KeyError, TypeError, AttributeError):
            logger.warning("ledger_state_unreadable", path=str(self._store.path))
            return default_state(now)

    def load(self) -> "LedgerState":
        now = self._now()
        return rollover(self._read(now), now)

    def status(self) -> "LedgerState":
        return self.load()

    def admit(self, estimated_units: "int") -> "Admission":
        """
        checks whether a request of roughly estimated_units reads would
        stay within both caps. Pure check: nothing is written.
        """
        state = self.load()
        t = state.tracking
        estimate = estimated_units * UNIT_PRICE_USD

        checks = (
            ("daily", "set-daily", state.daily_limit_usd, t.today_cost),
            ("monthly", "set-monthly", state.monthly_limit_usd, t.rolling_cost),
        )
        for window, command, limit, spent in checks:
            projected = round(spent + estimate, 6)
            if limit > 0 and projected > limit:
                reason = (
                    f"Request blocked: would exceed {window} budget "
                    f"(${spent:.2f} + ~${estimate:.2f} > ${limit:.2f} limit, "
                    f"over by ${projected - limit:.2f}). "
                    f"Use 'xsearch budget {command} 0' to remove the limit."
                )
                return Admission(allowed=False, reason=reason)

        return Admission(allowed=True)

    def record(self, actual_units: "int") -> "BudgetAlert | None":
        """
        adds actual_units reads to today's and the rolling totals,
        persists, and returns an alert if a cap is reached or close.
        """
        if actual_units < 0:
            raise ValueError("actual_units must be non-negative")

        with self._lock:
            state = self.load()
            t = state.tracking
            history = dict(t.history)
            history[t.today] = history.get(t.today, 0) + actual_units
            today_reads = t.today_reads + actual_units
            rolling_reads = t.rolling_reads + actual_units
            state = replace(
                state,
                tracking=replace(
                    t,
                    today_reads=today_reads,
                    today_cost=cost_of(today_reads),
                    rolling_reads=rolling_reads,
                    rolling_cost=cost_of(rolling_reads),
                    history=history,
                ),
            )
            self._store.save(state.to_document())

        logger.debug(
            "ledger_usage_recorded",
            reads=actual_units,
            today_cost=state.tracking.today_cost,
            rolling_cost=state.tracking.rolling_cost,
        )
        return _evaluate_alert(state)

    def set_daily_limit(self, limit_usd: "float") -> "LedgerState":
        return self._update_limits(daily_limit_usd=limit_usd)

    def set_monthly_limit(self, limit_usd: "float") -> "LedgerState":
        return self._update_limits(monthly_limit_usd=limit_usd)

    def _update_limits(self, **limits: "float") -> "LedgerState":
        for value in limits.values():
            if value < 0:
                raise ValueError("budget limit must be >= 0 (0 removes the limit)")
        with self._lock:
            state = replace(self.load(), **limits)
            self._store.save(state.to_document())
        logger.info("ledger_limits_updated", **limits)
        return state

    def reset(self) -> "LedgerState":
        """
        zeroes all accounting and stamps a new reset time. Configured
        caps and the warn threshold are kept.
        """
        with self._lock:
            now = self._now()
            state = replace(self.load(), tracking=default_state(now).tracking)
            self._store.save(state.to_document())
        logger.info("ledger_reset", last_reset=state.tracking.last_reset)
        return state


def _evaluate_alert(state: "LedgerState") -> "BudgetAlert | None":
    t = state.tracking
    windows = (
        ("daily", state.daily_limit_usd, t.today_cost),
        ("monthly", state.monthly_limit_usd, t.rolling_cost),
    )

    # exceeded beats approaching; daily is checked before monthly
    for window, limit, spent in windows:
        if limit > 0 and spent >= limit:
            return BudgetAlert(EXCEEDED, window, spent, limit)

    for window, limit, spent in windows:
        if limit > 0 and spent >= round(limit * state.warn_threshold, 6):
            return BudgetAlert(APPROACHING, window, spent, limit)

    return None
