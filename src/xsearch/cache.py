import hashlib
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

import structlog

from xsearch.errors import PersistenceError
from xsearch.models import Record
from xsearch.store import JsonStore

logger = structlog.get_logger()

# entries older than this are reclaimed by prune(), whatever TTL readers use
DEFAULT_RETENTION_SECONDS = 24 * 3600


@dataclass(frozen=True, slots=True)
class QuerySignature:
    """
    QuerySignature identifies a logical query for caching. Fields are
    compared literally: "a b" and "b a" are different signatures even
    when the remote endpoint would treat them the same.
    """

    query: "str"
    sort: "str" = "relevancy"
    since: "str" = ""
    pages: "int" = 1
    # sorted (name, value) pairs for any other parameter
    extra: "tuple[tuple[str, str], ...]" = ()

    @classmethod
    def build(
        cls,
        query: "str",
        sort: "str" = "relevancy",
        since: "str" = "",
        pages: "int" = 1,
        **extra: "object",
    ) -> "QuerySignature":
        return cls(
            query=query,
            sort=sort,
            since=since,
            pages=pages,
            extra=tuple(sorted((k, str(v)) for k, v in extra.items())),
        )

    @property
    def canonical(self) -> "str":
        params = [f"sort={self.sort}", f"pages={self.pages}", f"since={self.since}"]
        params.extend(f"{k}={v}" for k, v in self.extra)
        return self.query + "\n" + "&".join(params)

    @property
    def key(self) -> "str":
        return hashlib.sha256(self.canonical.encode("utf-8")).hexdigest()[:32]


class ResultCache:
    """
    ResultCache: Is a persisted map of query signatures to the record
    sets fetched for them.

    Freshness is decided at read time: get() takes the TTL the caller
    wants and an entry is a hit while its age is strictly below it (and
    below the TTL stored at write time, if any). Retention is separate:
    prune() drops entries older than the retention ceiling to reclaim
    space. A corrupt store behaves as an empty cache.
    """

    def __init__(
        self,
        path: "str | os.PathLike[str]",
        retention_seconds: "float" = DEFAULT_RETENTION_SECONDS,
        clock: "Callable[[], float]" = time.time,
    ) -> "None":
        self._store = JsonStore(path)
        self._retention = retention_seconds
        self._clock = clock
        self._lock: "threading.Lock" = threading.Lock()

    def _entries(self) -> "dict[str, dict]":
        try:
            doc = self._store.load()
        except (OSError, ValueError):
            logger.warning("cache_store_unreadable", path=str(self._store.path))
            return {}
        if not isinstance(doc, dict):
            return {}
        return {k: v for k, v in doc.items() if isinstance(v, dict)}

    def get(
        self, signature: "QuerySignature", ttl_seconds: "float"
    ) -> "tuple[Record, ...] | None":
        entry = self._entries().get(signature.key)
        if entry is None:
            return None

        try:
            created_at = float(entry["created_at"])
            stored_ttl = entry.get("ttl")
            if stored_ttl is not None:
                ttl_seconds = min(ttl_seconds, float(stored_ttl))
            if self._clock() - created_at >= ttl_seconds:
                return None
            return tuple(Record.from_dict(r) for r in entry["records"])
        except (KeyError, TypeError, ValueError):
            logger.warning("cache_entry_corrupt", key=signature.key)
            return None

    def set(
        self,
        signature: "QuerySignature",
        records: "Sequence[Record]",
        ttl_seconds: "float | None" = None,
    ) -> "None":
        """
        stores records under the signature with a fresh timestamp,
        replacing any previous entry.
        """
        with self._lock:
            entries = self._entries()
            entries[signature.key] = {
                "query": signature.canonical,
                "created_at": self._clock(),
                "ttl": ttl_seconds,
                "records": [r.to_dict() for r in records],
            }
            self._store.save(entries)

    def prune(self) -> "int":
        """
        removes entries older than the retention ceiling and returns
        how many were removed.
        """
        with self._lock:
            entries = self._entries()
            cutoff = self._clock() - self._retention
            kept: "dict[str, dict]" = {}
            for key, entry in entries.items():
                created_at = _created_at(entry)
                # entries with an unreadable timestamp are dropped too
                if created_at is not None and created_at >= cutoff:
                    kept[key] = entry
            removed = len(entries) - len(kept)
            if removed:
                self._store.save(kept)
        if removed:
            logger.debug("cache_pruned", count=removed)
        return removed

    def clear(self) -> "int":
        with self._lock:
            entries = self._entries()
            try:
                self._store.path.unlink(missing_ok=True)
            except OSError as exc:
                raise PersistenceError(
                    f"cannot remove {self._store.path}: {exc}"
                ) from exc
        return len(entries)


def _created_at(entry: "dict") -> "float | None":
    try:
        return float(entry["created_at"])
    except (KeyError, TypeError, ValueError):
        return None
