import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import structlog

from xsearch.errors import PersistenceError
from xsearch.store import JsonStore

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class WatchedAccount:
    username: "str"
    note: "str | None" = None
    # ISO timestamp
    added_at: "str" = ""


class Watchlist:
    """
    Watchlist: Is the persisted list of monitored accounts. Usernames
    are stored without a leading "@" and compared case-insensitively.

    Listing an unreadable file yields no accounts, but add and remove
    refuse to overwrite it.
    """

    def __init__(
        self,
        path: "str | os.PathLike[str]",
        clock: "Callable[[], float]" = time.time,
    ) -> "None":
        self._store = JsonStore(path)
        self._clock = clock

    def _read(self) -> "list[WatchedAccount]":
        doc = self._store.load()
        raw = (doc or {}).get("accounts") or []  # type: ignore[union-attr]
        return [
            WatchedAccount(
                username=a["username"],
                note=a.get("note"),
                added_at=a.get("addedAt", ""),
            )
            for a in raw
        ]

    def accounts(self) -> "list[WatchedAccount]":
        try:
            return self._read()
        except (OSError, ValueError, KeyError, TypeError, AttributeError):
            logger.warning("watchlist_unreadable", path=str(self._store.path))
            return []

    def _editable(self) -> "list[WatchedAccount]":
        try:
            return self._read()
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("watchlist_edit_refused", path=str(self._store.path))
            raise PersistenceError(
                f"watchlist {self._store.path} is unreadable; fix or remove it first"
            ) from exc

    def _save(self, accounts: "list[WatchedAccount]") -> "None":
        self._store.save(
            {
                "accounts": [
                    {"username": a.username, "note": a.note, "addedAt": a.added_at}
                    for a in accounts
                ]
            }
        )

    def add(self, username: "str", note: "str | None" = None) -> "bool":
        """
        adds the account and returns True, or False if it was already
        on the list.
        """
        username = username.lstrip("@")
        accounts = self._editable()
        if any(a.username.lower() == username.lower() for a in accounts):
            return False

        added_at = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
        accounts.append(WatchedAccount(username, note or None, added_at))
        self._save(accounts)
        return True

    def remove(self, username: "str") -> "bool":
        username = username.lstrip("@").lower()
        accounts = self._editable()
        kept = [a for a in accounts if a.username.lower() != username]
        if len(kept) == len(accounts):
            return False
        self._save(kept)
        return True
