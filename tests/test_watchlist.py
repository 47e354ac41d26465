import pytest

from xsearch.errors import PersistenceError
from xsearch.watchlist import Watchlist


class TestWatchlist:
    def test_add_and_list(self, tmp_path, clock) -> "None":
        watchlist = Watchlist(tmp_path / "watchlist.json", clock=clock)
        assert watchlist.add("@alice", "ml research") is True

        accounts = watchlist.accounts()
        assert len(accounts) == 1
        assert accounts[0].username == "alice"
        assert accounts[0].note == "ml research"
        assert accounts[0].added_at.startswith("2026-03-10T12:00")

    def test_duplicates_are_case_insensitive(self, tmp_path) -> "None":
        watchlist = Watchlist(tmp_path / "watchlist.json")
        watchlist.add("Alice")
        assert watchlist.add("alice") is False
        assert len(watchlist.accounts()) == 1

    def test_remove(self, tmp_path) -> "None":
        watchlist = Watchlist(tmp_path / "watchlist.json")
        watchlist.add("alice")
        watchlist.add("bob")
        assert watchlist.remove("ALICE") is True
        assert watchlist.remove("carol") is False
        assert [a.username for a in watchlist.accounts()] == ["bob"]

    def test_corrupt_file_reads_as_empty(self, tmp_path) -> "None":
        path = tmp_path / "watchlist.json"
        path.write_text("nope")
        assert Watchlist(path).accounts() == []

    def test_corrupt_file_is_not_overwritten(self, tmp_path) -> "None":
        path = tmp_path / "watchlist.json"
        path.write_text('{"accounts": [{"username": "alice"')
        watchlist = Watchlist(path)

        with pytest.raises(PersistenceError):
            watchlist.add("bob")
        with pytest.raises(PersistenceError):
            watchlist.remove("alice")
        assert path.read_text() == '{"accounts": [{"username": "alice"'
