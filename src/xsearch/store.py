import json
import os
import tempfile
from pathlib import Path

from xsearch.errors import PersistenceError


class JsonStore:
    """
    JsonStore: Is a single JSON document persisted at a fixed path.

    Writes go to a temporary file in the same directory which is then
    moved over the target with os.replace, so a reader sees either the
    old or the new document, never a partial one. There is no
    cross-process locking: the store assumes a single owning process
    and concurrent writers resolve as last-writer-wins.
    """

    def __init__(self, path: "str | os.PathLike[str]") -> "None":
        self._path = Path(path)

    @property
    def path(self) -> "Path":
        return self._path

    def load(self) -> "object | None":
        """
        returns the parsed document, or None if it does not exist.
        Raises OSError or ValueError when the file is unreadable or
        corrupt; callers decide how lenient to be.
        """
        if not self._path.exists():
            return None
        with self._path.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    def save(self, document: "object") -> "None":
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(document, fh, indent=2)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"cannot write {self._path}: {exc}") from exc
