import os
import re
from dataclasses import dataclass
from pathlib import Path

from xsearch.errors import ConfigError

X_BASE_URL = "https://api.x.com/2"

_TOKEN_LINE = re.compile(r"X_BEARER_TOKEN=[\"']?([^\"'\n]+)")


def _default_data_dir() -> "str":
    return str(Path.home() / ".local" / "share" / "xsearch")


def _default_env_file() -> "str":
    return str(Path.home() / ".config" / "env" / "global.env")


@dataclass
class Config:
    bearer_token: "str" = ""
    # directory holding budget.json, cache.json, watchlist.json and drafts/
    data_dir: "str" = ""
    # fallback dotenv-style file searched for X_BEARER_TOKEN
    env_file: "str" = ""
    base_url: "str" = X_BASE_URL
    log_level: "str" = "warning"
    # optional path for a Prometheus textfile dump after each command
    metrics_textfile: "str" = ""

    def __post_init__(self) -> "None":
        if not self.data_dir:
            self.data_dir = _default_data_dir()
        if not self.env_file:
            self.env_file = _default_env_file()

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            bearer_token=os.environ.get("X_BEARER_TOKEN", ""),
            data_dir=os.environ.get("XSEARCH_DATA_DIR", ""),
            env_file=os.environ.get("XSEARCH_ENV_FILE", ""),
            base_url=os.environ.get("XSEARCH_BASE_URL", X_BASE_URL),
        )

    @property
    def budget_path(self) -> "Path":
        return Path(self.data_dir) / "budget.json"

    @property
    def cache_path(self) -> "Path":
        return Path(self.data_dir) / "cache.json"

    @property
    def watchlist_path(self) -> "Path":
        return Path(self.data_dir) / "watchlist.json"

    @property
    def drafts_dir(self) -> "Path":
        return Path(self.data_dir) / "drafts"


def resolve_token(config: "Config") -> "str":
    """
    returns the bearer token from the environment first, then from
    the fallback env file. Raises ConfigError if neither has one.
    """
    if config.bearer_token:
        return config.bearer_token

    try:
        content = Path(config.env_file).read_text(encoding="utf-8")
    except OSError:
        content = ""

    match = _TOKEN_LINE.search(content)
    if match:
        return match.group(1)

    raise ConfigError(
        f"X_BEARER_TOKEN not found in env or {config.env_file}"
    )
