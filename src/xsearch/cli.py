import argparse

from xsearch.config import Config
from xsearch.models import METRIC_NAMES

MAX_PAGES = 5

_ALIASES = {"s": "search", "t": "thread", "p": "profile", "wl": "watchlist", "u": "usage"}


def _non_negative_float(value: "str") -> "float":
    amount = float(value)
    if amount < 0:
        raise argparse.ArgumentTypeError("must be >= 0 (0 removes the limit)")
    return amount


def _build_parser() -> "argparse.ArgumentParser":
    parser = argparse.ArgumentParser(
        prog="xsearch",
        description="Budget-aware X search with local caching",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: warning)",
    )
    parser.add_argument(
        "--metrics.textfile",
        dest="metrics_textfile",
        default="",
        help="Write Prometheus metrics to this file after the command",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", aliases=["s"], help="Search recent posts")
    search.add_argument("query", nargs="+")
    search.add_argument(
        "--sort", default="likes", choices=[*METRIC_NAMES, "recent"]
    )
    search.add_argument("--since", help="1h, 3h, 1d, 7d or an ISO 8601 timestamp")
    search.add_argument("--min-likes", type=int, default=0)
    search.add_argument("--min-impressions", type=int, default=0)
    search.add_argument("--pages", type=int, default=1, help="1-5 (default: 1)")
    search.add_argument("--limit", type=int, default=15)
    search.add_argument(
        "--quick",
        action="store_true",
        help="1 page, max 10 results, no replies, 1h cache",
    )
    search.add_argument("--from", dest="from_user", help="Only posts by this user")
    search.add_argument(
        "--quality", action="store_true", help="Drop posts with fewer than 10 likes"
    )
    search.add_argument("--no-replies", action="store_true")
    search.add_argument(
        "--no-retweets",
        dest="keep_retweets",
        action="store_true",
        help="Do not add the automatic -is:retweet filter",
    )
    search.add_argument("--json", action="store_true")
    search.add_argument("--markdown", action="store_true", help="Markdown output")
    search.add_argument(
        "--save",
        nargs="?",
        const="",
        default=None,
        metavar="DIR",
        help="Save a markdown research draft (default: <data dir>/drafts)",
    )

    thread = sub.add_parser("thread", aliases=["t"], help="Fetch a conversation")
    thread.add_argument("post_id")
    thread.add_argument("--pages", type=int, default=2)
    thread.add_argument("--json", action="store_true")

    profile = sub.add_parser("profile", aliases=["p"], help="Recent posts of a user")
    profile.add_argument("username")
    profile.add_argument("--count", type=int, default=20)
    profile.add_argument("--replies", action="store_true")
    profile.add_argument("--json", action="store_true")

    post = sub.add_parser("tweet", help="Fetch a single post")
    post.add_argument("post_id")
    post.add_argument("--json", action="store_true")

    timeline = sub.add_parser("list", help="Recent posts from an X list")
    timeline.add_argument("list_id")
    timeline.add_argument("--pages", type=int, default=1)
    timeline.add_argument("--limit", type=int, default=15)
    timeline.add_argument("--json", action="store_true")

    watch = sub.add_parser("watchlist", aliases=["wl"], help="Manage the watchlist")
    watch_sub = watch.add_subparsers(dest="action")
    add = watch_sub.add_parser("add")
    add.add_argument("username")
    add.add_argument("note", nargs="*")
    remove = watch_sub.add_parser("remove", aliases=["rm"])
    remove.add_argument("username")
    watch_sub.add_parser("check")

    cache = sub.add_parser("cache", help="Prune or clear the result cache")
    cache.add_argument("action", nargs="?", default="prune", choices=["prune", "clear"])

    usage = sub.add_parser("usage", aliases=["u"], help="Show API usage")
    usage.add_argument("--days", type=int, default=7)
    usage.add_argument("--json", action="store_true")
    usage.add_argument("--markdown", action="store_true")

    budget = sub.add_parser("budget", help="Show or change spending limits")
    budget_sub = budget.add_subparsers(dest="action")
    daily = budget_sub.add_parser("set-daily")
    daily.add_argument("amount", type=_non_negative_float)
    monthly = budget_sub.add_parser("set-monthly")
    monthly.add_argument("amount", type=_non_negative_float)
    budget_sub.add_parser("reset")

    return parser


def parse_args(
    argv: "list[str] | None" = None,
) -> "tuple[Config, argparse.Namespace]":
    args = _build_parser().parse_args(argv)
    args.command = _ALIASES.get(args.command, args.command)
    if getattr(args, "action", None) == "rm":
        args.action = "remove"
    if hasattr(args, "pages"):
        args.pages = max(min(args.pages, MAX_PAGES), 1)

    config = Config.from_env()
    config.log_level = args.log_level
    config.metrics_textfile = args.metrics_textfile
    if getattr(args, "save", None) == "":
        args.save = str(config.drafts_dir)
    return config, args


def build_query(
    terms: "list[str]",
    from_user: "str | None" = None,
    no_replies: "bool" = False,
    repost_filter: "bool" = True,
) -> "str":
    """
    joins the search terms and appends the default noise filters:
    reposts are excluded unless the query mentions them or
    repost_filter is off.
    """
    query = " ".join(terms)
    if from_user and "from:" not in query.lower():
        query += f" from:{from_user.lstrip('@')}"
    if repost_filter and "is:retweet" not in query:
        query += " -is:retweet"
    if no_replies and "is:reply" not in query:
        query += " -is:reply"
    return query
