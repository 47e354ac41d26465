import argparse
import json
import re
import sys
from datetime import datetime, timezone
from pathlib import Path

import structlog

from xsearch.cli import build_query
from xsearch.errors import (
    BudgetDenied,
    ConfigError,
    PersistenceError,
    RateLimited,
    XSearchError,
)
from xsearch.format import (
    format_ledger,
    format_profile,
    format_record,
    format_research_markdown,
    format_results,
    format_usage,
    format_usage_markdown,
)
from xsearch.pipeline import (
    DEFAULT_CACHE_TTL_SECONDS,
    QUICK_CACHE_TTL_SECONDS,
    Pipeline,
    SearchOptions,
)
from xsearch.watchlist import Watchlist

logger = structlog.get_logger()

QUALITY_MIN_LIKES = 10
QUICK_LIMIT = 10
WATCHLIST_CHECK_COUNT = 5


def _status(message: "str") -> "None":
    # progress and cost notes go to stderr, results to stdout
    print(message, file=sys.stderr)


def _dump(data: "object") -> "None":
    print(json.dumps(data, indent=2))


def _today() -> "str":
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def save_draft(directory: "str", query: "str", markdown: "str") -> "Path":
    """
    writes a markdown research draft named after the query and the
    current UTC date, and returns its path.
    """
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", query).strip("-")[:40].lower() or "search"
    path = Path(directory) / f"x-research-{slug}-{_today()}.md"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(markdown, encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"cannot save draft to {path}: {exc}") from exc
    return path


async def cmd_search(pipeline: "Pipeline", args: "argparse.Namespace") -> "int":
    query = build_query(
        args.query,
        args.from_user,
        no_replies=args.no_replies or args.quick,
        repost_filter=not args.keep_retweets,
    )
    limit = min(args.limit, QUICK_LIMIT) if args.quick else args.limit
    min_likes = args.min_likes
    if args.quality:
        min_likes = max(min_likes, QUALITY_MIN_LIKES)

    options = SearchOptions(
        pages=1 if args.quick else args.pages,
        sort=args.sort,
        since=args.since,
        min_likes=min_likes or None,
        min_impressions=args.min_impressions or None,
        cache_ttl_seconds=(
            QUICK_CACHE_TTL_SECONDS if args.quick else DEFAULT_CACHE_TTL_SECONDS
        ),
    )
    result = await pipeline.search(query, options)

    draft = format_research_markdown(query, result.records, _today())
    if args.json:
        _dump([r.to_dict() for r in result.records[:limit]])
    elif args.markdown:
        print(draft)
    else:
        print(format_results(result.records, query, limit))

    if args.save is not None:
        _status(f"Saved to {save_draft(args.save, query, draft)}")

    if result.cached:
        _status(f"(cached, {result.raw_count} posts)")
    if result.alert is not None:
        _status(str(result.alert))

    filtered = ""
    if len(result.records) != result.raw_count:
        filtered = f" -> {len(result.records)} after filters"
    _status(
        f"{result.raw_count} posts{filtered} | sorted by {args.sort} | "
        f"{options.pages} page(s) | billed {result.billed_reads} reads "
        f"(~${result.cost_usd:.2f})"
    )
    return 0


async def cmd_thread(pipeline: "Pipeline", args: "argparse.Namespace") -> "int":
    result = await pipeline.thread(args.post_id, pages=args.pages)
    if result.alert is not None:
        _status(str(result.alert))

    if args.json:
        _dump([r.to_dict() for r in result.records])
    elif not result.records:
        print("No posts found in thread.")
    else:
        print(f"Thread ({len(result.records)} posts)\n")
        print("\n\n".join(format_record(r, full=True) for r in result.records))
    return 0


async def cmd_profile(pipeline: "Pipeline", args: "argparse.Namespace") -> "int":
    result = await pipeline.profile(
        args.username, count=args.count, include_replies=args.replies
    )
    if result.alert is not None:
        _status(str(result.alert))

    if args.json:
        _dump(
            {
                "user": {
                    "id": result.user.id,
                    "username": result.user.username,
                    "name": result.user.name,
                    "followers": result.user.followers,
                },
                "posts": [r.to_dict() for r in result.records],
            }
        )
    else:
        print(format_profile(result.user, result.records))
    return 0


async def cmd_tweet(pipeline: "Pipeline", args: "argparse.Namespace") -> "int":
    record = await pipeline.fetch_by_id(args.post_id)
    if record is None:
        print("Post not found.")
        return 1

    if args.json:
        _dump(record.to_dict())
    else:
        print(format_record(record, full=True))
    return 0


async def cmd_list(pipeline: "Pipeline", args: "argparse.Namespace") -> "int":
    result = await pipeline.list_timeline(args.list_id, pages=args.pages)
    if result.alert is not None:
        _status(str(result.alert))

    if args.json:
        _dump([r.to_dict() for r in result.records[: args.limit]])
    else:
        print(format_results(result.records, f"list {args.list_id}", args.limit))
    return 0


async def cmd_watchlist(
    pipeline: "Pipeline", watchlist: "Watchlist", args: "argparse.Namespace"
) -> "int":
    if args.action == "add":
        note = " ".join(args.note) or None
        if watchlist.add(args.username, note):
            print(f"Added @{args.username.lstrip('@')} to watchlist.")
        else:
            print(f"@{args.username.lstrip('@')} already on watchlist.")
        return 0

    if args.action == "remove":
        if watchlist.remove(args.username):
            print(f"Removed @{args.username.lstrip('@')} from watchlist.")
        else:
            print(f"@{args.username.lstrip('@')} not found on watchlist.")
        return 0

    accounts = watchlist.accounts()
    if not accounts:
        print("Watchlist is empty. Add accounts with: xsearch watchlist add <username>")
        return 0

    if args.action != "check":
        print(f"Watchlist ({len(accounts)} accounts)\n")
        for acct in accounts:
            note = f" - {acct.note}" if acct.note else ""
            print(f"  @{acct.username}{note} (added {acct.added_at[:10]})")
        return 0

    failures = 0
    for acct in accounts:
        label = f" ({acct.note})" if acct.note else ""
        print(f"\n--- @{acct.username}{label} ---")
        try:
            result = await pipeline.profile(acct.username, count=WATCHLIST_CHECK_COUNT)
        except (BudgetDenied, RateLimited, ConfigError):
            raise
        except XSearchError as exc:
            # a missing or suspended account should not stop the rest
            logger.warning("watchlist_check_failed", username=acct.username)
            _status(f"  Error checking @{acct.username}: {exc}")
            failures += 1
            continue
        if not result.records:
            print("  No recent posts.")
        for record in result.records[:3]:
            print(format_record(record))
            print()
    return 1 if failures else 0


def cmd_cache(pipeline: "Pipeline", args: "argparse.Namespace") -> "int":
    if args.action == "clear":
        print(f"Cleared {pipeline.cache_clear()} cached entries.")
    else:
        print(f"Pruned {pipeline.cache_prune()} expired entries.")
    return 0


async def cmd_usage(pipeline: "Pipeline", args: "argparse.Namespace") -> "int":
    report = await pipeline.usage_report(days=args.days)
    if args.json:
        _dump(
            {
                "source": report.source,
                "period": {"start": report.period_start, "end": report.period_end},
                "totalPostReads": report.total_reads,
                "totalEstimatedCost": report.total_cost_usd,
                "dailyUsage": [
                    {"date": d.date, "postReads": d.reads, "estimatedCost": d.cost_usd}
                    for d in report.days
                ],
            }
        )
    elif args.markdown:
        print(format_usage_markdown(report, pipeline.ledger_status()))
    else:
        print(format_usage(report))
    return 0


def cmd_budget(pipeline: "Pipeline", args: "argparse.Namespace") -> "int":
    if args.action == "set-daily":
        pipeline.set_daily_limit(args.amount)
        print(
            "Daily budget limit removed."
            if args.amount == 0
            else f"Daily budget set to ${args.amount:.2f}"
        )
    elif args.action == "set-monthly":
        pipeline.set_monthly_limit(args.amount)
        print(
            "Monthly budget limit removed."
            if args.amount == 0
            else f"Monthly budget set to ${args.amount:.2f}"
        )
    elif args.action == "reset":
        pipeline.reset_ledger()
        print("Budget counters reset.")
    else:
        print(format_ledger(pipeline.ledger_status()))
    return 0


async def run_command(
    pipeline: "Pipeline", watchlist: "Watchlist", args: "argparse.Namespace"
) -> "int":
    """
    dispatches the parsed command and returns the process exit code.
    """
    if args.command == "search":
        return await cmd_search(pipeline, args)
    if args.command == "thread":
        return await cmd_thread(pipeline, args)
    if args.command == "profile":
        return await cmd_profile(pipeline, args)
    if args.command == "tweet":
        return await cmd_tweet(pipeline, args)
    if args.command == "list":
        return await cmd_list(pipeline, args)
    if args.command == "watchlist":
        return await cmd_watchlist(pipeline, watchlist, args)
    if args.command == "cache":
        return cmd_cache(pipeline, args)
    if args.command == "usage":
        return await cmd_usage(pipeline, args)
    if args.command == "budget":
        return cmd_budget(pipeline, args)
    raise ValueError(f"unknown command: {args.command}")
