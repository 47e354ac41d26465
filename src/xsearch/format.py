from typing import Sequence

from xsearch.ledger import LedgerState
from xsearch.models import Record, UsageReport, UserProfile

SNIPPET_LENGTH = 200


def _compact(value: "int") -> "str":
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(value)


def format_record(
    record: "Record", index: "int | None" = None, full: "bool" = False
) -> "str":
    prefix = f"{index}. " if index is not None else ""
    text = record.text
    if not full and len(text) > SNIPPET_LENGTH:
        text = text[: SNIPPET_LENGTH - 3] + "..."

    m = record.metrics
    lines = [
        f"{prefix}@{record.username} ({record.name}) {record.created_at[:16]}",
        text,
        f"{_compact(m.likes)} likes | {_compact(m.retweets)} reposts | "
        f"{_compact(m.replies)} replies | {_compact(m.impressions)} views",
    ]
    if full and record.urls:
        lines.append("links: " + " ".join(record.urls))
    lines.append(record.url)
    return "\n".join(lines)


def format_results(
    records: "Sequence[Record]", query: "str", limit: "int" = 15
) -> "str":
    if not records:
        return f'No results for "{query}".'
    shown = records[:limit]
    blocks = [f'Results for "{query}" ({len(shown)} of {len(records)})']
    blocks.extend(format_record(r, i + 1) for i, r in enumerate(shown))
    return "\n\n".join(blocks)


def format_profile(user: "UserProfile", records: "Sequence[Record]") -> "str":
    header = (
        f"@{user.username} ({user.name})\n"
        f"{_compact(user.followers)} followers | {_compact(user.post_count)} posts"
    )
    if user.description:
        header += f"\n{user.description}"
    if not records:
        return header + "\n\nNo recent posts."
    return "\n\n".join([header, *(format_record(r, i + 1) for i, r in enumerate(records))])


def _limit(value: "float") -> "str":
    return f"${value:.2f}" if value > 0 else "none"


def format_ledger(state: "LedgerState") -> "str":
    t = state.tracking
    return "\n".join(
        [
            "Budget configuration",
            f"  Daily limit:   {_limit(state.daily_limit_usd)}",
            f"  Monthly limit: {_limit(state.monthly_limit_usd)}",
            f"  Warn at:       {round(state.warn_threshold * 100)}% of limit",
            "",
            f"Today ({t.today})",
            f"  Post reads: {t.today_reads:,}",
            f"  Est. cost:  ${t.today_cost:.2f}",
            "",
            f"Rolling 30 days (since {t.last_reset[:10]})",
            f"  Post reads: {t.rolling_reads:,}",
            f"  Est. cost:  ${t.rolling_cost:.2f}",
        ]
    )


def format_usage(report: "UsageReport") -> "str":
    label = "local tracking" if report.source == "local" else "X API"
    lines = [
        f"Usage from {label} ({report.period_start} -> {report.period_end})",
        f"Total reads: {report.total_reads:,}",
        f"Est. cost:   ${report.total_cost_usd:.2f}",
    ]
    if report.days:
        lines.append("")
        lines.append("Daily breakdown:")
        for day in report.days[-7:]:
            bar = "#" * min(-(-day.reads // 100), 20)
            lines.append(
                f"  {day.date}: {day.reads:,} reads (~${day.cost_usd:.2f}) {bar}"
            )
    return "\n".join(lines)


def format_research_markdown(
    query: "str", records: "Sequence[Record]", generated_at: "str"
) -> "str":
    """
    renders a search as a markdown research draft, one section per
    post with its text quoted and a link back to it.
    """
    lines = [
        f"# X research: {query}",
        "",
        f"*{generated_at} | {len(records)} posts | query: `{query}`*",
        "",
    ]
    if not records:
        lines.append("No results.")
    for record in records:
        m = record.metrics
        quoted = "\n".join(f"> {line}" for line in record.text.splitlines() or [""])
        lines.extend(
            [
                f"## @{record.username} ({record.name})",
                "",
                quoted,
                "",
                f"{_compact(m.likes)} likes | {_compact(m.retweets)} reposts | "
                f"{_compact(m.replies)} replies | {_compact(m.impressions)} views | "
                f"[{record.created_at[:10] or 'link'}]({record.url})",
                "",
            ]
        )
    return "\n".join(lines).rstrip() + "\n"


def format_usage_markdown(
    report: "UsageReport", state: "LedgerState | None" = None
) -> "str":
    lines = [
        "# X API Usage Report",
        "",
        f"**Period:** {report.period_start} -> {report.period_end}",
        f"**Total post reads:** {report.total_reads:,}",
        f"**Estimated cost:** ${report.total_cost_usd:.2f}",
    ]
    if report.days:
        lines.extend(
            [
                "",
                "## Daily Breakdown",
                "",
                "| Date | Post Reads | Est. Cost |",
                "|------|-----------|----------|",
            ]
        )
        lines.extend(
            f"| {d.date} | {d.reads:,} | ${d.cost_usd:.2f} |" for d in report.days
        )

    if state is not None and (state.daily_limit_usd > 0 or state.monthly_limit_usd > 0):
        t = state.tracking
        lines.extend(["", "## Budget Status", ""])
        if state.daily_limit_usd > 0:
            lines.append(
                f"- **Daily limit:** ${t.today_cost:.2f} / ${state.daily_limit_usd:.2f}"
            )
        if state.monthly_limit_usd > 0:
            lines.append(
                f"- **Monthly limit:** ${t.rolling_cost:.2f} / "
                f"${state.monthly_limit_usd:.2f}"
            )
    return "\n".join(lines) + "\n"
