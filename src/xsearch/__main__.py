import asyncio
import functools
import sys

import structlog
from prometheus_client import CollectorRegistry, write_to_textfile

from xsearch.cache import ResultCache
from xsearch.cli import parse_args
from xsearch.commands import run_command
from xsearch.config import Config, resolve_token
from xsearch.errors import BudgetDenied, RateLimited, XSearchError
from xsearch.ledger import BudgetLedger
from xsearch.logging import setup_logging
from xsearch.metrics import MetricsUpdater
from xsearch.pipeline import Pipeline
from xsearch.provider.x import XClient
from xsearch.watchlist import Watchlist

logger = structlog.get_logger()


def build_pipeline(config: "Config", metrics: "MetricsUpdater") -> "Pipeline":
    """
    wires the X client, ledger and cache from configuration. The
    bearer token is only resolved when the first request is made, so
    cache and budget commands work without credentials.
    """
    client = XClient(
        token_provider=functools.partial(resolve_token, config),
        base_url=config.base_url,
    )
    return Pipeline(
        source=client,
        ledger=BudgetLedger(config.budget_path),
        cache=ResultCache(config.cache_path),
        metrics=metrics,
    )


def main(argv: "list[str] | None" = None) -> "int":
    config, args = parse_args(argv)
    setup_logging(config.log_level)

    registry = CollectorRegistry()
    pipeline = build_pipeline(config, MetricsUpdater(registry=registry))
    watchlist = Watchlist(config.watchlist_path)

    async def _run() -> "int":
        try:
            return await run_command(pipeline, watchlist, args)
        finally:
            await pipeline.close()

    try:
        return asyncio.run(_run())
    except BudgetDenied as exc:
        print(exc.reason, file=sys.stderr)
        return 1
    except RateLimited as exc:
        print(f"Error: {exc}. Wait and resubmit.", file=sys.stderr)
        return 1
    except XSearchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if config.metrics_textfile:
            write_to_textfile(config.metrics_textfile, registry)
            logger.debug("metrics_written", path=config.metrics_textfile)


if __name__ == "__main__":
    raise SystemExit(main())
