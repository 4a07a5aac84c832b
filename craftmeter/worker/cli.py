"""CLI entry point for scheduled billing maintenance jobs."""

from __future__ import annotations

import argparse
import asyncio
from typing import TYPE_CHECKING

import structlog

from craftmeter.billing.sync import BillingEventSync
from craftmeter.billing.webhooks import WebhookProcessor
from craftmeter.config.logging import setup_logging
from craftmeter.config.settings import get_settings
from craftmeter.storage.database import get_engine
from craftmeter.storage.repositories.credits import CreditPool

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


async def expire_tokens(engine: AsyncEngine) -> int:
    """Expire purchased token blocks whose expiry date has passed."""
    count = await CreditPool(engine).expire_purchases()
    logger.info("expire_tokens_done", expired=count)
    return count


async def retry_webhooks(engine: AsyncEngine, limit: int = 10) -> dict[str, int]:
    """Re-dispatch failed webhook events that are still under the retry ceiling."""
    settings = get_settings()
    sync = BillingEventSync(
        engine,
        token_products=settings.token_products,
        expiry_days=settings.purchased_token_expiry_days,
    )
    outcomes = await WebhookProcessor(engine, sync).retry_failed(
        max_retries=settings.webhook_max_retries, limit=limit
    )
    logger.info("retry_webhooks_done", **outcomes)
    return outcomes


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="craftmeter-cron", description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("expire-tokens", help="expire purchased tokens past their expiry date")
    retry = commands.add_parser("retry-webhooks", help="retry failed webhook events")
    retry.add_argument("--limit", type=int, default=10, help="max events per run")
    return parser


async def _run(args: argparse.Namespace) -> None:
    engine = get_engine()
    try:
        if args.command == "expire-tokens":
            await expire_tokens(engine)
        else:
            await retry_webhooks(engine, limit=args.limit)
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> None:
    """Run one maintenance job and exit."""
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=True)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
