import argparse
import asyncio
import json
import logging
import time
from typing import List, Optional

from livefeed.core.errors import ConfirmationRequiredError, LiveFeedError
from livefeed.delivery.file_delivery import FileFeedObserver
from livefeed.services.config import load_config
from livefeed.services.logging import setup_logging
from livefeed.workflows import LiveFeedApp, create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="livefeed", description="Threaded live feed")
    parser.add_argument("--config", help="Path to config.yml")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the live feed pipeline")
    run.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    run.add_argument("--maintenance-interval", type=float, default=60.0)
    run.add_argument("--output", default="output", help="Directory for the published items file")

    sub.add_parser("maintain", help="Run one maintenance cycle")
    sub.add_parser("stats", help="Print live feed and archive statistics")

    search = sub.add_parser("search", help="Search archived stories")
    search.add_argument("term")
    search.add_argument("--limit", type=int, default=20)

    clear = sub.add_parser("clear-history", help="Delete every archived story")
    clear.add_argument("--confirm", action="store_true")

    return parser


async def run_feed(app: LiveFeedApp, duration: Optional[float], maintenance_interval: float, output: str) -> None:
    restored = await app.pipeline.restore()
    logger.info(f"Restored {restored} live items")

    started = await app.pipeline.start(config=app.config.pipeline, observer=FileFeedObserver(output))
    if not started:
        return

    deadline = time.monotonic() + duration if duration else None
    try:
        # External trigger for maintenance
        while deadline is None or time.monotonic() < deadline:
            wait = maintenance_interval
            if deadline is not None:
                wait = min(wait, max(0.0, deadline - time.monotonic()))
            await asyncio.sleep(wait)
            await app.maintenance.run_cycle()
    finally:
        await app.pipeline.stop()


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        config = load_config(args.config)
        logging.getLogger().setLevel(config.LOG_LEVEL)

        app = create_app(config)
        await app.initialize()

        if args.command == "run":
            await run_feed(app, args.duration, args.maintenance_interval, args.output)

        elif args.command == "maintain":
            await app.pipeline.restore()
            report = await app.maintenance.run_cycle()
            print(json.dumps(report.__dict__, indent=2))

        elif args.command == "stats":
            await app.pipeline.restore()
            stats = {
                "live_feed": await app.maintenance.stats(),
                "history": await app.history.stats(),
            }
            print(json.dumps(stats, indent=2, default=str))

        elif args.command == "search":
            for story in await app.history.search(args.term, limit=args.limit):
                print(f"{story.completed_at:%Y-%m-%d %H:%M}  [{story.priority}/{story.tone}]  {story.title}")

        elif args.command == "clear-history":
            deleted = await app.history.clear_all(confirm=args.confirm)
            print(f"Deleted {deleted} stories")

    except ConfirmationRequiredError as e:
        logger.error(f"{e}, pass --confirm")
        return 2
    except LiveFeedError as e:
        logger.error(e.user_message())
        return 1

    return 0


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
