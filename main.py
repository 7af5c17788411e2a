import argparse
import asyncio
import logging
import platform
import signal
import sys

from repo_watch.config import load_settings
from repo_watch.orchestrator import MonitorContext, RepoMonitor
from repo_watch.store import MemoryCursorStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
)
log = logging.getLogger("main")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch GitHub repositories and push new activity.")
    parser.add_argument("--config", default="repo_watch.json", help="path to the JSON config file")
    parser.add_argument("--once", action="store_true", help="run a single poll cycle and exit")
    parser.add_argument("--memory", action="store_true", help="keep cursors in memory only (nothing persisted)")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> None:
    settings = load_settings(args.config)
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    store = MemoryCursorStore() if args.memory else None
    async with MonitorContext.from_settings(settings, store=store) as ctx:
        monitor = RepoMonitor(ctx)

        if args.once:
            report = await monitor.run_once()
            log.info("Cycle done in %dms with %d error(s)", report.duration_ms, report.errors)
            return

        loop = asyncio.get_running_loop()
        if platform.system() != "Windows":

            def _shutdown(sig: signal.Signals) -> None:
                log.info("Received %s, shutting down gracefully...", sig.name)
                monitor.stop()

            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _shutdown, sig)

            await monitor.run()

        else:
            try:
                await monitor.run()
            except (asyncio.CancelledError, KeyboardInterrupt):
                log.info("Shutting down...")
                monitor.stop()


def cli() -> None:
    asyncio.run(main(parse_args()))


if __name__ == "__main__":
    cli()
