"""Standalone reply worker.

Runs the worker pool outside the API process (set ``RUN_WORKERS=false`` on
the API when using it). ``--once`` drains the ready jobs and exits;
``--dead-letters`` prints the dead-letter list.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from dotenv import load_dotenv

from autoreply.app_logging import init_logging
from autoreply.config import Settings
from autoreply.runtime import Runtime

logger = logging.getLogger("autoreply.worker")


def _echo(message: str) -> None:
    sys.stdout.write(f"{message}\n")


async def _drain(runtime: Runtime) -> int:
    handled = 0
    while True:
        lease = await runtime.queue.claim(timeout=0)
        if lease is None:
            return handled
        await runtime.pool.handle(lease)
        handled += 1


async def _serve(runtime: Runtime) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - platform without signals
            pass
    runtime.pool.start()
    await stop.wait()
    logger.info("shutdown requested; waiting for in-flight jobs")


async def _run(args: argparse.Namespace, settings: Settings) -> None:
    runtime = Runtime.build(settings)
    try:
        if args.dead_letters:
            for letter in await runtime.queue.dead_letters():
                _echo(json.dumps(letter.to_dict()))
        elif args.once:
            handled = await _drain(runtime)
            _echo(f"handled {handled} job(s)")
        else:
            await _serve(runtime)
    finally:
        await runtime.stop()


def main(argv=None):
    load_dotenv()
    parser = argparse.ArgumentParser(description="Run the automated reply worker pool")
    parser.add_argument(
        "--concurrency", type=int, default=None, help="Number of workers (WORKER_CONCURRENCY)"
    )
    parser.add_argument(
        "--once", action="store_true", help="Process the ready jobs and exit"
    )
    parser.add_argument(
        "--dead-letters", action="store_true", help="Print dead-lettered jobs and exit"
    )
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.concurrency is not None:
        if args.concurrency < 1:
            parser.error("--concurrency must be at least 1")
        settings.worker_concurrency = args.concurrency

    init_logging()
    asyncio.run(_run(args, settings))


if __name__ == "__main__":
    main()
