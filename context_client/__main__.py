"""Entry point: python -m context_client [--config path] [--log-level LEVEL]."""

import argparse
import asyncio
import logging
import signal

from .capture import ScreenCapture
from .classifier import ContextClassifier
from .config import load_config
from .gate import DecisionGate
from .jobs import JobPoller, SunoBackend
from .scheduler import ContextScheduler
from .sender import EventSender

log = logging.getLogger("context_client")


async def run(config: dict) -> None:
    capture = ScreenCapture.from_config(config)
    classifier = ContextClassifier(config)
    backend = SunoBackend(config["secrets"]["sunoApiKey"],
                          prefer_stream=config["jobs"].get("preferStream", False))
    sender = EventSender.from_config(config)

    scheduler = ContextScheduler(
        capture=capture.capture,
        classify=classifier.classify,
        poller=JobPoller.from_config(backend, config),
        emit=sender.emit,
        gate=DecisionGate.from_config(config),
        interval=config["capture"]["intervalMs"] / 1000,
        base_request=config.get("generation"),
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows: fall back to KeyboardInterrupt

    try:
        await scheduler.run(stop)
    finally:
        await scheduler.shutdown()
        await classifier.shutdown()
        await backend.shutdown()
        sender.close()


def main() -> None:
    parser = argparse.ArgumentParser(prog="context_client",
                                     description=__doc__)
    parser.add_argument("--config", help="path to a JSON config file")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(args.config)
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        log.info("interrupted")


if __name__ == "__main__":
    main()
