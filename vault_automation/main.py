from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from vault_automation.app import build_engine
from vault_automation.config import load_settings
from vault_automation.logging_utils import configure_logging


logger = logging.getLogger(__name__)


async def run() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    application = build_engine(settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    await application.start()
    logger.info("vault automation running", extra={"event": "service_started"})
    try:
        await stop_event.wait()
    finally:
        await application.stop()
        logger.info("vault automation stopped", extra={"event": "service_stopped"})


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
