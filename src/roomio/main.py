"""Main entry point for the Roomio guest portal."""

import argparse
import asyncio
import sys
from typing import Optional

import uvicorn

from roomio.config import configure_logging, get_logger, settings

logger = get_logger(__name__)


async def reap_once() -> int:
    """Expire idle guest sessions once and exit.

    Suitable for a scheduled job when the API's own reaper is not running.
    """
    from roomio.clients import create_document_store
    from roomio.services.session_reaper import SessionReaper

    store = create_document_store()
    try:
        expired = await SessionReaper(store).reap_once()
        logger.info("Reaper run complete", expired=len(expired))
        return 0
    except Exception as e:
        logger.error("Reaper run failed", error=str(e), exc_info=True)
        return 1
    finally:
        await store.close()


def serve() -> int:
    """Run the API server.

    Returns:
        Exit code
    """
    logger.info(
        "Starting Roomio guest portal",
        environment=settings.environment,
        store_backend=settings.store.backend,
        port=settings.api.port,
    )
    try:
        uvicorn.run(
            "roomio.api.server:app",
            host=settings.api.host,
            port=settings.api.port,
            log_config=None,
        )
    except Exception as e:
        logger.error("Fatal error in main application", error=str(e), exc_info=True)
        return 1
    return 0


def run_sync(argv: Optional[list[str]] = None) -> int:
    """Parse arguments and run the selected command.

    Returns:
        Exit code
    """
    parser = argparse.ArgumentParser(prog="roomio")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "reap"],
        help="serve the API (default) or expire idle sessions once",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="override LOG_LEVEL",
    )
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level)
    if args.command == "reap":
        return asyncio.run(reap_once())
    return serve()


if __name__ == "__main__":
    sys.exit(run_sync())
