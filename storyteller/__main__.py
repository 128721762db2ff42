"""
CLI entry point: ``python -m storyteller`` or the ``storyteller`` script.
"""

import asyncio
import logging
import os
import sys

from .bootstrap import serve
from .core.config import get_settings
from .core.logging import setup_logging
from .lifecycle.base import ExitCode


def main() -> None:
    settings = get_settings()
    setup_logging(settings)

    # Not asyncio.run(): its teardown waits on pending tasks and executor
    # threads, which is exactly what a forced shutdown must not do.
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    exit_code = loop.run_until_complete(serve(settings))

    if exit_code == ExitCode.SHUTDOWN_TIMEOUT:
        logging.shutdown()
        os._exit(int(exit_code))

    try:
        loop.run_until_complete(loop.shutdown_asyncgens())
    finally:
        asyncio.set_event_loop(None)
        loop.close()
    sys.exit(int(exit_code))


if __name__ == "__main__":
    main()
