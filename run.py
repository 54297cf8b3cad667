#!/usr/bin/env python3
"""
Credit Core Entry Point

Builds the engine from the environment, starts the overdue payment
processor and stops it on SIGINT/SIGTERM within the shutdown deadline.
"""

import sys
import signal
import threading
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from credit_core.config import get_config
from credit_core.engine import build_engine
from credit_core.logging_config import setup_logging


def main() -> int:
    config = get_config()
    logger = setup_logging(config.log_level, "credit_core", config.log_format)

    engine = build_engine(config, logger=logger)
    shutdown = threading.Event()

    def request_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        shutdown.set()

    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGTERM, request_shutdown)

    try:
        engine.start()
        logger.info(f"Credit core running, sweeping every {config.scheduler_interval_seconds}s")
        while not shutdown.wait(1.0):
            pass
    except Exception:
        logger.exception("Error while running credit core")
        return 1
    finally:
        engine.stop(config.shutdown_timeout_seconds)
        if not engine.close():
            logger.warning("Overdue processor was still running at exit, storage left open")

    return 0


if __name__ == "__main__":
    sys.exit(main())
