"""Process entry point: configure logging and run the tick scheduler."""

import threading
from typing import Optional

from .api import GameEconomy
from .config.logging import get_logger, setup_logging
from .config.settings import EconomySettings, get_settings


def initialize_application(settings: Optional[EconomySettings] = None) -> GameEconomy:
    """Set up logging from settings and build the economy."""
    settings = settings or get_settings()
    setup_logging(level=settings.log_level, format_type=settings.log_format)

    logger = get_logger(__name__)
    logger.info(
        "Application initialized successfully",
        tick_interval_minutes=settings.tick_interval_minutes,
        random_seed=settings.random_seed,
    )
    return GameEconomy(settings)


def main(stop: Optional[threading.Event] = None) -> None:
    """Run ticks until interrupted (or until `stop` is set)."""
    economy = initialize_application()
    logger = get_logger(__name__)
    stop = stop or threading.Event()

    economy.start_scheduler()
    try:
        stop.wait()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    finally:
        logger.info("Shutting down scheduler")
        economy.stop_scheduler()


if __name__ == "__main__":
    main()
