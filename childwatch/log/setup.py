import logging
import sys
from typing import Optional

from childwatch.config import effective_settings as config
from childwatch.log.handler import LokiHandler


class MainFormatter(logging.Formatter):
    """Console formatter that tags every record with its logger name and process id."""

    def __init__(self) -> None:
        super().__init__('%(asctime)s - %(levelname)-8s - [%(name)s:%(process)d] - %(message)s')


def setup_logging(console_level: Optional[int] = None) -> None:
    """
    Configures the root logger for childwatch.
    This sets up handlers for console and optionally Loki,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output, defaults to `LOG_LEVEL`.
    """
    if console_level is None:
        console_level = logging.getLevelName(config.LOG_LEVEL)
        if not isinstance(console_level, int):
            console_level = logging.INFO

    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    # --- Console Handler ---
    # stderr keeps the watchdog's reaping messages visible after the parent's stdout is gone.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- Loki Handler (conditional) ---
    if config.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=config.LOKI_URL, org_id=config.LOKI_ORG_ID)
            loki_handler.setLevel(logging.INFO)
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
