"""
This module contains the default configuration settings for childwatch.
It defines the watchdog process settings, logging configuration, and the
paths used to load runtime overrides.
"""

import os
import sys
import pathlib
from dotenv import load_dotenv


def load_environment(dotenv_path=None) -> bool:
    """
    Loads variables from a .env file into the process environment.

    Variables already set in the environment win over the file, so importing
    childwatch never rewrites the host application's configuration.
    """
    return load_dotenv(dotenv_path, override=False)


load_environment()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("CHILDWATCH_BASE_DIR", pathlib.Path.cwd()))
OVERRIDES_JSON_PATH = pathlib.Path(
    os.getenv("CHILDWATCH_OVERRIDES_PATH", BASE_DIR / "childwatch_overrides.json")
)

#* --- Watchdog Settings ---
# Name used to build the watchdog's process title: "<PROGRAM_NAME>-supervisor".
PROGRAM_NAME = os.getenv("CHILDWATCH_PROGRAM_NAME") or pathlib.Path(sys.argv[0] if sys.argv else "python").stem or "python"
WATCHDOG_TITLE_SUFFIX = "-supervisor"
# Close every inherited descriptor except stdio, the command pipe and open logging streams in the watchdog.
WATCHDOG_CLOSE_FDS = _env_flag("CHILDWATCH_CLOSE_FDS", "True")

#* --- Logging Settings ---
LOG_LEVEL = os.getenv("CHILDWATCH_LOG_LEVEL", "INFO").upper()
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 10  # seconds

# Grafana Loki (for observability)
LOKI_ENABLED = _env_flag("LOKI_ENABLED", "False")
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- MODIFIABLE SETTINGS (Changeable via the overrides file) ---
MODIFIABLE_SETTINGS = {
    "PROGRAM_NAME", "WATCHDOG_CLOSE_FDS",
    "LOG_LEVEL", "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL",
}
