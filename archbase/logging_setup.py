"""
Logging Setup Module

Configures the run log: an append-only, timestamped file at a fixed path in
production, standard output only in testing mode.
"""

import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from archbase.config import LOG_FILE, testing_mode

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured_path = None


def configure_logging(log_path: str = LOG_FILE, level: int = logging.INFO) -> str:
    """
    Configure the root logger for one installer run.

    Args:
        log_path: Path of the log file to append to
        level: Logging level for the root logger

    Returns:
        str: The file actually written to, or "<stdout>" in testing mode
    """
    global _configured_path

    if _configured_path is not None:
        return _configured_path

    root = logging.getLogger()
    root.setLevel(level)

    if testing_mode():
        handler = RichHandler(console=Console(file=sys.stdout),
                              show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(handler)
        _configured_path = "<stdout>"
        return _configured_path

    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        chosen = log_path
    except OSError:
        # /tmp can be read-only on some live media
        chosen = str(Path.cwd() / Path(log_path).name)
        file_handler = logging.FileHandler(chosen, mode="a", encoding="utf-8")

    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(file_handler)
    _configured_path = chosen

    logging.getLogger(__name__).info("Logging to %s", chosen)
    return chosen
