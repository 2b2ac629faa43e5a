"""
Logging setup shared by every harness command.

Plain ``logging`` with colorama colouring of the level name, plus a few
helpers for the banners printed between test phases.
"""

import logging
import sys

from colorama import Fore, Style, init

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

LEVEL_COLORS = {
    logging.DEBUG: Fore.MAGENTA,
    logging.INFO: Fore.BLUE,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}

logger = logging.getLogger("typesense_harness")


class ColorFormatter(logging.Formatter):
    """Formatter that colours the level name when writing to a terminal"""

    def __init__(self, fmt=LOG_FORMAT, use_color=True):
        super().__init__(fmt)
        self.use_color = use_color

    def format(self, record):
        if not self.use_color:
            return super().format(record)
        original = record.levelname
        color = LEVEL_COLORS.get(record.levelno, "")
        record.levelname = f"{color}{original}{Style.RESET_ALL}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def configure_logging(verbose: bool = False, stream=None):
    """Install the coloured handler on the harness logger"""
    init()
    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ColorFormatter(use_color=stream.isatty()))

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return logger


def banner(message: str, color=Fore.CYAN):
    print(f"\n{color}=== {message} ==={Style.RESET_ALL}", flush=True)


def success(message: str):
    print(f"{Fore.GREEN}✓ {message}{Style.RESET_ALL}", flush=True)


def failure(message: str):
    print(f"{Fore.RED}✗ {message}{Style.RESET_ALL}", flush=True)
