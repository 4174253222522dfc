import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

_LEVEL_ALIASES = {
    "T": "TRACE",
    "D": "DEBUG",
    "I": "INFO",
    "S": "SUCCESS",
    "W": "WARNING",
    "E": "ERROR",
    "C": "CRITICAL",
}

_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def setup_logger(level: str = "INFO", log_file: Optional[Union[str, Path]] = None) -> None:
    """
    Reset loguru sinks to stderr at `level`.

    `level` accepts full names or one-letter aliases (D, I, W, ...);
    "DISABLE" silences the package entirely.
    """
    level_str = _LEVEL_ALIASES.get(level.upper(), level.upper())

    logger.remove()
    if level_str == "DISABLE":
        logger.disable("ev_advisor")
        return

    logger.enable("ev_advisor")
    logger.add(sys.stderr, level=level_str, format=_FORMAT)
    if log_file:
        logger.add(str(log_file), level=level_str, rotation="1 MB", encoding="utf-8")
