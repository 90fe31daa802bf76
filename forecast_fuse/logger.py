# setup of forecast packaging logging
#
# Usage in a module:
# from forecast_fuse.logger import get_logger
# logger = get_logger(__name__, path="/my_forecast")
#
# def foo():
#     logger.info("Info message")
#
# Every logger shares the same line format. While a forecast is packaged,
# a ContainerLogHandler collects the lines, which are then stored as the
# 'history' attribute of the array container.

import logging
import os
import sys
import time
from logging import Logger
from datetime import datetime, timezone

LOG_FORMAT = "%(asctime)s %(levelname)-5s [{path}] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class UTCFormatter(logging.Formatter):
    converter = time.gmtime


def _formatter(path: str) -> logging.Formatter:
    return UTCFormatter(LOG_FORMAT.format(path=path), datefmt=DATE_FORMAT)


def get_logger(name: str, path: str = "", stream=None) -> Logger:
    """
    Create and return a non-propagating logger writing to `stream` (stderr by default).

    Parameters
    ----------
    name : str
        Name of the logger, usually the module name.
    path : str
        Context printed in brackets in every line, e.g. the forecast iteration.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Remove any existing handlers (to avoid duplicate logs)
    for h in list(logger.handlers):
        logger.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(_formatter(path))
    logger.addHandler(handler)
    return logger


def setup_logging(log_level: str = "INFO") -> logging.StreamHandler:
    """Configure the root logger for the command line tool."""
    log_level = os.getenv("LOG_LEVEL", log_level).upper()
    fmt = "%(asctime)sZ %(levelname)s %(name)s %(message)s"
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(UTCFormatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%S"))

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = [handler]
    return handler


class ContainerLogHandler(logging.Handler):
    """
    Buffers formatted records of a single packaging run.
    The buffered lines become the 'history' attribute of the array container.
    """

    def __init__(self, path: str = "", level=logging.INFO):
        super().__init__(level)
        self.path = path
        self.lines: list[str] = []
        self.setFormatter(_formatter(path))

    def emit(self, record):
        self.lines.append(self.format(record))

    @property
    def history(self) -> str:
        created = datetime.now(timezone.utc).strftime(DATE_FORMAT)
        header = f"{created} created by forecast_fuse"
        return "\n".join([header] + self.lines)

    def attach(self, logger: Logger) -> "ContainerLogHandler":
        # records below the effective level are never created
        self._saved_level = logger.level
        if logger.getEffectiveLevel() > self.level:
            logger.setLevel(self.level)
        logger.addHandler(self)
        return self

    def detach(self, logger: Logger):
        logger.removeHandler(self)
        logger.setLevel(getattr(self, '_saved_level', logger.level))
