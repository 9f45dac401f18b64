import logging
import os
import sys

FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class LevelPrefixFormatter(logging.Formatter):
    PREFIXES = {
        logging.WARNING: "[warn] ",
        logging.ERROR: "[error] ",
        logging.CRITICAL: "[critical] ",
    }

    def format(self, record):
        return self.PREFIXES.get(record.levelno, "") + super().format(record)


def setup_logger(name: str, level: str | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel((level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(LevelPrefixFormatter(FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def get_logger(module: str) -> logging.Logger:
    """Child of the ``statusbot`` logger; handlers are attached once on the parent."""
    return logging.getLogger(f"statusbot.{module}")
