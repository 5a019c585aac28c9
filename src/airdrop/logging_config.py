import logging
import logging.config
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("AIRDROP_LOG_FILE", "/tmp/airdrop.log")


def build_logging_config(level: str = LOG_LEVEL, log_file: str | None = LOG_FILE) -> dict:
    handlers = ["console", "file"] if log_file else ["console"]
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)-6s %(name)8s:%(lineno)d %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stderr,
            },
        },
        "loggers": {
            "airdrop": {
                "level": level.upper(),
                "handlers": handlers,
                "propagate": False,  # Keep 'airdrop' records out of the root logger
            },
            # Shut the log levels for libraries up
            "httpx": {
                "level": "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
            "httpcore": {
                "level": "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
            "solana": {
                "level": "WARNING",  # Only show warnings/errors from solana-py
                "handlers": handlers,
                "propagate": False,
            },
        },
        # Default for all other loggers
        "root": {
            "level": "WARNING",
            "handlers": handlers,
        },
    }
    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": log_file,
            "mode": "a",
        }
    return config


def setup_logging(level: str | None = None, log_file: str | None = LOG_FILE):
    """ Apply the logging configuration. """
    logging.config.dictConfig(build_logging_config(level or LOG_LEVEL, log_file))
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
