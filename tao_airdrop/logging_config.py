import logging
import logging.config
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def build_logging_config(level: str = LOG_LEVEL, log_file: str | None = None) -> dict:
    handlers = ["console"]
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
            "tao_airdrop": {
                "level": level,
                "handlers": handlers,
                "propagate": False,  # Don't pass 'tao_airdrop' logs up to the root logger
            },
            # Only show warnings/errors from the chain libraries
            "bittensor": {
                "level": "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
            "async_substrate_interface": {
                "level": "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
        },
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
        handlers.append("file")
    return config


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(build_logging_config((level or LOG_LEVEL).upper(), log_file))
