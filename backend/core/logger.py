import os
import sys
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

# keyword arguments understood by logging itself, everything else is context
_LOGGING_KWARGS = ("exc_info", "stack_info", "stacklevel", "extra")


def setup_logging():
    """Configure root loggers (app + uvicorn + fastapi)"""
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    if log_level not in LOG_LEVELS:
        print(f"[Logger] Invalid LOG_LEVEL '{log_level}', defaulting to INFO")
        log_level = "info"

    level = getattr(logging, log_level.upper())
    formatter = ColorFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [console_handler]

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.setLevel(level)
        uvicorn_logger.handlers = [console_handler]
        uvicorn_logger.propagate = False

    # httpx logs every request at INFO, which drowns the paging logs
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    print(f"[Logger] Initialized ({log_level.upper()} mode, level={logging.getLevelName(level)})")


class Logger:
    """
    Module logger. Extra keyword arguments are rendered as context:

        logger.info("Fetched deals", pipeline_id=3, count=120)
        -> "Fetched deals [pipeline_id=3 count=120]"
    """

    def __init__(self, name: str = "app"):
        self.logger = logging.getLogger(name)

    @staticmethod
    def _split(msg, kwargs):
        log_kwargs = {k: kwargs.pop(k) for k in _LOGGING_KWARGS if k in kwargs}
        if kwargs:
            context = " ".join(f"{k}={v}" for k, v in kwargs.items())
            msg = f"{msg} [{context}]"
        return msg, log_kwargs

    def debug(self, msg, *args, **kwargs):
        msg, log_kwargs = self._split(msg, kwargs)
        self.logger.debug(msg, *args, **log_kwargs)

    def info(self, msg, *args, **kwargs):
        msg, log_kwargs = self._split(msg, kwargs)
        self.logger.info(msg, *args, **log_kwargs)

    def warning(self, msg, *args, **kwargs):
        msg, log_kwargs = self._split(msg, kwargs)
        self.logger.warning(msg, *args, **log_kwargs)

    def error(self, msg, *args, **kwargs):
        msg, log_kwargs = self._split(msg, kwargs)
        self.logger.error(msg, *args, **log_kwargs)

    def exception(self, msg, *args, **kwargs):
        msg, log_kwargs = self._split(msg, kwargs)
        self.logger.exception(msg, *args, **log_kwargs)


class ColorFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        message = super().format(record)
        return f"{color}{message}{self.RESET}"
