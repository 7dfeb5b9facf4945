from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os
from logging import Logger

# third party loggers that only speak up at WARNING unless LOG_LEVEL=debug
QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "uvicorn.access")

LEVEL_PREFIXES = {
    logging.CRITICAL: "⛔ ",
    logging.ERROR: "⛔ ",
    logging.WARNING: "⚠️ ",
}

ANSI_RESET = "\033[0m"
ANSI_COLORS: dict[str, str] = {
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "magenta": "\033[35m",
    "blue": "\033[34m",
    "white": "\033[37m",
}


def get_log_level() -> int:
    """Level from LOG_LEVEL ("debug", "info", "warning", "error"); INFO when unset or unknown."""
    name = os.getenv("LOG_LEVEL", "info").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


class TimezoneFormatter(logging.Formatter):
    """Timestamps in the configured zone, level prefix on warnings and errors."""

    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # malformed %-args from a third party logger, log the raw template instead
            message = str(record.msg)
        record.msg = LEVEL_PREFIXES.get(record.levelno, "") + message
        record.args = ()
        return super().format(record)


class ConsoleFormatter(TimezoneFormatter):
    """Wraps the line in the ANSI color named by the record's ``color`` attribute, if any."""

    def format(self, record) -> str:
        line = super().format(record)
        ansi = ANSI_COLORS.get(getattr(record, "color", None) or "", "")
        return f"{ansi}{line}{ANSI_RESET}" if ansi and line else line


class ColorLogger:
    """
    Logger wrapper whose log methods accept ``color=<name>``.

    Usage::

        logger.info("Document %s finished with %d parts", doc_id, n, color="green")
        logger.warning("Realtime connection dropped: %s", e)

    The color reaches the console only; the log file stays plain text.
    Everything else (setLevel, handlers, ...) is delegated to the wrapped logger.
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    def _log(self, level: int, msg, args, color: str | None, kwargs: dict) -> None:
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.DEBUG, msg, args, color, kwargs)

    def info(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.INFO, msg, args, color, kwargs)

    def warning(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.WARNING, msg, args, color, kwargs)

    def error(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.ERROR, msg, args, color, kwargs)

    def critical(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.CRITICAL, msg, args, color, kwargs)

    def exception(self, msg, *args, color: str | None = None, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, color, kwargs)

    def log(self, level: int, msg, *args, color: str | None = None, **kwargs):
        self._log(level, msg, args, color, kwargs)

    def __getattr__(self, name):
        return getattr(self._logger, name)


def setup_logging() -> ColorLogger:
    """
    Configure console and rotating file logging for the whole process.

    Environment:
        LOG_LEVEL: debug, info (default), warning or error.
        TIMEZONE: zone of the timestamps (default Europe/Prague).
        ROOT_DIR: the log file goes to ``<ROOT_DIR>/logs/app.log`` (default: working directory).
        LOG_MAX_BYTES / LOG_BACKUP_COUNT: rotation of the log file (10 MB, 5 files).

    Returns:
        ColorLogger: The application logger "parts_desk".
    """
    level = get_log_level()
    tz_name = os.getenv("TIMEZONE", "Europe/Prague")
    log_dir = os.path.join(os.getenv("ROOT_DIR") or os.getcwd(), "logs")
    os.makedirs(log_dir, exist_ok=True)

    line_format = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "file": {"()": TimezoneFormatter, "format": line_format, "datefmt": "%Y-%m-%d %H:%M:%S", "tz_name": tz_name},
            "console": {"()": ConsoleFormatter, "format": line_format, "datefmt": "%Y-%m-%d %H:%M:%S", "tz_name": tz_name},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "level": level,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "file",
                "level": level,
                "filename": os.path.join(log_dir, "app.log"),
                "maxBytes": int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024))),
                "backupCount": int(os.getenv("LOG_BACKUP_COUNT", "5")),
                "encoding": "utf-8",
            },
        },
        "root": {"handlers": ["console", "file"], "level": level},
    })

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level == logging.DEBUG else logging.WARNING)

    return ColorLogger(logging.getLogger("parts_desk"))
