import logging
import sys
import os
from datetime import datetime

import services.util as u

# ANSI colour codes
COLORS = {
    'DBG': '\033[36m',   # cyan
    'INF': '\033[32m',   # green
    'WRN': '\033[33m',   # yellow
    'ERR': '\033[31m',   # red
    'CRT': '\033[91m\033[1m',  # bright red, bold
    'RST': '\033[0m'
}

IS_TTY = sys.stdout.isatty()


# Secrets (bot tokens, OAuth secrets) to redact from all log output.
# Populated by Bridge.load_sensitive_values() once the config is read.
_sensitive: set[str] = set()


def register_sensitive(values: frozenset[str]) -> None:
    """Replace the set of strings that must never appear in log output."""
    _sensitive.clear()
    # Short values would mask common substrings
    _sensitive.update(v for v in values if len(v) >= 8)


class MaskingFilter(logging.Filter):
    """Redacts registered secrets from every record before emission."""

    def filter(self, record: logging.LogRecord) -> bool:
        if _sensitive:
            msg = record.getMessage()
            for secret in _sensitive:
                if secret in msg:
                    msg = msg.replace(secret, "***")
            record.msg = msg
            record.args = ()
        return True


class CustomFormatter(logging.Formatter):
    replaces = {
        'DEBUG': '[DBG]',
        'INFO': '[INF]',
        'WARNING': '[WRN]',
        'ERROR': '[ERR]',
        'CRITICAL': '[CRT]'
    }

    def format(self, record):
        timestamp = datetime.now().strftime('[%Y-%m-%d %H:%M:%S]')
        level = self.replaces.get(record.levelname, f'[{record.levelname}]')
        color_key = level[1:4]

        if IS_TTY and color_key in COLORS:
            colored_level = COLORS[color_key] + level + COLORS['RST']
        else:
            colored_level = level

        try:
            file = os.path.relpath(record.pathname)
        except ValueError:
            # different drive on Windows
            file = record.pathname

        return f"{timestamp} {colored_level} | {file}:{record.lineno} | {record.getMessage()}"


logger = logging.getLogger('whisker')
logger.setLevel(logging.DEBUG)
logger.addFilter(MaskingFilter())
logger.propagate = False


def setup(log_dir: str | None = None, console_level: str | None = None) -> str:
    """Attach the console and file handlers; returns the log file path.

    *log_dir* defaults to ``WHISKER_LOG_DIR`` (``logs``), *console_level*
    to ``WHISKER_LOG_LEVEL`` (``INFO``).  The file always gets DEBUG.
    Calling it again replaces the handlers.
    """
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    level_name = (console_level or u.get_env('WHISKER_LOG_LEVEL') or 'INFO').upper()
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(CustomFormatter())
    console_handler.setLevel(getattr(logging, level_name, logging.INFO))
    logger.addHandler(console_handler)

    log_dir = log_dir or u.get_log_path()
    os.makedirs(log_dir, exist_ok=True)
    # e.g. 20250915-150316061.log (millisecond precision)
    log_file = os.path.join(log_dir, datetime.now().strftime("%Y%m%d-%H%M%S%f")[:-3] + ".log")

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] [%(levelname)s] | %(filename)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    file_handler.setLevel(logging.DEBUG)
    logger.addHandler(file_handler)
    return log_file


def get_logger(name=None):
    """Return the shared ``whisker`` logger."""
    return logger
