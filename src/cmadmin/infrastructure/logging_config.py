"""
Logging configuration module.

Console output is colourised by level; an optional log file always receives
DEBUG records so provider round trips can be reconstructed afterwards.
"""

import logging
import sys
from pathlib import Path

RESET = "\033[0m"
DIM = "\033[2m"

LEVEL_COLORS = {
    logging.DEBUG: "\033[2m\033[37m",
    logging.INFO: "\033[36m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[1m\033[37m\033[41m",
}

# Chatty transport libraries underneath the PowerShell gateway.
NOISY_LOGGERS = ("winrm", "urllib3", "requests_ntlm", "requests_kerberos", "spnego")


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name and dims the logger name."""

    def __init__(self, fmt: str, datefmt: str = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return super().format(record)

        levelname, name = record.levelname, record.name
        color = LEVEL_COLORS.get(record.levelno, "")
        record.levelname = f"{color}{levelname:8}{RESET}"
        record.name = f"{DIM}{name}{RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers (file) must see the plain values.
            record.levelname, record.name = levelname, name


def _enable_windows_ansi() -> None:
    """Turn on virtual terminal processing so ANSI codes render on Windows."""
    if sys.platform != "win32":
        return
    try:
        import ctypes
        kernel32 = ctypes.windll.kernel32
        kernel32.SetConsoleMode(kernel32.GetStdHandle(-11), 7)
    except (AttributeError, OSError):
        pass  # Older consoles: plain output


def setup_logging(level: int = logging.INFO, log_file: str | None = None, use_colors: bool = True) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Console logging level
        log_file: Optional path to a log file (always DEBUG)
        use_colors: Colourise console output
    """
    _enable_windows_ansi()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter(
        fmt='[%(asctime)s] %(levelname)s [%(name)s] %(message)s',
        datefmt='%H:%M:%S',
        use_colors=use_colors and sys.stderr.isatty(),
    ))
    console_handler.setLevel(level)
    handlers: list[logging.Handler] = [console_handler]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(
            fmt='[%(asctime)s] %(levelname)-8s [%(name)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.debug("Logging initialised (console level %s)", logging.getLevelName(level))
    if log_file:
        logger.debug("Log file: %s", log_file)
