"""Logging configuration for the autofish bot.

Two handlers are attached to the root logger:

1. **Console** -- :class:`SafeStreamHandler`, which never lets an emoji in
   a log line crash the bot on a narrow Windows code page.
2. **File** -- :class:`CompressedRotatingFileHandler` writing to
   ``logs/autofish.log`` (10 MiB per file, 5 gzip-compressed backups).

Usage::

    from core.logging_setup import setup_logging
    setup_logging("DEBUG")
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
DEFAULT_LOG_FILE = os.path.join("logs", "autofish.log")

# Third-party loggers that are far too chatty at DEBUG.
_NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")


class CompressedRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler whose rotated generations are gzip files."""

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove the original."""
        with open(source, 'rb') as f_in, gzip.open(dest, 'wb') as f_out:
            shutil.copyfileobj(f_in, f_out)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that degrades unencodable characters instead of failing.

    Catch messages contain fish emoji; on consoles that cannot represent
    them the line is written with replacement characters.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            try:
                self.stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                encoding = getattr(self.stream, "encoding", None) or "ascii"
                safe_msg = msg.encode(encoding, errors='replace').decode(encoding)
                self.stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = DEFAULT_LOG_FILE) -> None:
    """Configure the root logger with console and (optionally) file output.

    Calling it again replaces the handlers installed by the previous call,
    so tests and the CLI can both invoke it safely.

    Args:
        log_level: Level name such as ``"DEBUG"`` or ``"INFO"``.  Unknown
            names fall back to ``INFO``.
        log_file: Destination of the rotating log file, ``None`` for
            console-only logging.
    """
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    handlers = [SafeStreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            CompressedRotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8',
            )
        )

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
