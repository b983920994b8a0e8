"""
Logging Utilities

Sets up the per-module loggers used across the registration pipeline and
provides a helper that routes chatty library output (Open3D prints progress
straight to stdout) into a logger instead of the console.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union
from contextlib import contextmanager, redirect_stdout, redirect_stderr


def setup_logger(name: str,
                 level: Union[int, str] = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level as int or name ("DEBUG", "INFO", ...)
        log_file: Optional log file path. If provided, logs are also written there.
            Worker processes log their process name so interleaved loop logs
            can be told apart.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger


def configure_package_logging(level: Union[int, str] = logging.INFO,
                              log_file: Optional[str] = None) -> None:
    """Apply a level (and optional log file) to every logger of this package.

    Module loggers are created at import time with the default level; the CLI
    calls this once the configuration is known.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    prefix = __name__.split(".")[0]
    for logger_name, logger in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger) or not logger_name.startswith(prefix):
            continue
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
        if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            logger.addHandler(file_handler)


class _StreamToLogger:
    """
    File-like stream object that redirects writes to a logger.

    Buffers partial lines until newline; empty lines are dropped.
    """

    def __init__(self, logger: logging.Logger, level: int = logging.DEBUG):
        self.logger = logger
        self.level = level
        self._buffer = ""

    def write(self, msg: str) -> int:
        if not isinstance(msg, str):
            msg = str(msg)
        self._buffer += msg
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._handle_line(line)
        return len(msg)

    def flush(self) -> None:
        if self._buffer:
            self._handle_line(self._buffer)
            self._buffer = ""

    def _handle_line(self, line: str) -> None:
        text = line.rstrip()
        if text:
            self.logger.log(self.level, text)


@contextmanager
def redirect_stdout_stderr_to_logger(logger: logging.Logger,
                                     level: int = logging.DEBUG):
    """
    Context manager that redirects Python-level stdout and stderr to a logger.

    Args:
        logger: Target logger
        level: Logging level to use (default: DEBUG)
    """
    out_stream = _StreamToLogger(logger, level=level)
    err_stream = _StreamToLogger(logger, level=level)
    try:
        with redirect_stdout(out_stream), redirect_stderr(err_stream):
            yield
    finally:
        out_stream.flush()
        err_stream.flush()
