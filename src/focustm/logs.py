"""
Logging for focustm.

Everything logs below the ``focustm`` logger: a detailed file log under
``FOCUSTM_LOG_DIR`` (default ``~/.local/share/focustm/logs``) and a terse
console log on stderr, so CLI output on stdout stays clean.
"""
import logging
import os
import sys
from pathlib import Path

ROOT_LOGGER = 'focustm'

def console_level() -> int:
    """Console level from ``FOCUSTM_DEBUG`` or ``FOCUSTM_LOG_LEVEL``; WARNING by default."""
    if os.getenv('FOCUSTM_DEBUG', '').lower() in ('1', 'true', 'yes'):
        return logging.DEBUG
    env_level = os.getenv('FOCUSTM_LOG_LEVEL', '').upper()
    if env_level:
        return getattr(logging, env_level, logging.WARNING)
    return logging.WARNING

def log_dir() -> Path:
    return Path(os.getenv('FOCUSTM_LOG_DIR', '') or Path.home() / ".local" / "share" / "focustm" / "logs")

def setup_logging():
    """Set up the ``focustm`` logger with a file handler and a console handler."""
    level = console_level()
    verbose = level == logging.DEBUG

    detailed_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s',
        '%Y-%m-%d %H:%M:%S',
    )
    console_formatter = logging.Formatter(
        '%(levelname)-8s [%(name)s] %(message)s' if verbose
        else '%(levelname)s: %(message)s'
    )

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)  # Logger accepts all, handlers filter
    logger.handlers.clear()

    # A read-only home only costs the file log
    directory = log_dir()
    try:
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(directory / "focustm.log", encoding='utf-8')
        file_handler.setFormatter(detailed_formatter)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)
    except OSError:
        pass

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    logger.propagate = False

    return logger

# Initialize logging when package is imported
setup_logging()

def get_logger(name: str = None):
    """
    Child logger of ``focustm`` for one part of the package.

    Names in use: ``store`` (mutations and rejected operations), ``propagate``,
    ``audit`` (log writes and reconciliation), ``history`` (undo steps),
    ``data``, ``data.migrate``, ``data.validate`` and ``io`` (persistence), and
    ``config``. Without a name the package logger itself is returned.
    """
    if name:
        return logging.getLogger(f'{ROOT_LOGGER}.{name}')
    return logging.getLogger(ROOT_LOGGER)
