import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "stock_ledger.log"
DEFAULT_LOG_LEVEL = "INFO"


def resolve_log_level(name: str) -> int:
    """Translate a level name such as ``"debug"`` into its ``logging`` value.

    Raises:
        ValueError: If ``name`` is not a standard logging level.
    """

    level = logging.getLevelNamesMapping().get(name.strip().upper())
    if level is None:
        raise ValueError(f"Unknown log level: {name!r}")
    return level


def set_log_level(name: str) -> None:
    """Apply the ``[System] LogLevel`` setting to the package logger and its handlers."""

    level = resolve_log_level(name)
    log.setLevel(level)
    for handler in log.handlers:
        handler.setLevel(level)


def _configure_logging() -> logging.Logger:
    """Configure the ledger logger: rotating file under ``.logs`` plus stderr.

    Runs once per process; later imports reuse the configured handlers. The
    level starts at ``INFO`` until a configuration file overrides it.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = resolve_log_level(DEFAULT_LOG_LEVEL)
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        # the ledger still works without a log file, e.g. on a read-only install
        print(
            f"Warning: ledger log file '{LOG_FILE}' unavailable, logging to stderr only: {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Ledger logger ready (file: %s)", LOG_FILE)
