import logging
import os
import sys
from pathlib import Path

import structlog
from dotenv import load_dotenv

# Third-party loggers that are chatty at INFO (one line per job run / request).
QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore")
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _handlers(level: int, error_log_path: str) -> list[logging.Handler]:
    formatter = logging.Formatter("%(message)s")
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]
    if error_log_path:
        Path(error_log_path).parent.mkdir(parents=True, exist_ok=True)
        errors = logging.FileHandler(error_log_path)
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        handlers.append(errors)
    return handlers


def setup_logging():
    """JSON event logs on stdout; ERROR and above also go to LOG_ERROR_FILE when set."""
    load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)
    for handler in _handlers(level, os.getenv("LOG_ERROR_FILE", "").strip()):
        root.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    for name in SERVER_LOGGERS:
        logging.getLogger(name).setLevel(level)


def run_context(run_id: str, **fields):
    """Attach ``run_id`` (and any extra fields) to every event logged inside the block."""
    return structlog.contextvars.bound_contextvars(run_id=run_id, **fields)
