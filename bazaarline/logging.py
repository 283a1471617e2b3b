"""Logging configuration for Bazaarline."""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict, Optional

# side-effect outcome -> level it is reported at
_OUTCOME_LEVELS: Dict[str, int] = {
    "ok": logging.DEBUG,
    "skipped": logging.INFO,
    "failed": logging.ERROR,
}


def setup_logging(level: str = "INFO") -> None:
    """Configure pipe-delimited logging on stdout for the whole process."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"bazaarline.{name}")


class ServiceLogger:
    """Structured logger for service operations.

    Context keyword arguments are appended as ``key=value`` pairs. A logger
    created with ``bind`` repeats its bound context on every line.
    """

    def __init__(self, service_name: str, context: Optional[Dict[str, Any]] = None) -> None:
        self._name = service_name
        self._logger = get_logger(service_name)
        self._context: Dict[str, Any] = dict(context or {})

    def bind(self, **context: Any) -> "ServiceLogger":
        return ServiceLogger(self._name, {**self._context, **context})

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context: Any) -> None:
        self._log(logging.ERROR, message, context)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, context)

    def side_effect(self, name: str, status: str, **context: Any) -> None:
        """Record the result of one best-effort step at a level matching its status."""
        level = _OUTCOME_LEVELS.get(status, logging.WARNING)
        self._log(level, f"Side effect {name} {status}", context)

    def _log(self, level: int, message: str, context: Dict[str, Any]) -> None:
        merged = {**self._context, **context}
        if merged:
            context_str = " | ".join(f"{k}={v}" for k, v in merged.items())
            message = f"{message} | {context_str}"
        self._logger.log(level, message)
