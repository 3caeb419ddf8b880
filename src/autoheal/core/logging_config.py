"""
Logging configuration for the self-healing locator engine.

Records are written to the console in plain text and, when a log directory
is given, to rotating JSON files. The orchestrator logs through
``HealingLoggerAdapter`` so every record of one locate call carries its
request id and selector.
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


CONTEXT_FIELDS = (
    "request_id",
    "selector",
    "operation",
    "phase",
    "duration",
    "success",
    "strategy",
    "error_code",
    "metadata",
)

COMPONENTS = ("orchestrator", "cache", "strategy", "ai", "adapter")

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

MB = 1024 * 1024


class StructuredFormatter(logging.Formatter):
    """Renders each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
        )

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(payload, default=_to_json)


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return asdict(value)
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)


class HealingLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps every record with the current lookup."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        # Per-call extra wins over the adapter's context
        kwargs['extra'] = {**self.extra, **(kwargs.get('extra') or {})}
        return msg, kwargs

    def log_operation_start(self, operation: str, **metadata):
        self.debug(f"Starting {operation}", extra={
            'operation': operation,
            'phase': 'start',
            'metadata': metadata
        })

    def log_stage(self, operation: str, stage: str, **metadata):
        """Log a transition between pipeline stages."""
        self.debug(f"{operation}: {stage}", extra={
            'operation': operation,
            'phase': stage,
            'metadata': metadata
        })

    def log_operation_success(self, operation: str, duration: float, strategy: Optional[str] = None, **metadata):
        self.info(f"Completed {operation} via {strategy or 'unknown'} in {duration:.3f}s", extra={
            'operation': operation,
            'phase': 'complete',
            'success': True,
            'duration': duration,
            'strategy': strategy,
            'metadata': metadata
        })

    def log_operation_failure(self, operation: str, duration: float, error: str, error_code: str = None, **metadata):
        self.error(f"Failed {operation}: {error}", extra={
            'operation': operation,
            'phase': 'complete',
            'success': False,
            'duration': duration,
            'error_code': error_code,
            'metadata': metadata
        })


def _rotating_json_handler(path: Path, level: int, max_mb: int, backups: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_mb * MB, backupCount=backups)
    handler.setFormatter(StructuredFormatter())
    handler.setLevel(level)
    return handler


def setup_healing_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs") -> Dict[str, logging.Logger]:
    """
    Set up logging for the locator engine.

    Replaces the root handlers with a console handler. With a ``log_dir``,
    every record also goes to ``autoheal_all.log`` and the component loggers
    additionally write ``autoheal_healing.log`` (INFO and up) and
    ``autoheal_errors.log`` (ERROR only).

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory to store log files, None for console only

    Returns:
        Component name to logger mapping
    """
    level = getattr(logging, log_level.upper())

    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    console.setLevel(level)
    root.addHandler(console)

    loggers = {name: logging.getLogger(f"autoheal.{name}") for name in COMPONENTS}

    if log_dir is not None:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)

        root.addHandler(_rotating_json_handler(directory / "autoheal_all.log", logging.DEBUG, 10, 5))
        component_handlers = (
            _rotating_json_handler(directory / "autoheal_healing.log", logging.INFO, 10, 10),
            _rotating_json_handler(directory / "autoheal_errors.log", logging.ERROR, 5, 10),
        )
        for component_logger in loggers.values():
            for handler in component_handlers:
                component_logger.addHandler(handler)

    _quiet_third_party_loggers()
    return loggers


def _quiet_third_party_loggers():
    for name, env_var in (("LiteLLM", "LITELLM_LOG_LEVEL"), ("selenium", "SELENIUM_LOG_LEVEL")):
        logging.getLogger(name).setLevel(getattr(logging, os.getenv(env_var, "WARNING").upper()))
    for name in ("urllib3", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_healing_logger(component: str, request_id: str = None, selector: str = None) -> HealingLoggerAdapter:
    """
    Get a logger adapter carrying the context of one lookup.

    Args:
        component: Component name (orchestrator, cache, strategy, etc.)
        request_id: Optional locate request ID
        selector: Optional original selector being located
    """
    context = {}
    if request_id:
        context['request_id'] = request_id
    if selector:
        context['selector'] = selector

    return HealingLoggerAdapter(logging.getLogger(f"autoheal.{component}"), context)
