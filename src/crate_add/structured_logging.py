"""
Structured logging configuration for crate-add.

Emits machine-readable JSON events for registry lookups and manifest edits.
Events go to stderr so the command output stays readable.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class EventLogger:
    """Structured logger for a single component."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"crate_add.{name}")
        self._setup_logger()
        self.context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False
            self.logger.setLevel(logging.WARNING)

    def set_context(self, manifest_path: Optional[str] = None) -> None:
        """Attach the manifest being edited to every event."""
        self.context = {}
        if manifest_path:
            self.context["manifest_path"] = manifest_path

    def clear_context(self) -> None:
        self.context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.context, **kwargs}
        getattr(self.logger, level)("", extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


# Global logger instances
_registry_logger = EventLogger("registry")
_manifest_logger = EventLogger("manifest")


def log_registry_lookup(
    package_name: str,
    found: bool,
    version: Optional[str] = None,
    response_time_ms: Optional[float] = None,
) -> None:
    """Log the outcome of a crates.io lookup."""
    log_data: Dict[str, Any] = {"package_name": package_name, "package_exists": found}

    if version is not None:
        log_data["version"] = version
    if response_time_ms is not None:
        log_data["response_time_ms"] = response_time_ms

    if not found:
        _registry_logger.warning("package_not_found_in_registry", **log_data)
    else:
        _registry_logger.debug("registry_lookup_completed", **log_data)


def log_dependency_added(
    package_name: str,
    table: str,
    source_kind: str,
    replaced: bool,
) -> None:
    """Log a dependency entry written to the in-memory manifest."""
    _manifest_logger.info(
        "dependency_updated" if replaced else "dependency_added",
        package_name=package_name,
        table=table,
        source_kind=source_kind,
    )


def log_manifest_written(manifest_path: str, dependency_count: int) -> None:
    """Log a manifest persisted to disk."""
    _manifest_logger.info(
        "manifest_written",
        manifest_path=manifest_path,
        dependency_count=dependency_count,
    )


def set_manifest_context(manifest_path: Optional[str] = None) -> None:
    """Set the manifest context for all loggers."""
    for logger in [_registry_logger, _manifest_logger]:
        logger.set_context(manifest_path)


def clear_manifest_context() -> None:
    """Clear the manifest context for all loggers."""
    for logger in [_registry_logger, _manifest_logger]:
        logger.clear_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    for logger in [_registry_logger, _manifest_logger]:
        logger.logger.setLevel(level)
