"""
Error handling for crate-add.

Provides the exception taxonomy raised by the manifest editor together with
structured error reporting (sanitized logging, per-category callbacks and
error statistics) shared by all modules.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    PARSING = "PARSING"
    NETWORK = "NETWORK"
    VALIDATION = "VALIDATION"
    CONFIGURATION = "CONFIGURATION"
    FILESYSTEM = "FILESYSTEM"


class CrateAddError(Exception):
    """Base class for every failure surfaced to the caller of an add."""

    category = ErrorCategory.VALIDATION


class ConflictingDependencyKind(CrateAddError):
    """Both dev and build were requested for the same call."""


class ConflictingSource(CrateAddError):
    """More than one of version, git and path was supplied."""


class OptionalNotAllowedForDevBuild(CrateAddError):
    """Optional dependencies only live in the normal dependency table."""


class EmptyTarget(CrateAddError):
    """The target qualifier was given as an empty string."""


class InvalidVersionRequirement(CrateAddError):
    """An explicit version requirement could not be parsed."""


class InvalidUpgradeStrategy(CrateAddError):
    """The upgrade strategy token is not one of none, patch, minor, all."""


class InvalidCrateName(CrateAddError):
    """A crate argument has no name, e.g. `@1.0`."""


class PackageLookupError(CrateAddError):
    """A registry or source lookup for a package failed."""

    category = ErrorCategory.NETWORK

    def __init__(self, package_name: str, message: str):
        super().__init__(message)
        self.package_name = package_name


class DocumentParseError(CrateAddError):
    """The manifest text is not valid TOML."""

    category = ErrorCategory.PARSING


class ManifestNotFoundError(CrateAddError):
    """No manifest could be located or read."""

    category = ErrorCategory.FILESYSTEM


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging."""
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
            "traceback": self.traceback_info,
            "suggestions": self.suggestions,
        }


class SecureLogger:
    """Logger that strips credentials from git URLs and tokens."""

    SENSITIVE_PATTERNS = [
        (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'token="[REDACTED]"'),
        (r'password["\s]*[:=]["\s]*([^\s"\']+)', 'password="[REDACTED]"'),
        (r"((?:https?|git|ssh)://[^@\s:/]+:)[^@\s]+@", r"\1[REDACTED]@"),
        (r"Authorization:\s*\w+\s+([^\s]+)", "Authorization: [REDACTED]"),
    ]

    def __init__(self, name: str, level: int = logging.WARNING):
        """
        Initialize secure logger.

        Args:
            name: Logger name
            level: Logging level
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def _sanitize_message(self, message: str) -> str:
        sanitized = message
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        sensitive_keys = {"token", "password", "secret", "credential", "auth"}

        for key, value in data.items():
            if any(sensitive_key in key.lower() for sensitive_key in sensitive_keys):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self._sanitize_message(value)
            else:
                sanitized[key] = value

        return sanitized

    def log_error_context(self, context: ErrorContext):
        """
        Log error context with appropriate level.

        Args:
            context: Error context to log
        """
        log_data = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self._sanitize_dict(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__

        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        log_message = f"{self._sanitize_message(context.message)} | {log_data}"
        level = getattr(logging, context.level.value)
        self.logger.log(level, log_message)


# Error callback type
ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler for consistent error management.

    Provides logging, callbacks, and structured error handling
    for library components.
    """

    def __init__(
        self,
        logger_name: str = "crate_add",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Args:
            level: Error severity level
            category: Error category
            message: Error message
            module: Module where error occurred
            function: Function where error occurred
            exception: Optional exception object
            details: Additional error details
            suggestions: Suggested fixes

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            for callback in self.error_callbacks.get(category, []):
                try:
                    callback(context)
                except Exception as cb_error:
                    # Callback failures must not mask the original error
                    self.logger.logger.error(f"Error in callback: {cb_error}")

            for callback in self.global_callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    self.logger.logger.error(f"Error in global callback: {cb_error}")

        return context

    def info(
        self,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        **kwargs,
    ) -> ErrorContext:
        """Handle info level error."""
        return self.handle_error(
            ErrorLevel.INFO, category, message, module, function, **kwargs
        )

    def warning(
        self,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        **kwargs,
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        **kwargs,
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        ErrorHandler: Global error handler
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "crate_add",
) -> ErrorHandler:
    """
    Setup global error handling configuration.

    Args:
        log_level: Logging level
        enable_callbacks: Whether to enable callbacks
        logger_name: Logger name

    Returns:
        ErrorHandler: Configured error handler
    """
    global _global_error_handler
    _global_error_handler = ErrorHandler(logger_name, log_level, enable_callbacks)
    return _global_error_handler


def log_validation_error(
    error: CrateAddError,
    module: str,
    function: str,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Report a rejected add request.

    Validation failures are expected user errors, so they are recorded at
    INFO level and only show up when verbose logging is enabled.
    """
    get_error_handler().info(
        error.category,
        str(error),
        module,
        function,
        exception=error,
        details=details or {},
        suggestions=["Run `crate-add add --help` for the accepted flag combinations"],
    )


def log_parsing_error(
    message: str,
    module: str,
    function: str,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
):
    """
    Convenience function for logging manifest parsing errors.

    Args:
        message: Error message
        module: Module name
        function: Function name
        file_path: Manifest being parsed
        exception: Optional exception
    """
    details = {}
    if file_path is not None:
        # Only the file name, never the full path
        details["file_path"] = Path(file_path).name

    get_error_handler().warning(
        ErrorCategory.PARSING,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Check that the manifest is valid TOML",
            "Verify file is not corrupted",
        ],
    )


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[Exception] = None,
):
    """
    Convenience function for logging network errors.

    Args:
        message: Error message
        module: Module name
        function: Function name
        url: URL that failed (will be sanitized)
        status_code: HTTP status code
        exception: Optional exception
    """
    details = {}
    if url is not None:
        parsed = urlparse(url)
        sanitized_url = f"{parsed.scheme}://{parsed.hostname}"
        if parsed.port:
            sanitized_url += f":{parsed.port}"
        sanitized_url += parsed.path
        details["url"] = sanitized_url

    if status_code is not None:
        details["status_code"] = status_code

    get_error_handler().error(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Check network connectivity",
            "Verify the package name is spelled correctly",
            "Verify registry URL is correct",
        ],
    )
