"""Exception classes for sira."""

from pathlib import Path
from typing import Any, Dict, Optional, Union


class SiraError(Exception):
    """Base class for every error sira raises on purpose."""


class ConversationIOError(SiraError, OSError):
    """A conversation file or directory is missing, unreadable or not UTF-8."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.path = str(path) if path is not None else None
        super().__init__(message)

    def __str__(self):
        if self.path:
            return f"{self.args[0]}\n  File: {self.path}"
        return self.args[0]


class ConfigError(SiraError):
    """Malformed or incomplete options document, or an unusable marker syntax."""

    def __init__(self, message: str, config_path: Optional[Union[str, Path]] = None):
        self.config_path = str(config_path) if config_path is not None else None
        super().__init__(message)

    def __str__(self):
        if self.config_path:
            return f"{self.args[0]}\n  File: {self.config_path}"
        return self.args[0]


class ParameterError(SiraError):
    """A supplied parameter has no `{name}` placeholder in the template."""

    def __init__(self, key: str, message: Optional[str] = None):
        self.key = key
        super().__init__(
            message or f'Could not find parameter "{key}" in template'
        )


class ParameterTypeError(ParameterError, TypeError):
    """A parameter value is neither text nor an integer."""

    def __init__(self, key: str, value: Any):
        self.value_type = type(value).__name__
        super().__init__(
            key,
            f'Unsupported type {self.value_type} for parameter "{key}" '
            "(expected str or int)",
        )


class TransportError(SiraError):
    """Wrapper for completion service errors.

    Keeps the original exception so callers can inspect what litellm (or the
    provider behind it) actually reported.
    """

    def __init__(
        self,
        original_error: Exception,
        model_name: str,
        extra_context: Optional[Dict[str, Any]] = None,
    ):
        self.original_error = original_error
        self.error_type = type(original_error).__name__
        self.model_name = model_name
        self.extra_context = extra_context or {}
        super().__init__(str(original_error))

    def __str__(self):
        return (
            f"{self.error_type}\n"
            f"  Model: {self.model_name}\n"
            f"  {self.original_error}"
        )

    def __repr__(self):
        return f"TransportError({self.error_type}, model={self.model_name})"


class IntegrityError(SiraError):
    """An append was attempted on a file with no trailing byte to inspect."""

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        super().__init__(
            f"Refusing to append to empty conversation file {self.path}: "
            "no trailing byte to choose a separator from"
        )
