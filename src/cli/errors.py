"""Typed exception hierarchy for CLI-related errors.

This module defines all custom exceptions used by the CLI.
All exceptions inherit from CLIError base class for easy catching and
include descriptive messages with context to help with debugging.
"""

from src.provider_client.errors import RepoBackendError


class CLIError(RepoBackendError):
    """Base exception for all CLI-related errors."""
    pass


class ConfigNotFoundError(CLIError):
    """Raised when configuration file is not found."""

    def __init__(self, config_path: str):
        super().__init__(
            f"Configuration file not found at {config_path}"
        )
        self.config_path = config_path


class LocalFileError(CLIError):
    """Raised when a local file given on the command line cannot be read."""

    def __init__(self, file_path: str, reason: str):
        super().__init__(f"Cannot read local file {file_path}: {reason}")
        self.file_path = file_path
        self.reason = reason
