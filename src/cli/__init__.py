"""Command-line interface for CMS content in hosted git repositories.

This package provides the `cms-repo` CLI tool that lists content, writes
files through the persist engine and drives entries through the editorial
workflow, with rich terminal output and meaningful exit codes.
"""

from .errors import CLIError, ConfigNotFoundError, LocalFileError
from .models import ExitCode
from .repo_command import RepoCommand

__all__ = [
    'RepoCommand',
    'ExitCode',
    'CLIError',
    'ConfigNotFoundError',
    'LocalFileError',
]
