"""Backend configuration loading."""

from .config_loader import ConfigLoader, SUPPORTED_PROVIDERS
from .errors import ConfigError, ConfigurationError, FilesystemError
from .models import BackendConfig

__all__ = [
    "BackendConfig",
    "ConfigError",
    "ConfigLoader",
    "ConfigurationError",
    "FilesystemError",
    "SUPPORTED_PROVIDERS",
]
