"""YAML configuration loading and validation.

This module handles loading and saving the backend configuration from YAML
files. The configuration resolves which provider, repository and branch the
content lives in; the token is never stored in the file and is read from
the environment variable the file names.
"""

import os
from typing import Any, Dict

import yaml

from .errors import ConfigError, FilesystemError
from .models import BackendConfig

SUPPORTED_PROVIDERS = ('gitea', 'github', 'gitlab')


class ConfigLoader:
    """Handles configuration file loading, validation, and saving.

    Configuration file structure:
        provider: gitea
        repo: owner/name
        branch: main
        api_root: https://git.example.com/api/v1
        base_url: https://git.example.com
        editorial_workflow: true
        timeout: 30
        token_env: CMS_REPO_TOKEN
    """

    DEFAULT_CONFIG_PATH = '.cms-repo/config.yaml'

    REQUIRED_FIELDS = {'provider', 'repo'}

    DEFAULTS = {
        'branch': 'main',
        'editorial_workflow': False,
        'timeout': 30,
        'token_env': 'CMS_REPO_TOKEN',
    }

    @classmethod
    def load(cls, config_path: str) -> BackendConfig:
        """Load and parse configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            BackendConfig object with parsed configuration

        Raises:
            FilesystemError: If file cannot be read
            ConfigError: If configuration is invalid or malformed
        """
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise FilesystemError(
                config_path,
                'read',
                'Configuration file not found'
            )
        except PermissionError:
            raise FilesystemError(
                config_path,
                'read',
                'Permission denied'
            )
        except OSError as e:
            raise FilesystemError(
                config_path,
                'read',
                str(e)
            )

        try:
            config_dict = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML syntax: {str(e)}"
            )

        if config_dict is None:
            raise ConfigError("Configuration file is empty")

        if not isinstance(config_dict, dict):
            raise ConfigError(
                f"Configuration must be a YAML dictionary, got {type(config_dict).__name__}"
            )

        return cls.parse(config_dict)

    @classmethod
    def save(cls, config_path: str, config: BackendConfig) -> None:
        """Save configuration to a YAML file.

        Args:
            config_path: Path to the YAML configuration file
            config: BackendConfig object to save

        Raises:
            FilesystemError: If file cannot be written
        """
        config_dict: Dict[str, Any] = {
            'provider': config.provider,
            'repo': config.repo,
            'branch': config.branch,
        }
        # Only include optional fields if they are set
        if config.api_root:
            config_dict['api_root'] = config.api_root
        if config.base_url:
            config_dict['base_url'] = config.base_url
        config_dict['editorial_workflow'] = config.editorial_workflow
        config_dict['timeout'] = config.timeout
        config_dict['token_env'] = config.token_env

        yaml_str = yaml.safe_dump(
            config_dict,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False
        )

        config_dir = os.path.dirname(config_path)
        if config_dir:
            try:
                os.makedirs(config_dir, exist_ok=True)
            except OSError as e:
                raise FilesystemError(
                    config_dir,
                    'create_directory',
                    str(e)
                )

        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                f.write(yaml_str)
        except PermissionError:
            raise FilesystemError(
                config_path,
                'write',
                'Permission denied'
            )
        except OSError as e:
            raise FilesystemError(
                config_path,
                'write',
                str(e)
            )

    @classmethod
    def parse(cls, config_dict: Dict[str, Any]) -> BackendConfig:
        """Parse and validate a configuration dictionary.

        Args:
            config_dict: Raw configuration dictionary

        Returns:
            Validated BackendConfig object

        Raises:
            ConfigError: If configuration is invalid
        """
        missing_fields = cls.REQUIRED_FIELDS - set(config_dict.keys())
        if missing_fields:
            raise ConfigError(
                f"Missing required fields: {', '.join(sorted(missing_fields))}"
            )

        provider = str(config_dict['provider']).strip().lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise ConfigError(
                f"Unsupported provider '{provider}' "
                f"(expected one of: {', '.join(SUPPORTED_PROVIDERS)})",
                'provider'
            )

        repo = config_dict['repo']
        if not isinstance(repo, str) or repo.count('/') < 1:
            raise ConfigError(
                f"Field 'repo' must be in 'owner/name' form, got {repo!r}",
                'repo'
            )
        owner, _, name = repo.strip().strip('/').rpartition('/')
        if not owner or not name:
            raise ConfigError(
                f"Field 'repo' must be in 'owner/name' form, got {repo!r}",
                'repo'
            )

        branch = config_dict.get('branch', cls.DEFAULTS['branch'])
        if not isinstance(branch, str) or not branch.strip():
            raise ConfigError("Field 'branch' must be a non-empty string", 'branch')

        for optional in ('api_root', 'base_url'):
            value = config_dict.get(optional)
            if value is not None and not isinstance(value, str):
                raise ConfigError(
                    f"Field '{optional}' must be a string, got {type(value).__name__}",
                    optional
                )

        editorial_workflow = config_dict.get(
            'editorial_workflow', cls.DEFAULTS['editorial_workflow']
        )
        if not isinstance(editorial_workflow, bool):
            raise ConfigError(
                "Field 'editorial_workflow' must be a boolean",
                'editorial_workflow'
            )

        try:
            timeout = float(config_dict.get('timeout', cls.DEFAULTS['timeout']))
        except (ValueError, TypeError) as e:
            raise ConfigError(f"Invalid timeout: {str(e)}", 'timeout')
        if timeout <= 0:
            raise ConfigError(
                f"Field 'timeout' must be positive, got {timeout}",
                'timeout'
            )

        token_env = config_dict.get('token_env', cls.DEFAULTS['token_env'])
        if not isinstance(token_env, str) or not token_env.strip():
            raise ConfigError("Field 'token_env' must be a non-empty string", 'token_env')

        return BackendConfig(
            provider=provider,
            repo=repo.strip().strip('/'),
            branch=branch.strip(),
            api_root=config_dict.get('api_root'),
            base_url=config_dict.get('base_url'),
            editorial_workflow=editorial_workflow,
            timeout=timeout,
            token_env=token_env.strip(),
        )
