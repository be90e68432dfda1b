"""Command orchestration for the cms-repo CLI.

This module provides the RepoCommand class that wires configuration,
backend, tree resolver, persist engine and editorial workflow together for
each CLI command, and translates exceptions into exit codes.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from src.backends.base import Backend
from src.backends.registry import create_backend
from src.cli.errors import CLIError, ConfigNotFoundError, LocalFileError
from src.cli.models import ExitCode
from src.cli.output import OutputHandler
from src.config.config_loader import ConfigLoader
from src.config.errors import ConfigurationError
from src.config.models import BackendConfig
from src.editorial_workflow.errors import (
    InvalidTransitionError,
    WorkflowConflictError,
    WorkflowError,
)
from src.editorial_workflow.models import WorkflowEntry
from src.editorial_workflow.workflow_engine import EditorialWorkflow
from src.models.content import Asset, DataFile
from src.persist_engine.persist_engine import PersistEngine
from src.provider_client.errors import (
    AuthError,
    ConflictError,
    NetworkError,
    OperationCancelledError,
    RateLimitedError,
    RepoBackendError,
)
from src.tree_resolver.tree_resolver import TreeResolver

logger = logging.getLogger(__name__)

WORKFLOW_ACTIONS = ('start', 'review', 'approve', 'publish', 'status')


class RepoCommand:
    """Runs cms-repo commands against the configured repository.

    Example:
        >>> output = OutputHandler(verbosity=1)
        >>> cmd = RepoCommand(output_handler=output)
        >>> exit_code = cmd.list_files("content/posts", depth=2)
        >>> sys.exit(exit_code)
    """

    def __init__(
        self,
        config_path: str = ConfigLoader.DEFAULT_CONFIG_PATH,
        output_handler: Optional[OutputHandler] = None,
        backend: Optional[Backend] = None,
    ):
        """Initialize repo command.

        Args:
            config_path: Path to configuration YAML file
            output_handler: OutputHandler for terminal output (optional)
            backend: Backend to use instead of the configured one (optional)
        """
        self.config_path = config_path
        self.output_handler = output_handler or OutputHandler()
        self.backend = backend
        self.config: Optional[BackendConfig] = None

    def list_files(self, base_path: str, depth: int = 1, ref: Optional[str] = None) -> ExitCode:
        """List file entries under ``base_path`` down to ``depth`` levels."""
        def action() -> ExitCode:
            backend = self._backend()
            resolver = TreeResolver(backend, ref=ref)
            with self.output_handler.spinner(f"Listing {base_path or '/'}..."):
                entries = resolver.list_files(base_path, depth=depth)
            self.output_handler.print_entries(base_path, entries)
            return ExitCode.SUCCESS

        return self._run(action)

    def put(
        self,
        remote_path: str,
        local_file: str,
        message: Optional[str] = None,
        new_entry: bool = False,
        base_sha: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> ExitCode:
        """Persist one local file at ``remote_path``."""
        def action() -> ExitCode:
            backend = self._backend()
            item = self._read_local(remote_path, local_file, base_sha)
            data_files, assets = self._split([item])
            engine = PersistEngine(backend)
            commit_message = message or f"Update {remote_path}"

            with self.output_handler.spinner(f"Writing {remote_path}..."):
                result = engine.persist_files(
                    data_files, assets, commit_message, new_entry, branch=branch
                )
            self.output_handler.print_commit_result(result)
            self.output_handler.success(f"Persisted {remote_path}")
            return ExitCode.SUCCESS

        return self._run(action)

    def workflow(
        self,
        action_name: str,
        collection: str,
        slug: str,
        files: Sequence[Tuple[str, str]] = (),
        message: Optional[str] = None,
        new_entry: bool = False,
    ) -> ExitCode:
        """Run one editorial workflow action for an entry.

        Args:
            action_name: One of start, review, approve, publish, status
            collection: Collection of the entry
            slug: Entry slug
            files: (remote_path, local_file) pairs saved as a draft by start
            message: Commit message for the draft
            new_entry: True when the draft files do not exist yet
        """
        if action_name not in WORKFLOW_ACTIONS:
            self.output_handler.error(
                f"Unknown workflow action '{action_name}' "
                f"(expected one of: {', '.join(WORKFLOW_ACTIONS)})"
            )
            return ExitCode.GENERAL_ERROR

        def action() -> ExitCode:
            backend = self._backend()
            engine = EditorialWorkflow(
                backend,
                enabled=self.config.editorial_workflow if self.config else True,
            )
            entry = engine.start(collection, slug)

            if action_name == 'start':
                return self._start(engine, entry, files, message, new_entry)

            # Entries carry no local state between runs; rebuild it from the provider
            engine.status(entry)
            if action_name == 'review':
                engine.request_review(entry)
            elif action_name == 'approve':
                engine.approve(entry)
            elif action_name == 'publish':
                engine.publish(entry)

            self.output_handler.print_workflow_status(
                entry.slug, entry.branch_name, entry.status, entry.pull_request
            )
            return ExitCode.SUCCESS

        return self._run(action)

    def _start(
        self,
        engine: EditorialWorkflow,
        entry: WorkflowEntry,
        files: Sequence[Tuple[str, str]],
        message: Optional[str],
        new_entry: bool,
    ) -> ExitCode:
        if files:
            items = [self._read_local(remote, local, None, slug=entry.slug) for remote, local in files]
            data_files, assets = self._split(items)
            result = engine.save_draft(
                entry,
                data_files,
                assets,
                message or f"Draft {entry.collection} \"{entry.slug}\"",
                new_entry=new_entry,
            )
            self.output_handler.print_commit_result(result)
        elif engine.enabled:
            engine.ensure_branch(entry)

        self.output_handler.print_workflow_status(
            entry.slug, entry.branch_name, entry.status, entry.pull_request
        )
        return ExitCode.SUCCESS

    def _backend(self) -> Backend:
        if self.backend is None:
            if not Path(self.config_path).exists():
                raise ConfigNotFoundError(self.config_path)
            logger.info(f"Loading configuration from {self.config_path}")
            self.config = ConfigLoader.load(self.config_path)
            self.backend = create_backend(self.config)
        return self.backend

    @staticmethod
    def _read_local(
        remote_path: str,
        local_file: str,
        base_sha: Optional[str],
        slug: Optional[str] = None,
    ) -> Union[DataFile, Asset]:
        try:
            raw = Path(local_file).read_bytes()
        except OSError as e:
            raise LocalFileError(local_file, e.strerror or str(e)) from e

        try:
            text = raw.decode('utf-8')
        except UnicodeDecodeError:
            return Asset(path=remote_path, content=raw, base_sha=base_sha)
        return DataFile(
            path=remote_path,
            slug=slug or Path(remote_path).stem,
            raw_content=text,
            base_sha=base_sha,
        )

    @staticmethod
    def _split(items: List[Union[DataFile, Asset]]) -> Tuple[List[DataFile], List[Asset]]:
        data_files = [item for item in items if isinstance(item, DataFile)]
        assets = [item for item in items if isinstance(item, Asset)]
        return data_files, assets

    def _run(self, action: Callable[[], ExitCode]) -> ExitCode:
        output = self.output_handler
        try:
            return action()

        except AuthError as e:
            logger.error(f"Authentication failed: {e}")
            output.error(f"Authentication failed: {e}")
            output.info("Check the token environment variable named by token_env")
            return ExitCode.AUTH_ERROR

        except (ConflictError, WorkflowConflictError) as e:
            logger.error(f"Conflict: {e}")
            output.error(f"Conflict: {e}")
            output.info("Re-read the files from the provider before retrying")
            return ExitCode.CONFLICTS

        except (NetworkError, RateLimitedError) as e:
            logger.error(f"API error: {e}")
            output.error(f"API error: {e}")
            output.info("Check your internet connection and try again")
            return ExitCode.NETWORK_ERROR

        except OperationCancelledError as e:
            output.warning(str(e))
            return ExitCode.GENERAL_ERROR

        except (ConfigurationError, ConfigNotFoundError) as e:
            logger.error(f"Configuration error: {e}")
            output.error(f"Configuration error: {e}")
            return ExitCode.GENERAL_ERROR

        except InvalidTransitionError as e:
            output.error(str(e))
            return ExitCode.GENERAL_ERROR

        except (CLIError, WorkflowError) as e:
            logger.error(f"CLI error: {e}")
            output.error(f"Error: {e}")
            return ExitCode.GENERAL_ERROR

        except (RepoBackendError, ValueError) as e:
            logger.error(f"Error: {e}")
            output.error(f"Error: {e}")
            return ExitCode.GENERAL_ERROR

        except Exception as e:
            logger.exception("Unexpected error")
            output.error(f"Unexpected error: {e}")
            return ExitCode.GENERAL_ERROR
