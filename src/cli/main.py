"""Main CLI entry point for the cms-repo command.

This module provides the Typer application that serves as the entry point
for the cms-repo command-line tool. Global options (config path, verbosity,
colors) live on the callback; each operation is a subcommand.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import typer

from src.cli.models import ExitCode
from src.cli.output import OutputHandler
from src.cli.repo_command import RepoCommand
from src.config.config_loader import ConfigLoader

app = typer.Typer(
    name="cms-repo",
    help="""Read and write CMS content stored in a hosted git repository.

QUICK START:
  cms-repo ls content/posts --depth 2                   # List files
  cms-repo put content/posts/a.md ./a.md --new          # Create a file
  cms-repo workflow review posts hello-world            # Open a review""",
    add_completion=False,
    rich_markup_mode=None,
    no_args_is_help=True,
)

workflow_app = typer.Typer(
    help="Editorial workflow: draft, review and publish entries on workflow branches.",
    no_args_is_help=True,
)
app.add_typer(workflow_app, name="workflow")

logger = logging.getLogger(__name__)


def _configure_logging(verbosity: int, logdir: Optional[str] = None) -> None:
    """Configure logging based on verbosity level.

    Configures only the 'src' namespace logger to avoid affecting third-party
    libraries. The root logger is left unchanged.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2=DEBUG)
        logdir: Optional directory for log files (creates timestamped log file)
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    app_logger = logging.getLogger("src")
    app_logger.setLevel(level)

    log_format = "%(asctime)s [%(levelname)8s] %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(log_format, datefmt=date_format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    if logdir:
        log_path = Path(logdir)
        log_path.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"cms-repo_{timestamp}.log"

        file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        file_formatter = logging.Formatter(file_format, datefmt=date_format)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        app_logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_file}")


def _command(ctx: typer.Context) -> RepoCommand:
    options = ctx.ensure_object(dict)
    output = OutputHandler(
        verbosity=options.get("verbosity", 0),
        no_color=options.get("no_color", False),
    )
    return RepoCommand(
        config_path=options.get("config_path", ConfigLoader.DEFAULT_CONFIG_PATH),
        output_handler=output,
    )


def _parse_file_pairs(pairs: Optional[List[str]]) -> List[Tuple[str, str]]:
    parsed = []
    for pair in pairs or []:
        remote, sep, local = pair.partition("=")
        if not sep or not remote or not local:
            raise typer.BadParameter(
                f"Expected REMOTE_PATH=LOCAL_FILE, got '{pair}'", param_hint="--file"
            )
        parsed.append((remote, local))
    return parsed


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: str = typer.Option(
        ConfigLoader.DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to the backend configuration file",
    ),
    logdir: Optional[str] = typer.Option(
        None,
        "--logdir",
        help="Directory for log files (creates timestamped log file)",
    ),
    verbosity: int = typer.Option(
        0,
        "--verbosity",
        "-v",
        help="Verbosity level: 0=summary, 1=info, 2=debug",
    ),
    no_color: bool = typer.Option(
        False,
        "--no-color",
        help="Disable colored output",
    ),
) -> None:
    """Read and write CMS content stored in a hosted git repository."""
    _configure_logging(verbosity, logdir)
    ctx.obj = {
        "config_path": config_path,
        "verbosity": verbosity,
        "no_color": no_color,
    }


@app.command("ls")
def ls_command(
    ctx: typer.Context,
    path: str = typer.Argument("", help="Directory to list (repository root if omitted)"),
    depth: int = typer.Option(1, "--depth", "-d", min=1, help="Directory levels to descend"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Branch or commit to list"),
) -> None:
    """List files under a directory."""
    raise typer.Exit(_command(ctx).list_files(path, depth=depth, ref=ref))


@app.command("put")
def put_command(
    ctx: typer.Context,
    remote_path: str = typer.Argument(..., help="Repository path to write"),
    local_file: str = typer.Argument(..., help="Local file with the new content"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Commit message"),
    new_entry: bool = typer.Option(
        False, "--new", help="The file does not exist yet (skips sha lookup)"
    ),
    base_sha: Optional[str] = typer.Option(
        None, "--base-sha", help="Sha the edit was based on; a mismatch is a conflict"
    ),
    branch: Optional[str] = typer.Option(None, "--branch", help="Target branch"),
) -> None:
    """Write one file as a commit."""
    raise typer.Exit(
        _command(ctx).put(
            remote_path,
            local_file,
            message=message,
            new_entry=new_entry,
            base_sha=base_sha,
            branch=branch,
        )
    )


@workflow_app.command("start")
def workflow_start(
    ctx: typer.Context,
    collection: str = typer.Argument(..., help="Collection of the entry"),
    slug: str = typer.Argument(..., help="Entry slug"),
    files: Optional[List[str]] = typer.Option(
        None,
        "--file",
        "-f",
        help="Draft file as REMOTE_PATH=LOCAL_FILE (can be used multiple times)",
    ),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Commit message"),
    new_entry: bool = typer.Option(False, "--new", help="The draft files do not exist yet"),
) -> None:
    """Create the workflow branch of an entry and optionally save a draft."""
    raise typer.Exit(
        _command(ctx).workflow(
            "start",
            collection,
            slug,
            files=_parse_file_pairs(files),
            message=message,
            new_entry=new_entry,
        )
    )


@workflow_app.command("review")
def workflow_review(
    ctx: typer.Context,
    collection: str = typer.Argument(...),
    slug: str = typer.Argument(...),
) -> None:
    """Open (or reuse) a pull request and mark it pending review."""
    raise typer.Exit(_command(ctx).workflow("review", collection, slug))


@workflow_app.command("approve")
def workflow_approve(
    ctx: typer.Context,
    collection: str = typer.Argument(...),
    slug: str = typer.Argument(...),
) -> None:
    """Mark a reviewed entry ready to publish."""
    raise typer.Exit(_command(ctx).workflow("approve", collection, slug))


@workflow_app.command("publish")
def workflow_publish(
    ctx: typer.Context,
    collection: str = typer.Argument(...),
    slug: str = typer.Argument(...),
) -> None:
    """Merge the entry's pull request and delete its workflow branch."""
    raise typer.Exit(_command(ctx).workflow("publish", collection, slug))


@workflow_app.command("status")
def workflow_status(
    ctx: typer.Context,
    collection: str = typer.Argument(...),
    slug: str = typer.Argument(...),
) -> None:
    """Show the editorial status of an entry."""
    raise typer.Exit(_command(ctx).workflow("status", collection, slug))


def main() -> None:
    """Main entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
