#!/usr/bin/env python3
"""
Mirror backups of every repository owned by GitHub, GitLab and Bitbucket accounts

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import argparse
import os
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table
from rich_argparse import ArgumentDefaultsRichHelpFormatter

from .base import ConfigurationError
from .config import BackupConfig, load_config
from .runner import BatchResult, TargetRunner, run_batch

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG_ERROR = 2
EXIT_CANCELLED = 130


def setup_logging(
    verbose: bool = False, log_file: str = "git-backup.log", log_dir: str = "logs"
):
    """Setup console and file logging with loguru"""

    logger.remove()
    logger.configure(extra={"target": "git-backup"})

    log_level = "DEBUG" if verbose else "INFO"

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[target]}</cyan> | "
        "<level>{message}</level>"
    )
    logger.add(sys.stderr, format=console_format, level=log_level, colorize=True)

    if log_file:
        log_dir_path = Path(log_dir)
        log_dir_path.mkdir(parents=True, exist_ok=True)
        log_file_path = log_dir_path / log_file

        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[target]} | "
            "{name}:{function}:{line} | {message}"
        )
        logger.add(
            log_file_path,
            format=file_format,
            level=log_level,
            rotation="10 MB",
            retention="30 days",
            compression="zip",
            encoding="utf-8",
        )
        logger.debug(f"Log file: {log_file_path}")

    return logger


def get_env_default(env_var: str, fallback=None):
    """Get value from environment or .env file"""
    return os.getenv(env_var, fallback)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-backup",
        description="[bold blue]Git Backup[/bold blue] - Keep local mirrors of every repository of GitHub, GitLab and Bitbucket accounts",
        epilog="""
[bold green]Examples:[/bold green]
  [dim]# Back up every target of the configuration[/dim]
  [yellow]%(prog)s[/yellow] [cyan]-c[/cyan] [magenta]gitbackup.yaml[/magenta]

  [dim]# Back up a single target with 8 parallel clones[/dim]
  [yellow]%(prog)s[/yellow] [cyan]--target[/cyan] octo [cyan]--workers[/cyan] 8
        """,
        formatter_class=ArgumentDefaultsRichHelpFormatter,
    )

    parser.add_argument(
        "-c",
        "--config",
        default=get_env_default("GITBACKUP_CONFIG", "gitbackup.yaml"),
        metavar="FILE",
        help="Configuration file (env: GITBACKUP_CONFIG)",
    )
    parser.add_argument(
        "--backup-dir",
        default=get_env_default("GITBACKUP_BACKUP_DIR"),
        metavar="DIR",
        help="Override backup_directory of the configuration (env: GITBACKUP_BACKUP_DIR)",
    )
    parser.add_argument(
        "--target",
        action="append",
        dest="targets",
        metavar="NAME",
        help="Only back up the named target, may be repeated",
    )

    perf_group = parser.add_argument_group("Performance Options")
    perf_group.add_argument(
        "--workers",
        type=int,
        default=get_env_default("GITBACKUP_WORKERS"),
        metavar="N",
        help="Repositories synchronized in parallel per target (env: GITBACKUP_WORKERS)",
    )
    perf_group.add_argument(
        "--target-workers",
        type=int,
        default=get_env_default("GITBACKUP_TARGET_WORKERS"),
        metavar="N",
        help="Targets backed up in parallel (env: GITBACKUP_TARGET_WORKERS)",
    )
    perf_group.add_argument(
        "--api-timeout",
        type=float,
        default=get_env_default("GITBACKUP_API_TIMEOUT"),
        metavar="SECONDS",
        help="Timeout of provider API requests (env: GITBACKUP_API_TIMEOUT)",
    )
    perf_group.add_argument(
        "--git-timeout",
        type=float,
        default=get_env_default("GITBACKUP_GIT_TIMEOUT"),
        metavar="SECONDS",
        help="Timeout of a single git operation (env: GITBACKUP_GIT_TIMEOUT)",
    )
    perf_group.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bars",
    )

    log_group = parser.add_argument_group("Logging Options")
    log_group.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    log_group.add_argument(
        "--log-file",
        default=get_env_default("GITBACKUP_LOG_FILE", "git-backup.log"),
        metavar="FILE",
        help="Log file name inside ./logs, empty to disable (env: GITBACKUP_LOG_FILE)",
    )

    return parser


def apply_overrides(config: BackupConfig, args: argparse.Namespace) -> BackupConfig:
    """Apply command line overrides on top of the configuration file"""
    if args.backup_dir:
        config.backup_directory = Path(args.backup_dir).expanduser()

    for option in ("workers", "target_workers", "api_timeout", "git_timeout"):
        value = getattr(args, option)
        if value is None:
            continue
        if value <= 0:
            raise ConfigurationError(
                f"--{option.replace('_', '-')} must be a positive number"
            )
        setattr(config.settings, option, value)

    if args.targets:
        known = {target.name for target in config.targets}
        unknown = [name for name in args.targets if name not in known]
        if unknown:
            raise ConfigurationError(f"Unknown target(s): {', '.join(unknown)}")
        config.targets = [t for t in config.targets if t.name in args.targets]

    return config


def print_summary(result: BatchResult, console: Optional[Console] = None):
    console = console or Console(stderr=True)

    table = Table(title="Backup Summary")
    table.add_column("Target", style="cyan")
    table.add_column("Discovered", justify="right")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Status")

    for name, summary in result.summaries.items():
        table.add_row(
            name,
            str(summary.discovered),
            str(summary.succeeded),
            str(summary.skipped),
            str(summary.failed),
            "[green]OK[/green]" if summary.ok else "[red]FAILED[/red]",
        )
    for name, error in result.errors.items():
        table.add_row(name, "-", "-", "-", "-", f"[red]ERROR[/red] {error}")

    console.print(table)


def main(argv: Optional[List[str]] = None) -> int:
    # Load environment variables first (before parsing args)
    load_dotenv()

    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        config = apply_overrides(load_config(args.config), args)
        runner = TargetRunner(
            config.backup_directory,
            workers=config.settings.workers,
            api_timeout=config.settings.api_timeout,
            git_timeout=config.settings.git_timeout,
            provider_concurrency=config.settings.provider_concurrency,
            show_progress=not args.no_progress,
        )
    except (ConfigurationError, ValueError) as e:
        logger.error(f"[CONFIG] {e}")
        return EXIT_CONFIG_ERROR

    cancel_event = runner.cancel_event

    def handle_signal(signum, frame):
        logger.warning(
            f"[CANCEL] Received {signal.Signals(signum).name}, "
            "finishing running operations"
        )
        cancel_event.set()

    previous_handlers = {}
    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous_handlers[signum] = signal.signal(signum, handle_signal)

    try:
        result = run_batch(
            config.targets, runner, target_workers=config.settings.target_workers
        )
    except ConfigurationError as e:
        logger.error(f"[CONFIG] {e}")
        return EXIT_CONFIG_ERROR
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)

    print_summary(result)

    if result.cancelled:
        return EXIT_CANCELLED
    if not result.ok:
        return EXIT_FAILURES
    logger.info("[SUCCESS] All targets backed up")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
