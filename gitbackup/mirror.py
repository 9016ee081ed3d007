"""
Local mirror synchronization

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

import shutil
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from loguru import logger as default_logger

from .credentials import redact_url
from .git_ops import GitCommandError, GitOperations, SubprocessGit

TEMP_DIRNAME = ".gitbackup-tmp"


class BackupStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class BackupOutcome:
    repository: str
    status: BackupStatus
    action: Optional[str] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == BackupStatus.SUCCEEDED


def robust_rmtree(path: Path, logger, max_retries: int = 3) -> bool:
    """
    Robustly remove a directory tree with retries.
    Handles race conditions where files may still be written during removal.

    Args:
        path: Path to remove
        logger: Logger for messages
        max_retries: Maximum number of retry attempts

    Returns:
        True if successfully removed, False otherwise
    """
    if not path.exists():
        return True

    for attempt in range(max_retries):
        try:
            shutil.rmtree(path)
            return True
        except OSError as e:
            if attempt < max_retries - 1:
                time.sleep(0.5 * (attempt + 1))
                logger.debug(
                    f"[CLEANUP] Retry {attempt + 1}/{max_retries} removing {path}: {e}"
                )
            else:
                logger.warning(
                    f"[CLEANUP] Failed to remove {path} after {max_retries} attempts: {e}"
                )
                return False
    return False


class MirrorSynchronizer:
    """
    Keeps ``<backup_root>/<target>/<repository>`` an up to date bare mirror.

    A missing mirror is cloned into ``<backup_root>/.gitbackup-tmp/<target>``
    and renamed into place once git succeeded, so an interrupted clone never
    leaves a directory that later runs would mistake for a mirror. The
    temporary root is a reserved target name, repository directories never
    live inside it. An existing mirror is re-pointed at the current clone URL
    and fetched with pruning.
    """

    def __init__(
        self,
        backup_root,
        git: Optional[GitOperations] = None,
        logger=None,
    ):
        self.backup_root = Path(backup_root)
        self.git = git or SubprocessGit()
        self.logger = logger or default_logger
        self._locks: Dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def mirror_path(self, target_name: str, repository_name: str) -> Path:
        for label, value in (("target", target_name), ("repository", repository_name)):
            if value in ("", ".", "..") or "/" in value or "\\" in value:
                raise ValueError(f"Invalid {label} name for a local path: {value!r}")
        if target_name == TEMP_DIRNAME:
            raise ValueError(f"Target name {TEMP_DIRNAME!r} is reserved")
        return self.backup_root / target_name / repository_name

    def temp_dir(self, target_name: str) -> Path:
        return self.backup_root / TEMP_DIRNAME / target_name

    def lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(path, threading.Lock())

    def sync_mirror(
        self, target_name: str, repository_name: str, clone_url: str, logger=None
    ) -> BackupOutcome:
        log = logger or self.logger

        try:
            path = self.mirror_path(target_name, repository_name)
        except ValueError as e:
            log.error(f"[ERROR] {e}")
            return BackupOutcome(repository_name, BackupStatus.FAILED, message=str(e))

        with self.lock_for(path):
            try:
                if path.exists():
                    return self._update(repository_name, path, clone_url, log)
                return self._clone(repository_name, path, clone_url, log)
            except GitCommandError as e:
                log.error(f"[ERROR] Backup of {repository_name} failed: {e}")
                return BackupOutcome(
                    repository_name, BackupStatus.FAILED, message=str(e)
                )
            except OSError as e:
                message = f"{type(e).__name__}: {e}"
                log.error(f"[ERROR] Backup of {repository_name} failed: {message}")
                return BackupOutcome(
                    repository_name, BackupStatus.FAILED, message=message
                )

    def _clone(self, name: str, path: Path, clone_url: str, log) -> BackupOutcome:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_dir = self.temp_dir(path.parent.name)
        temp_dir.mkdir(parents=True, exist_ok=True)
        temp_path = temp_dir / f"{name}-{uuid.uuid4().hex[:8]}"

        log.info(f"[CLONE] Cloning {name} into {path}")
        try:
            output = self.git.clone_mirror(clone_url, temp_path)
            temp_path.rename(path)
        finally:
            if temp_path.exists():
                robust_rmtree(temp_path, log)

        self._show_output(output, log)
        log.info(f"[SUCCESS] Cloned repository {name}")
        return BackupOutcome(name, BackupStatus.SUCCEEDED, action="cloned")

    def _update(self, name: str, path: Path, clone_url: str, log) -> BackupOutcome:
        log.info(f"[UPDATE] Fetching updates for {name}")
        output = self.git.update_mirror(path, clone_url)

        self._show_output(output, log)
        log.info(f"[SUCCESS] Pulled latest updates in repository {name}")
        return BackupOutcome(name, BackupStatus.SUCCEEDED, action="updated")

    @staticmethod
    def _show_output(output: str, log):
        for line in redact_url(output or "").splitlines():
            if line.strip():
                log.info(f"  {line.rstrip()}")

    def cleanup_stale_temps(self, target_name: str, logger=None) -> int:
        """Remove temporary clone directories left behind by interrupted runs"""
        log = logger or self.logger
        temp_dir = self.temp_dir(target_name)
        if not temp_dir.is_dir():
            return 0

        stale_count = 0
        for item in temp_dir.iterdir():
            if item.is_dir():
                if robust_rmtree(item, log):
                    stale_count += 1
                    log.debug(f"[CLEANUP] Removed stale temp directory: {item}")

        if stale_count > 0:
            log.info(
                f"[CLEANUP] Removed {stale_count} stale temporary directories from previous runs"
            )
        return stale_count
