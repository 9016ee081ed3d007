"""
Git operations used to maintain mirror repositories

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

import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from .base import BackupError
from .credentials import redact_url

DEFAULT_GIT_TIMEOUT = 3600


class GitCommandError(BackupError):
    def __init__(self, command: List[str], returncode: Optional[int], output: str):
        self.command = [redact_url(arg) for arg in command]
        self.returncode = returncode
        self.output = redact_url(output or "").strip()

        status = (
            f"exit status {returncode}" if returncode is not None else "did not finish"
        )
        message = f"'{' '.join(self.command)}' failed ({status})"
        if self.output:
            message += f": {self.output[:500]}"
        super().__init__(message)


class GitOperations(ABC):
    """The two git operations a mirror backup needs"""

    @abstractmethod
    def clone_mirror(self, clone_url: str, destination: Path) -> str:
        """Create a bare mirror of clone_url at destination and return git's output"""

    @abstractmethod
    def update_mirror(self, mirror_path: Path, clone_url: str) -> str:
        """Point the mirror at clone_url, fetch every ref and prune deleted ones"""


class SubprocessGit(GitOperations):
    def __init__(self, timeout: float = DEFAULT_GIT_TIMEOUT, git_binary: str = "git"):
        self.timeout = timeout
        self.git_binary = git_binary

    def clone_mirror(self, clone_url: str, destination: Path) -> str:
        return self._run(["clone", "--mirror", clone_url, str(destination)])

    def update_mirror(self, mirror_path: Path, clone_url: str) -> str:
        # Re-set the remote first, credentials may have been rotated since the last run
        output = self._run(["remote", "set-url", "origin", clone_url], cwd=mirror_path)
        output += self._run(["remote", "update", "--prune"], cwd=mirror_path)
        return output

    def _run(self, args: List[str], cwd: Optional[Path] = None) -> str:
        command = [self.git_binary, *args]
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")

        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                cwd=str(cwd) if cwd else None,
                env=env,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = e.output if isinstance(e.output, str) else ""
            raise GitCommandError(
                command, None, f"timed out after {self.timeout}s {output}"
            ) from e
        except OSError as e:
            raise GitCommandError(command, None, str(e)) from e

        if result.returncode != 0:
            raise GitCommandError(command, result.returncode, result.stdout)
        return result.stdout or ""
