"""
Per-target backup pipeline and batch driver

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

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger
from tqdm import tqdm

from .base import (
    DEFAULT_API_TIMEOUT,
    BackupError,
    Repository,
    RepositoryManager,
    Target,
)
from .filters import InclusionFilter
from .git_ops import DEFAULT_GIT_TIMEOUT, SubprocessGit
from .mirror import BackupOutcome, BackupStatus, MirrorSynchronizer
from .providers import get_manager

DEFAULT_PROVIDER_CONCURRENCY = 4


@dataclass
class TargetSummary:
    target: str
    discovered: int
    outcomes: List[BackupOutcome] = field(default_factory=list)

    def _count(self, status: BackupStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(BackupStatus.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self._count(BackupStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(BackupStatus.FAILED)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def __str__(self) -> str:
        return f"{self.succeeded}/{self.discovered} succeeded"


@dataclass
class BatchResult:
    summaries: Dict[str, TargetSummary] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return (
            not self.errors
            and not self.cancelled
            and all(summary.ok for summary in self.summaries.values())
        )


class ProviderLimits:
    """Caps the number of simultaneous API calls and git operations per provider"""

    def __init__(self, max_concurrency: int = DEFAULT_PROVIDER_CONCURRENCY):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._semaphores: Dict[str, threading.BoundedSemaphore] = {}
        self._guard = threading.Lock()

    def limit(self, provider: str) -> threading.BoundedSemaphore:
        with self._guard:
            if provider not in self._semaphores:
                self._semaphores[provider] = threading.BoundedSemaphore(
                    self.max_concurrency
                )
            return self._semaphores[provider]


ManagerFactory = Callable[..., RepositoryManager]


class TargetRunner:
    def __init__(
        self,
        backup_root,
        workers: int = 1,
        api_timeout: float = DEFAULT_API_TIMEOUT,
        git_timeout: float = DEFAULT_GIT_TIMEOUT,
        provider_concurrency: int = DEFAULT_PROVIDER_CONCURRENCY,
        cancel_event: Optional[threading.Event] = None,
        synchronizer: Optional[MirrorSynchronizer] = None,
        manager_factory: ManagerFactory = get_manager,
        show_progress: bool = True,
    ):
        """
        Args:
            backup_root: Directory holding one sub-directory per target
            workers: Repositories synchronized in parallel within a target
            api_timeout: Timeout in seconds for provider API requests
            git_timeout: Timeout in seconds for a single git operation
            provider_concurrency: Simultaneous operations allowed per provider
            cancel_event: Once set, no new synchronization is started
            synchronizer: Mirror synchronizer, built from backup_root if omitted
            manager_factory: Builds the provider client for a target
            show_progress: Display a progress bar while synchronizing
        """
        self.workers = max(1, workers)
        self.api_timeout = api_timeout
        self.limits = ProviderLimits(provider_concurrency)
        self.cancel_event = cancel_event or threading.Event()
        self.synchronizer = synchronizer or MirrorSynchronizer(
            backup_root, git=SubprocessGit(timeout=git_timeout)
        )
        self.manager_factory = manager_factory
        self.show_progress = show_progress

    def run_target(self, target: Target) -> TargetSummary:
        """
        Back up every repository of one target.

        Raises:
            ConfigurationError: The target's source or filters are invalid
            DiscoveryError: The list of repositories could not be retrieved
        """
        log = logger.bind(target=target.name)
        log.info(
            f"[TARGET] Backing up target {target.name} ({target.source}:{target.entity})"
        )

        inclusion = InclusionFilter.for_target(target)
        manager = self.manager_factory(target, timeout=self.api_timeout, logger=log)

        with self.limits.limit(target.source):
            repos = manager.list_repositories()
        log.info(f"[DISCOVER] Found {len(repos)} repositories for {target.name}")

        self.synchronizer.cleanup_stale_temps(target.name, logger=log)

        outcomes: Dict[str, BackupOutcome] = {}
        selected = []
        for repo in repos:
            if inclusion.includes(repo.name):
                selected.append(repo)
            else:
                log.info(f"[SKIP] {repo.name} excluded by the target's filters")
                outcomes[repo.name] = BackupOutcome(
                    repo.name, BackupStatus.SKIPPED, message="excluded by filter"
                )

        outcomes.update(self._synchronize(target, selected, log))

        summary = TargetSummary(
            target=target.name,
            discovered=len(repos),
            outcomes=[outcomes[repo.name] for repo in repos],
        )
        log.info(
            f"[SUMMARY] Backed up {summary} "
            f"({summary.skipped} skipped, {summary.failed} failed)"
        )
        if summary.failed:
            failed_names = [
                o.repository
                for o in summary.outcomes
                if o.status == BackupStatus.FAILED
            ]
            log.error(f"[FAIL] Failed repositories: {', '.join(failed_names)}")
        return summary

    def _sync_one(self, target: Target, repo: Repository, log) -> BackupOutcome:
        if self.cancel_event.is_set():
            return BackupOutcome(repo.name, BackupStatus.SKIPPED, message="cancelled")

        with self.limits.limit(target.source):
            return self.synchronizer.sync_mirror(
                target.name,
                repo.name,
                repo.clone_url,
                logger=log.bind(repository=repo.name),
            )

    def _synchronize(
        self, target: Target, repos: List[Repository], log
    ) -> Dict[str, BackupOutcome]:
        outcomes: Dict[str, BackupOutcome] = {}
        if not repos:
            return outcomes

        if self.workers == 1:
            with tqdm(
                repos, desc=target.name, unit="repo", disable=not self.show_progress
            ) as pbar:
                for repo in pbar:
                    pbar.set_description(f"[BACKUP] {target.name}/{repo.name}")
                    outcomes[repo.name] = self._guarded_sync(target, repo, log)
            return outcomes

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {
                executor.submit(self._sync_one, target, repo, log): repo
                for repo in repos
            }

            with tqdm(
                total=len(repos),
                desc=target.name,
                unit="repo",
                disable=not self.show_progress,
            ) as pbar:
                for future in as_completed(futures):
                    repo = futures[future]
                    try:
                        outcomes[repo.name] = future.result()
                    except Exception as e:
                        log.error(
                            f"[ERROR] Error backing up {repo.name}: {type(e).__name__}: {e}"
                        )
                        outcomes[repo.name] = BackupOutcome(
                            repo.name, BackupStatus.FAILED, message=str(e)
                        )
                    pbar.update(1)

        return outcomes

    def _guarded_sync(self, target: Target, repo: Repository, log) -> BackupOutcome:
        try:
            return self._sync_one(target, repo, log)
        except Exception as e:
            log.error(f"[ERROR] Error backing up {repo.name}: {type(e).__name__}: {e}")
            return BackupOutcome(repo.name, BackupStatus.FAILED, message=str(e))


def run_batch(
    targets: Sequence[Target], runner: TargetRunner, target_workers: int = 1
) -> BatchResult:
    """
    Back up every target, one failing target never stops the others.

    Filter patterns of all targets are compiled before anything else, an
    invalid pattern raises ConfigurationError for the whole run.
    """
    for target in targets:
        InclusionFilter.for_target(target)

    result = BatchResult()

    def run(target: Target):
        if runner.cancel_event.is_set():
            return
        log = logger.bind(target=target.name)
        try:
            result.summaries[target.name] = runner.run_target(target)
        except BackupError as e:
            log.error(f"[ERROR] Target {target.name} skipped: {e}")
            result.errors[target.name] = str(e)
        except Exception as e:
            log.error(
                f"[ERROR] Target {target.name} skipped: {type(e).__name__}: {e}"
            )
            result.errors[target.name] = f"{type(e).__name__}: {e}"

    if target_workers <= 1:
        for target in targets:
            run(target)
    else:
        with ThreadPoolExecutor(max_workers=target_workers) as executor:
            for future in as_completed([executor.submit(run, t) for t in targets]):
                future.result()

    result.cancelled = runner.cancel_event.is_set()
    if result.cancelled:
        logger.warning(
            "[CANCEL] Backup cancelled, remaining repositories were not synchronized"
        )
    return result
