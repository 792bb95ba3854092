"""
Scan orchestration: tree -> candidates -> scheduled fetch + match -> index.

The orchestrator owns the current ScanSession and is the only thing that
mutates it. Consumers hold the session id returned by start_scan().
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import AsyncIterator, Optional, Protocol, Union

from .config import ScanConfig
from .errors import (
    AuthExpired, BinaryUnreadable, FetchFailed, RateLimited, SessionNotFound, TreeUnavailable,
)
from .github import TreeListing
from .matcher import scan_text
from .models import FileScanResult, ProgressEvent, RepositoryRef
from .rules import DEFAULT_RULESET, RuleSet
from .scheduler import Scheduler
from .session import ScanEvent, ScanSession
from .tree import build_tree, collect_candidates, is_manifest, parse_dependencies

logger = logging.getLogger(__name__)


class ContentFetcher(Protocol):
    async def fetch_tree(self, ref: RepositoryRef) -> TreeListing: ...

    async def fetch(self, ref: RepositoryRef, path: str,
                    branch: Optional[str] = None) -> Union[str, BinaryUnreadable]: ...


class ScanOrchestrator:
    """Drives one scan at a time for a single consumer."""

    def __init__(self, fetcher: ContentFetcher, rules: RuleSet = DEFAULT_RULESET,
                 config: Optional[ScanConfig] = None):
        self.fetcher = fetcher
        self.rules = rules
        self.config = config or ScanConfig()
        self._session: Optional[ScanSession] = None
        self._scheduler: Optional[Scheduler] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def session(self) -> Optional[ScanSession]:
        return self._session

    @property
    def scheduler(self) -> Optional[Scheduler]:
        return self._scheduler

    def get_session(self, handle: str) -> ScanSession:
        if self._session is None or self._session.id != handle:
            raise SessionNotFound(handle)
        return self._session

    # ─── Public surface ──────────────────────────────────────────────────────
    def start_scan(self, ref: RepositoryRef, config: Optional[ScanConfig] = None) -> str:
        """Begin a fresh session; while one is in progress this is a no-op."""
        current = self._session
        if current is not None and current.status.active:
            logger.info("Scan %s still %s; start request ignored", current.id, current.status.value)
            return current.id

        config = config or self.config
        session = ScanSession(ref)
        scheduler = Scheduler(config.max_concurrency, config.batch_size, config.batch_pause)
        self._session, self._scheduler = session, scheduler
        session.start()
        self._task = asyncio.create_task(self._run(session, scheduler, config))
        return session.id

    def subscribe_progress(self, handle: str) -> AsyncIterator[ProgressEvent]:
        return self.get_session(handle).subscribe()

    def get_issue_index(self, handle: str) -> dict:
        return self.get_session(handle).index.snapshot()

    def cancel_scan(self, handle: str) -> bool:
        session = self.get_session(handle)
        if not session.cancel():
            return False
        if self._scheduler is not None:
            self._scheduler.cancel()
        logger.info("Scan %s cancelled at %d/%d", session.id, session.files_scanned, session.files_total)
        return True

    async def wait(self, handle: str) -> ScanSession:
        session = self.get_session(handle)
        if self._task is not None:
            await asyncio.shield(self._task)
        return session

    async def shutdown(self) -> None:
        if self._session is not None and self._session.status.active:
            self.cancel_scan(self._session.id)
        if self._task is not None:
            await self._task

    # ─── Session driver ──────────────────────────────────────────────────────
    async def _run(self, session: ScanSession, scheduler: Scheduler, config: ScanConfig) -> None:
        ref = session.repository
        try:
            listing = await self.fetcher.fetch_tree(ref)
            tree = build_tree(listing.entries)
            candidates = collect_candidates(tree, config.file_extension_allowlist, max_size=config.max_file_size)
        except AuthExpired as exc:
            logger.error("Scan %s: authorization rejected while fetching tree", session.id)
            session.fail(exc, ScanEvent.AUTH_FAILED)
            return
        except TreeUnavailable as exc:
            logger.error("Scan %s: %s", session.id, exc)
            session.fail(exc, ScanEvent.TREE_FAILED)
            return
        except Exception as exc:
            logger.exception("Scan %s: unreadable tree listing", session.id)
            failure = TreeUnavailable(ref.owner, ref.name, ref.branch_candidates,
                                      reason=f"{type(exc).__name__}: {exc}")
            session.fail(failure, ScanEvent.TREE_FAILED)
            return
        if session.terminal:
            return

        truncated = listing.truncated
        if len(candidates) > config.max_files_per_scan:
            logger.warning("Scan %s: %d candidates, capped at %d",
                           session.id, len(candidates), config.max_files_per_scan)
            candidates = candidates[: config.max_files_per_scan]
            truncated = True
        session.tree_resolved(listing.branch, tree, candidates, truncated)
        if not session.accepting_results:
            return

        logger.info("Scan %s: scanning %d files from %s@%s",
                    session.id, len(candidates), ref.full_name, listing.branch)
        try:
            await scheduler.run(candidates, partial(self._scan_file, session, scheduler, config))
        except AuthExpired:
            # Session already moved to error inside _scan_file.
            pass

    async def _scan_file(self, session: ScanSession, scheduler: Scheduler,
                         config: ScanConfig, path: str) -> None:
        attempts = 0
        while True:
            if not session.accepting_results:
                return
            try:
                content = await self.fetcher.fetch(session.repository, path, session.branch)
                break
            except RateLimited as exc:
                attempts += 1
                if attempts > config.rate_limit_retries:
                    self._record_failure(session, FetchFailed(path, reason=f"rate limited after {attempts} attempts"))
                    return
                delay = exc.retry_after if exc.retry_after is not None \
                    else config.rate_limit_backoff * 2 ** (attempts - 1)
                delay = min(delay, config.rate_limit_max_wait)
                logger.warning("Rate limited on %s; retry %d/%d in %.1fs",
                               path, attempts, config.rate_limit_retries, delay)
                scheduler.backoff(delay)
                await asyncio.sleep(delay)
            except FetchFailed as exc:
                self._record_failure(session, exc)
                return
            except AuthExpired as exc:
                if session.fail(exc, ScanEvent.AUTH_FAILED):
                    logger.error("Scan %s: authorization rejected at %d/%d files",
                                 session.id, session.files_scanned, session.files_total)
                scheduler.cancel()
                raise
            except Exception as exc:
                logger.exception("Unexpected error fetching %s", path)
                self._record_failure(session, FetchFailed(path, reason=f"{type(exc).__name__}: {exc}"))
                return

        if isinstance(content, BinaryUnreadable):
            logger.debug("Skipping %s: %s", path, content.reason)
            session.record(FileScanResult(path=path, outcome="binary"))
            return
        issues = scan_text(path, content, self.rules)
        if is_manifest(path) and session.accepting_results:
            session.dependencies[path] = parse_dependencies(path, content)
        session.record(FileScanResult(path=path, issues=tuple(issues)))

    def _record_failure(self, session: ScanSession, failure: FetchFailed) -> None:
        if not session.accepting_results:
            return
        logger.warning("Fetch failed: %s", failure)
        session.warn(failure)
        session.record(FileScanResult(path=failure.path, outcome="fetch_failed", error=str(failure)))
