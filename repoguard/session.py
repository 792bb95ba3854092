"""
Scan session state and its lifecycle state machine.

    idle ──start──▶ fetching_tree ──tree_ready──▶ scanning ──all_done──▶ complete
                         │  └──tree_empty──▶ complete     │ ▲
                         └──tree_failed / auth_failed──▶ error ◀──auth_failed──┘ └─file_done
    idle / fetching_tree / scanning ──cancel──▶ cancelled
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Optional

from .errors import FetchFailed, ScanError
from .index import IssueIndex
from .models import FileScanResult, ProgressEvent, RepositoryRef, ScanStatus, TreeNode, utcnow

logger = logging.getLogger(__name__)


class ScanEvent(str, Enum):
    START = "start"
    TREE_READY = "tree_ready"
    TREE_EMPTY = "tree_empty"
    TREE_FAILED = "tree_failed"
    FILE_DONE = "file_done"
    ALL_DONE = "all_done"
    AUTH_FAILED = "auth_failed"
    CANCEL = "cancel"


TRANSITIONS: dict[tuple[ScanStatus, ScanEvent], ScanStatus] = {
    (ScanStatus.IDLE, ScanEvent.START): ScanStatus.FETCHING_TREE,
    (ScanStatus.FETCHING_TREE, ScanEvent.TREE_READY): ScanStatus.SCANNING,
    (ScanStatus.FETCHING_TREE, ScanEvent.TREE_EMPTY): ScanStatus.COMPLETE,
    (ScanStatus.FETCHING_TREE, ScanEvent.TREE_FAILED): ScanStatus.ERROR,
    (ScanStatus.FETCHING_TREE, ScanEvent.AUTH_FAILED): ScanStatus.ERROR,
    (ScanStatus.SCANNING, ScanEvent.FILE_DONE): ScanStatus.SCANNING,
    (ScanStatus.SCANNING, ScanEvent.ALL_DONE): ScanStatus.COMPLETE,
    (ScanStatus.SCANNING, ScanEvent.AUTH_FAILED): ScanStatus.ERROR,
    (ScanStatus.IDLE, ScanEvent.CANCEL): ScanStatus.CANCELLED,
    (ScanStatus.FETCHING_TREE, ScanEvent.CANCEL): ScanStatus.CANCELLED,
    (ScanStatus.SCANNING, ScanEvent.CANCEL): ScanStatus.CANCELLED,
}


def transition(state: ScanStatus, event: ScanEvent) -> ScanStatus:
    """Next state for (state, event). Pairs not in the table leave the state unchanged."""
    return TRANSITIONS.get((state, event), state)


class ScanSession:
    """Everything known about one scan attempt.

    Only the orchestrator calls the mutating methods; consumers read
    attributes, take snapshots, or subscribe to progress.
    """

    def __init__(self, repository: RepositoryRef, session_id: Optional[str] = None):
        self.id = session_id or uuid.uuid4().hex[:8]
        self.repository = repository
        self.status = ScanStatus.IDLE
        self.branch: Optional[str] = None
        self.tree: list[TreeNode] = []
        self.candidates: list[str] = []
        self.files_total = 0
        self.files_scanned = 0
        self.truncated = False
        self.index = IssueIndex()
        self.warnings: list[dict] = []
        self.dependencies: dict[str, list[str]] = {}
        self.error: Optional[ScanError] = None
        self.created_at: datetime = utcnow()
        self.finished_at: Optional[datetime] = None
        self._subscribers: list[asyncio.Queue] = []

    def __repr__(self) -> str:
        return f"<ScanSession {self.id} {self.repository.full_name} {self.status.value} {self.files_scanned}/{self.files_total}>"

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    @property
    def accepting_results(self) -> bool:
        return self.status is ScanStatus.SCANNING

    # ─── Transitions ─────────────────────────────────────────────────────────
    def apply(self, event: ScanEvent, path: Optional[str] = None) -> bool:
        """Apply *event*; returns False when the event was ignored."""
        new = transition(self.status, event)
        if (self.status, event) not in TRANSITIONS:
            logger.debug("Session %s ignored %s in state %s", self.id, event.value, self.status.value)
            return False
        if new is not self.status:
            logger.info("Session %s: %s -> %s", self.id, self.status.value, new.value)
        self.status = new
        if new.terminal and self.finished_at is None:
            self.finished_at = utcnow()
        self._publish(path)
        return True

    def start(self) -> bool:
        return self.apply(ScanEvent.START)

    def tree_resolved(self, branch: str, tree: list[TreeNode], candidates: list[str], truncated: bool = False) -> None:
        self.branch = branch
        self.tree = tree
        self.candidates = candidates
        self.files_total = len(candidates)
        self.truncated = truncated
        self.apply(ScanEvent.TREE_READY if candidates else ScanEvent.TREE_EMPTY)

    def fail(self, error: ScanError, event: ScanEvent) -> bool:
        if (self.status, event) not in TRANSITIONS:
            return False
        self.error = error
        return self.apply(event)

    def record(self, result: FileScanResult) -> bool:
        """Store one file's result and tick progress; dropped unless scanning."""
        if not self.accepting_results:
            logger.debug("Session %s discarded late result for %s", self.id, result.path)
            return False
        self.index.record(result)
        self.files_scanned += 1
        self.apply(ScanEvent.FILE_DONE, result.path)
        if self.files_scanned >= self.files_total:
            self.apply(ScanEvent.ALL_DONE)
        return True

    def warn(self, failure: FetchFailed) -> None:
        self.warnings.append(failure.to_dict())

    def cancel(self) -> bool:
        return self.apply(ScanEvent.CANCEL)

    # ─── Progress ────────────────────────────────────────────────────────────
    def progress(self, path: Optional[str] = None) -> ProgressEvent:
        return ProgressEvent(
            files_scanned=self.files_scanned, files_total=self.files_total,
            status=self.status, path=path,
        )

    def _publish(self, path: Optional[str] = None) -> None:
        event = self.progress(path)
        for queue in self._subscribers:
            queue.put_nowait(event)

    async def subscribe(self) -> AsyncIterator[ProgressEvent]:
        """Current progress, then every later event until a terminal status."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            current = self.progress()
            yield current
            if current.status.terminal:
                return
            while True:
                event = await queue.get()
                yield event
                if event.status.terminal:
                    return
        finally:
            self._subscribers.remove(queue)

    def summary(self) -> dict:
        return {
            "scan_id": self.id,
            "target": self.repository.full_name,
            "branch": self.branch,
            "status": self.status.value,
            "files_total": self.files_total,
            "files_scanned": self.files_scanned,
            "truncated": self.truncated,
            "totals": self.index.totals,
            "warnings": list(self.warnings),
            "error": self.error.to_dict() if self.error else None,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
