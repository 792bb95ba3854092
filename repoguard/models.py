"""Core data models shared by the scan engine and the API layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["high", "medium", "low"]
Category = Literal["secrets", "pii", "insecure", "review"]
Outcome = Literal["scanned", "binary", "fetch_failed"]

SEVERITY_ORDER: tuple[str, ...] = ("high", "medium", "low")
SEVERITY_RANK = {sev: idx for idx, sev in enumerate(SEVERITY_ORDER)}
CATEGORIES: tuple[str, ...] = ("secrets", "pii", "insecure", "review")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanStatus(str, Enum):
    IDLE = "idle"
    FETCHING_TREE = "fetching_tree"
    SCANNING = "scanning"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (ScanStatus.COMPLETE, ScanStatus.ERROR, ScanStatus.CANCELLED)

    @property
    def active(self) -> bool:
        return self in (ScanStatus.FETCHING_TREE, ScanStatus.SCANNING)


class RepositoryRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)
    branch_candidates: tuple[str, ...] = ("main", "master")
    auth_token: Optional[str] = Field(default=None, repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class TreeEntry(BaseModel):
    """One item of the remote recursive tree listing."""

    path: str
    type: str
    size: Optional[int] = None
    sha: Optional[str] = None


class TreeNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    name: str
    kind: Literal["file", "directory"]
    size: Optional[int] = None
    sha: Optional[str] = None
    children: tuple["TreeNode", ...] = ()

    @property
    def is_dir(self) -> bool:
        return self.kind == "directory"


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_id: str
    line: int = Field(ge=1)
    severity: Severity
    category: Category
    message: str
    recommendation: str
    matched_text: str
    context_snippet: str


class FileScanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    issues: tuple[Issue, ...] = ()
    scanned_at: datetime = Field(default_factory=utcnow)
    outcome: Outcome = "scanned"
    error: Optional[str] = None

    @property
    def clean(self) -> bool:
        return self.outcome == "scanned" and not self.issues


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    files_scanned: int
    files_total: int
    status: ScanStatus
    path: Optional[str] = None
