"""
RepoGuard API — FastAPI Server
==============================
Scans a GitHub repository's file tree for hardcoded secrets, PII, insecure
constructs and review markers via REST API. Results stream in while the scan
runs; poll or subscribe.

Usage:
    pip install -e .
    uvicorn server:app --reload --port 8000

Endpoints:
    POST   /scan/repo          — start scanning owner/name (bearer token optional)
    GET    /scan/{id}          — poll scan status + progress
    GET    /scan/{id}/issues   — issue index snapshot (partial while scanning)
    GET    /scan/{id}/tree     — nested repository tree
    GET    /scan/{id}/events   — progress as server-sent events
    DELETE /scan/{id}          — cancel a running scan
    GET    /report/{id}        — JSON or plain-text report
    GET    /rules              — detection rule catalogue
    GET    /health             — health check
"""

from __future__ import annotations
import json, logging, re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError, model_validator

from repoguard import __version__
from repoguard.config import load_settings
from repoguard.errors import SessionNotFound
from repoguard.github import GitHubClient
from repoguard.models import RepositoryRef
from repoguard.orchestrator import ContentFetcher, ScanOrchestrator
from repoguard.report import build_report, format_text_report
from repoguard.rules import DEFAULT_RULESET

SETTINGS = load_settings()
logging.basicConfig(level=SETTINGS.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("repoguard.server")

# ─── Scan registry (one orchestrator per repository; swap for Redis in production) ──
SCANNERS: dict[str, ScanOrchestrator] = {}
JOBS: dict[str, str] = {}            # scan_id -> repository key
_FETCHER: Optional[ContentFetcher] = None


def get_fetcher() -> ContentFetcher:
    global _FETCHER
    if _FETCHER is None:
        _FETCHER = GitHubClient(SETTINGS.api_url, SETTINGS.timeout)
    return _FETCHER


def set_fetcher(fetcher: Optional[ContentFetcher]) -> None:
    global _FETCHER
    _FETCHER = fetcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    for orchestrator in SCANNERS.values():
        await orchestrator.shutdown()
    if isinstance(_FETCHER, GitHubClient):
        await _FETCHER.aclose()


# ─── App setup ───────────────────────────────────────────────────────────────
app = FastAPI(
    title="RepoGuard API",
    version=__version__,
    description="Line-based SAST for GitHub repositories — secrets, PII, insecure code, review markers",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],         # restrict to your domain in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─── Models ──────────────────────────────────────────────────────────────────
GITHUB_URL = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/([^/\s]+)/([^/\s]+?)(?:\.git)?/?$")


class ScanOptions(BaseModel):
    max_concurrency: Optional[int] = None
    file_extension_allowlist: Optional[list[str]] = None
    max_files_per_scan: Optional[int] = None


class RepoScanRequest(BaseModel):
    owner: Optional[str] = None
    name: Optional[str] = None
    url: Optional[str] = None
    branches: list[str] = Field(default_factory=lambda: ["main", "master"], min_length=1)
    token: Optional[str] = None
    config: Optional[ScanOptions] = None

    @model_validator(mode="after")
    def _resolve_target(self):
        if self.url and not (self.owner and self.name):
            match = GITHUB_URL.match(self.url.strip())
            if not match:
                raise ValueError(f"Not a GitHub repository URL: {self.url}")
            self.owner, self.name = match.groups()
        if not (self.owner and self.name):
            raise ValueError("owner and name (or url) are required")
        return self


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    return token.strip() if scheme.lower() in ("bearer", "token") and token.strip() else None


def _lookup(scan_id: str) -> ScanOrchestrator:
    key = JOBS.get(scan_id)
    if key is None or key not in SCANNERS:
        raise HTTPException(status_code=404, detail=f"Scan {scan_id} not found")
    return SCANNERS[key]


def _session(scan_id: str):
    try:
        return _lookup(scan_id).get_session(scan_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail=f"Scan {scan_id} was replaced by a newer scan")


# ─── API Endpoints ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    """Health check endpoint — use for load balancer / k8s probes."""
    return {"status": "ok", "version": __version__}


@app.get("/rules")
def list_rules():
    """Static detection rules, in evaluation order."""
    return {"rules": [rule.to_dict() for rule in DEFAULT_RULESET]}


@app.post("/scan/repo")
async def scan_repo(request: RepoScanRequest, authorization: Optional[str] = Header(default=None)):
    """
    Start scanning a GitHub repository.
    Returns a scan_id immediately; poll /scan/{id} or stream /scan/{id}/events.
    A repository that is already being scanned returns the running scan.
    """
    options = request.config.model_dump(exclude_none=True) if request.config else {}
    try:
        config = SETTINGS.scan_config(**options)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=json.loads(e.json()))

    ref = RepositoryRef(
        owner=request.owner, name=request.name,
        branch_candidates=tuple(request.branches),
        auth_token=_bearer(authorization) or request.token or SETTINGS.token,
    )
    orchestrator = SCANNERS.get(ref.full_name)
    if orchestrator is None:
        orchestrator = SCANNERS[ref.full_name] = ScanOrchestrator(get_fetcher(), config=config)

    previous = orchestrator.session
    scan_id = orchestrator.start_scan(ref, config)
    started = previous is None or previous.id != scan_id
    if started and previous is not None:
        JOBS.pop(previous.id, None)
    JOBS[scan_id] = ref.full_name
    session = orchestrator.get_session(scan_id)
    return {"scan_id": scan_id, "status": session.status.value, "started": started}


@app.get("/scan/{scan_id}")
def get_scan(scan_id: str):
    """Poll for scan status and progress."""
    return _session(scan_id).summary()


@app.get("/scan/{scan_id}/issues")
def get_issues(scan_id: str):
    """Issue index snapshot; reflects partial results while scanning."""
    orchestrator = _lookup(scan_id)
    _session(scan_id)
    return orchestrator.get_issue_index(scan_id)


@app.get("/scan/{scan_id}/tree")
def get_tree(scan_id: str):
    session = _session(scan_id)
    return {"branch": session.branch, "tree": [node.model_dump() for node in session.tree]}


@app.get("/scan/{scan_id}/events")
async def scan_events(scan_id: str):
    """Server-sent progress events; the stream ends when the scan does."""
    orchestrator = _lookup(scan_id)
    _session(scan_id)

    async def stream():
        async for event in orchestrator.subscribe_progress(scan_id):
            yield f"data: {event.model_dump_json()}\n\n"

    return StreamingResponse(stream(), media_type="text/event-stream")


@app.delete("/scan/{scan_id}")
def cancel_scan(scan_id: str):
    """Stop dispatching new fetches; results that arrive afterwards are discarded."""
    orchestrator = _lookup(scan_id)
    _session(scan_id)
    cancelled = orchestrator.cancel_scan(scan_id)
    return {"scan_id": scan_id, "cancelled": cancelled, "status": orchestrator.get_session(scan_id).status.value}


@app.get("/report/{scan_id}")
def download_report(scan_id: str, format: str = "json"):
    """Download the full report as JSON or plain text."""
    session = _session(scan_id)
    if session.status.active:
        raise HTTPException(status_code=202, detail="Scan not yet complete")

    report = build_report(session)
    if format == "json":
        return JSONResponse(json.loads(json.dumps(report, default=str)))
    if format == "text":
        return PlainTextResponse(format_text_report(report))
    raise HTTPException(status_code=400, detail=f"Unknown format: {format}")
