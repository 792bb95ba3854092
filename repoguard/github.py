"""
GitHub REST client: recursive tree listing with branch fallback, and file
content retrieval with base64 decoding.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import quote

import httpx

from .errors import AuthExpired, BinaryUnreadable, FetchFailed, RateLimited, TreeUnavailable
from .models import RepositoryRef, TreeEntry

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
USER_AGENT = "RepoGuard-Scanner/1.0"


@dataclass(frozen=True)
class TreeListing:
    branch: str
    entries: list[TreeEntry]
    truncated: bool = False


@dataclass
class RateLimitInfo:
    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset_at: Optional[float] = None

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    def seconds_until_reset(self, now: Optional[float] = None) -> Optional[float]:
        if self.reset_at is None:
            return None
        return max(self.reset_at - (now or time.time()), 0.0)


def _int_header(response: httpx.Response, name: str) -> Optional[int]:
    try:
        return int(response.headers[name])
    except (KeyError, ValueError):
        return None


def decode_content(path: str, content: Optional[str]) -> Union[str, BinaryUnreadable]:
    """Decode the contents API payload; undecodable data is binary, not an error."""
    if content is None:
        return BinaryUnreadable(path, "no inline content")
    try:
        raw = base64.b64decode(content.replace("\n", ""), validate=True)
    except (binascii.Error, ValueError):
        return BinaryUnreadable(path, "invalid base64")
    if b"\x00" in raw:
        return BinaryUnreadable(path)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return BinaryUnreadable(path, "not utf-8")


class GitHubClient:
    """Async content fetcher for one API base URL.

    A token, when present, is sent as a bearer token; without one public
    repositories still work at the lower anonymous rate ceiling.
    """

    def __init__(self, api_url: str = GITHUB_API, timeout: float = 15.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.rate_limit = RateLimitInfo()
        self.api_calls = 0

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, ref: RepositoryRef) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json", "User-Agent": USER_AGENT}
        if ref.auth_token:
            headers["Authorization"] = f"Bearer {ref.auth_token}"
        return headers

    async def _get(self, ref: RepositoryRef, url: str, params: Optional[dict] = None) -> httpx.Response:
        self.api_calls += 1
        response = await self._client.get(url, headers=self._headers(ref), params=params)
        self._update_rate_limit(response)
        return response

    def _update_rate_limit(self, response: httpx.Response) -> None:
        remaining = _int_header(response, "X-RateLimit-Remaining")
        if remaining is None:
            return
        self.rate_limit = RateLimitInfo(
            remaining=remaining,
            limit=_int_header(response, "X-RateLimit-Limit"),
            reset_at=_int_header(response, "X-RateLimit-Reset"),
        )
        if remaining < 100:
            logger.warning("GitHub API rate limit low: %s/%s remaining", remaining, self.rate_limit.limit)

    def _retry_after(self, response: httpx.Response) -> Optional[float]:
        if response.status_code not in (403, 429):
            return None
        retry_after = _int_header(response, "Retry-After")
        if retry_after is not None:
            return float(retry_after)
        if response.status_code == 429:
            return 60.0
        if _int_header(response, "X-RateLimit-Remaining") == 0:
            wait = self.rate_limit.seconds_until_reset()
            return 60.0 if wait is None else wait
        if "rate limit" in response.text.lower():
            return 60.0
        return None

    # ─── Tree ────────────────────────────────────────────────────────────────
    async def fetch_tree(self, ref: RepositoryRef) -> TreeListing:
        """Recursive tree of the first branch candidate that resolves."""
        status = None
        for branch in ref.branch_candidates:
            url = f"{self.api_url}/repos/{ref.owner}/{ref.name}/git/trees/{quote(branch, safe='')}"
            try:
                response = await self._get(ref, url, params={"recursive": "1"})
            except httpx.HTTPError as exc:
                logger.warning("Tree request for %s@%s failed: %s", ref.full_name, branch, exc)
                continue
            status = response.status_code
            if status == 401:
                raise AuthExpired()
            if response.is_success:
                data = response.json()
                entries = [TreeEntry.model_validate(item) for item in data.get("tree", [])]
                truncated = bool(data.get("truncated"))
                if truncated:
                    logger.warning("Tree for %s@%s was truncated by the API", ref.full_name, branch)
                logger.info("Resolved %s@%s: %d entries", ref.full_name, branch, len(entries))
                return TreeListing(branch=branch, entries=entries, truncated=truncated)
            logger.info("Branch %s not available for %s (HTTP %s)", branch, ref.full_name, status)
        raise TreeUnavailable(ref.owner, ref.name, ref.branch_candidates, status)

    # ─── Content ─────────────────────────────────────────────────────────────
    async def fetch(self, ref: RepositoryRef, path: str,
                    branch: Optional[str] = None) -> Union[str, BinaryUnreadable]:
        url = f"{self.api_url}/repos/{ref.owner}/{ref.name}/contents/{quote(path)}"
        try:
            response = await self._get(ref, url, params={"ref": branch} if branch else None)
        except httpx.HTTPError as exc:
            raise FetchFailed(path, reason=f"{type(exc).__name__}: {exc}") from exc

        if response.status_code == 401:
            raise AuthExpired()
        retry_after = self._retry_after(response)
        if retry_after is not None:
            raise RateLimited(path, retry_after)
        if not response.is_success:
            raise FetchFailed(path, response.status_code)

        data = response.json()
        if isinstance(data, list):
            raise FetchFailed(path, response.status_code, "path is a directory")
        return decode_content(path, data.get("content"))
