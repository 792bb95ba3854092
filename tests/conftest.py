"""Shared fixtures: an in-memory stand-in for the GitHub content API."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from repoguard.config import ScanConfig
from repoguard.errors import BinaryUnreadable
from repoguard.github import TreeListing
from repoguard.models import RepositoryRef, TreeEntry

BINARY = object()


class FakeFetcher:
    """Serves a fixed file map.

    A file's value may be text, BINARY, an exception instance to raise, or a
    list of those consumed one per fetch.
    """

    def __init__(self, files: dict, branch: str = "main", delay: float = 0.0,
                 tree_error: Optional[Exception] = None, delays: Optional[dict] = None,
                 gate: Optional[asyncio.Event] = None, gated: frozenset = frozenset()):
        self.files = dict(files)
        self.branch = branch
        self.delay = delay
        self.delays = delays or {}
        self.tree_error = tree_error
        self.gate = gate
        self.gated = gated
        self.calls: list[str] = []
        self.branches: list[Optional[str]] = []
        self.in_flight = 0
        self.peak = 0

    async def fetch_tree(self, ref: RepositoryRef) -> TreeListing:
        if self.tree_error is not None:
            raise self.tree_error
        entries = [TreeEntry(path=path, type="blob", size=100, sha="0" * 40) for path in self.files]
        return TreeListing(branch=self.branch, entries=entries)

    async def fetch(self, ref: RepositoryRef, path: str, branch: Optional[str] = None):
        self.calls.append(path)
        self.branches.append(branch)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(path, self.delay))
            if self.gate is not None and path in self.gated:
                await self.gate.wait()
            value = self.files[path]
            if isinstance(value, list):
                value = value.pop(0)
            if isinstance(value, BaseException):
                raise value
            if value is BINARY:
                return BinaryUnreadable(path)
            return value
        finally:
            self.in_flight -= 1


@pytest.fixture
def repo_ref():
    return RepositoryRef(owner="acme", name="widgets")


@pytest.fixture
def fast_config():
    return ScanConfig(max_concurrency=10, batch_pause=0, rate_limit_backoff=0)


async def wait_until(predicate, attempts: int = 500):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")
