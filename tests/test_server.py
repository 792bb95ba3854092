"""HTTP API tests, served in-process through httpx's ASGI transport."""

import asyncio
import json

import pytest
from httpx import ASGITransport, AsyncClient

import server

from .conftest import FakeFetcher

FILES = {
    "app.py": 'API_KEY = "sk-abcdEFGH1234567890abcd"\n',
    "src/util.js": "el.innerHTML = data;\n",
    "README.md": "# widgets\n",
}


@pytest.fixture
def fetcher():
    fake = FakeFetcher(FILES)
    server.SCANNERS.clear()
    server.JOBS.clear()
    server.set_fetcher(fake)
    yield fake
    server.SCANNERS.clear()
    server.JOBS.clear()
    server.set_fetcher(None)


def client():
    return AsyncClient(transport=ASGITransport(app=server.app), base_url="http://test")


async def finish(scan_id):
    await server.SCANNERS[server.JOBS[scan_id]].wait(scan_id)


async def start(ac, **body):
    response = await ac.post("/scan/repo", json={"owner": "acme", "name": "widgets", **body})
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_health():
    async with client() as ac:
        response = await ac.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_rules_catalogue():
    async with client() as ac:
        rules = (await ac.get("/rules")).json()["rules"]
    ids = [rule["id"] for rule in rules]
    assert "SECRET-OPENAI-KEY" in ids
    assert len(ids) == len(set(ids))
    assert {"id", "category", "severity", "pattern"} <= set(rules[0])


@pytest.mark.asyncio
async def test_scan_flow(fetcher):
    async with client() as ac:
        started = await start(ac)
        scan_id = started["scan_id"]
        assert started["started"]
        await finish(scan_id)

        summary = (await ac.get(f"/scan/{scan_id}")).json()
        assert summary["status"] == "complete"
        assert summary["files_scanned"] == summary["files_total"] == 3
        assert summary["branch"] == "main"

        issues = (await ac.get(f"/scan/{scan_id}/issues")).json()
        assert issues["totals"] == {"high": 1, "medium": 1, "low": 0}
        assert issues["by_path"]["README.md"] == []

        tree = (await ac.get(f"/scan/{scan_id}/tree")).json()["tree"]
        assert [node["name"] for node in tree] == ["src", "README.md", "app.py"]


@pytest.mark.asyncio
async def test_url_target_and_bearer_token(fetcher):
    async with client() as ac:
        response = await ac.post(
            "/scan/repo",
            json={"url": "https://github.com/acme/widgets.git"},
            headers={"Authorization": "Bearer ghp_test"},
        )
        assert response.status_code == 200
        await finish(response.json()["scan_id"])
    session = server.SCANNERS["acme/widgets"].session
    assert session.repository.full_name == "acme/widgets"
    assert session.repository.auth_token == "ghp_test"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {},
    {"url": "https://gitlab.com/acme/widgets"},
    {"owner": "acme", "name": "widgets", "branches": []},
    {"owner": "acme", "name": "widgets", "config": {"max_concurrency": 50}},
])
async def test_invalid_requests(fetcher, body):
    async with client() as ac:
        response = await ac.post("/scan/repo", json=body)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_reports(fetcher):
    async with client() as ac:
        scan_id = (await start(ac))["scan_id"]
        await finish(scan_id)

        report = (await ac.get(f"/report/{scan_id}")).json()
        assert report["verdict"] == "FAIL"
        assert report["coverage"]["complete"]
        assert report["findings"][0]["rule_id"] == "SECRET-OPENAI-KEY"

        text = await ac.get(f"/report/{scan_id}", params={"format": "text"})
        assert text.headers["content-type"].startswith("text/plain")
        assert "Verdict:  FAIL" in text.text

        assert (await ac.get(f"/report/{scan_id}", params={"format": "pdf"})).status_code == 400


@pytest.mark.asyncio
async def test_report_pending_while_scanning(fetcher):
    fetcher.gate = asyncio.Event()
    fetcher.gated = frozenset({"app.py"})
    async with client() as ac:
        scan_id = (await start(ac))["scan_id"]
        assert (await ac.get(f"/report/{scan_id}")).status_code == 202
        again = await start(ac)
        assert again == {"scan_id": scan_id, "status": again["status"], "started": False}
        fetcher.gate.set()
        await finish(scan_id)
        assert (await ac.get(f"/report/{scan_id}")).status_code == 200


@pytest.mark.asyncio
async def test_event_stream(fetcher):
    fetcher.delay = 0.001
    async with client() as ac:
        scan_id = (await start(ac))["scan_id"]
        response = await ac.get(f"/scan/{scan_id}/events")
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [json.loads(chunk[len("data: "):]) for chunk in response.text.split("\n\n") if chunk]
    assert events[-1]["status"] == "complete"
    assert events[-1]["files_scanned"] == 3


@pytest.mark.asyncio
async def test_cancel(fetcher):
    fetcher.gate = asyncio.Event()
    fetcher.gated = frozenset(FILES)
    async with client() as ac:
        scan_id = (await start(ac))["scan_id"]
        response = await ac.delete(f"/scan/{scan_id}")
        assert response.json() == {"scan_id": scan_id, "cancelled": True, "status": "cancelled"}
        fetcher.gate.set()
        await finish(scan_id)
        summary = (await ac.get(f"/scan/{scan_id}")).json()
        assert summary["status"] == "cancelled"
        assert summary["files_scanned"] == 0
        assert (await ac.delete(f"/scan/{scan_id}")).json()["cancelled"] is False


@pytest.mark.asyncio
async def test_rescan_replaces_old_id(fetcher):
    async with client() as ac:
        first = (await start(ac))["scan_id"]
        await finish(first)
        second = (await start(ac))["scan_id"]
        assert second != first
        await finish(second)
        assert (await ac.get(f"/scan/{first}")).status_code == 404
        assert (await ac.get(f"/scan/{second}")).status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/scan/nope", "/scan/nope/issues", "/scan/nope/tree", "/report/nope"])
async def test_unknown_scan(fetcher, path):
    async with client() as ac:
        assert (await ac.get(path)).status_code == 404
