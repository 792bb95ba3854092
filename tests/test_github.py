"""Tests for the GitHub client against a mocked transport."""

import base64

import httpx
import pytest

from repoguard.errors import AuthExpired, BinaryUnreadable, FetchFailed, RateLimited, TreeUnavailable
from repoguard.github import GitHubClient, decode_content
from repoguard.models import RepositoryRef

API = "https://api.test"


def b64(data: bytes) -> str:
    encoded = base64.b64encode(data).decode()
    # the contents API wraps base64 at 60 columns
    return "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))


def make_client(handler) -> GitHubClient:
    return GitHubClient(API, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture
def ref():
    return RepositoryRef(owner="acme", name="widgets", auth_token="tok-123")


class TestFetchTree:
    @pytest.mark.asyncio
    async def test_falls_back_to_next_branch(self, ref):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request.url.path)
            if request.url.path.endswith("/main"):
                return httpx.Response(404, json={"message": "Not Found"})
            assert request.url.params["recursive"] == "1"
            return httpx.Response(200, json={"tree": [
                {"path": "app.py", "type": "blob", "size": 12, "sha": "abc"},
            ], "truncated": False})

        listing = await make_client(handler).fetch_tree(ref)
        assert listing.branch == "master"
        assert [e.path for e in listing.entries] == ["app.py"]
        assert seen == ["/repos/acme/widgets/git/trees/main", "/repos/acme/widgets/git/trees/master"]

    @pytest.mark.asyncio
    async def test_all_branches_missing(self, ref):
        client = make_client(lambda request: httpx.Response(404))
        with pytest.raises(TreeUnavailable) as info:
            await client.fetch_tree(ref)
        assert info.value.branches == ("main", "master")
        assert info.value.status == 404
        assert info.value.retryable

    @pytest.mark.asyncio
    async def test_unauthorized_is_fatal(self, ref):
        client = make_client(lambda request: httpx.Response(401))
        with pytest.raises(AuthExpired):
            await client.fetch_tree(ref)
        assert client.api_calls == 1

    @pytest.mark.asyncio
    async def test_truncated_flag(self, ref):
        client = make_client(lambda request: httpx.Response(200, json={"tree": [], "truncated": True}))
        listing = await client.fetch_tree(ref)
        assert listing.truncated


class TestAuthHeaders:
    @pytest.mark.asyncio
    async def test_bearer_token_sent(self, ref):
        captured = {}

        def handler(request):
            captured.update(request.headers)
            return httpx.Response(200, json={"content": b64(b"x = 1\n")})

        await make_client(handler).fetch(ref, "app.py")
        assert captured["authorization"] == "Bearer tok-123"

    @pytest.mark.asyncio
    async def test_anonymous_request_has_no_auth_header(self):
        captured = {}

        def handler(request):
            captured.update(request.headers)
            return httpx.Response(200, json={"content": b64(b"x = 1\n")})

        await make_client(handler).fetch(RepositoryRef(owner="o", name="r"), "app.py")
        assert "authorization" not in captured


class TestFetchContent:
    @pytest.mark.asyncio
    async def test_decodes_text_and_passes_branch(self, ref):
        def handler(request):
            assert request.url.path == "/repos/acme/widgets/contents/src/app.py"
            assert request.url.params["ref"] == "develop"
            return httpx.Response(200, json={"content": b64("naïve = True\n".encode()), "size": 14})

        assert await make_client(handler).fetch(ref, "src/app.py", "develop") == "naïve = True\n"

    @pytest.mark.asyncio
    async def test_binary_content_is_not_an_error(self, ref):
        client = make_client(lambda r: httpx.Response(200, json={"content": b64(b"\x89PNG\x00\x01\xff")}))
        result = await client.fetch(ref, "logo.py")
        assert isinstance(result, BinaryUnreadable)
        assert result.path == "logo.py"

    @pytest.mark.asyncio
    async def test_missing_content_is_unreadable(self, ref):
        client = make_client(lambda r: httpx.Response(200, json={"encoding": "none", "size": 5_000_000}))
        assert isinstance(await client.fetch(ref, "big.json"), BinaryUnreadable)

    @pytest.mark.asyncio
    async def test_unauthorized(self, ref):
        with pytest.raises(AuthExpired):
            await make_client(lambda r: httpx.Response(401)).fetch(ref, "a.py")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 500, 502])
    async def test_other_errors_are_per_file(self, ref, status):
        with pytest.raises(FetchFailed) as info:
            await make_client(lambda r: httpx.Response(status)).fetch(ref, "a.py")
        assert info.value.path == "a.py"
        assert info.value.status == status

    @pytest.mark.asyncio
    async def test_transport_error_is_per_file(self, ref):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        with pytest.raises(FetchFailed):
            await make_client(handler).fetch(ref, "a.py")

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, ref):
        def handler(request):
            return httpx.Response(403, headers={"X-RateLimit-Remaining": "0", "Retry-After": "7"},
                                  json={"message": "API rate limit exceeded"})

        with pytest.raises(RateLimited) as info:
            await make_client(handler).fetch(ref, "a.py")
        assert info.value.retry_after == 7

    @pytest.mark.asyncio
    async def test_secondary_rate_limit_429(self, ref):
        client = make_client(lambda r: httpx.Response(429, headers={"Retry-After": "3"}))
        with pytest.raises(RateLimited) as info:
            await client.fetch(ref, "a.py")
        assert info.value.retry_after == 3

    @pytest.mark.asyncio
    async def test_zero_retry_after_is_honoured(self, ref):
        client = make_client(lambda r: httpx.Response(429, headers={"Retry-After": "0"}))
        with pytest.raises(RateLimited) as info:
            await client.fetch(ref, "a.py")
        assert info.value.retry_after == 0

    @pytest.mark.asyncio
    async def test_plain_403_is_fetch_failure(self, ref):
        client = make_client(lambda r: httpx.Response(403, json={"message": "Resource not accessible"}))
        with pytest.raises(FetchFailed):
            await client.fetch(ref, "a.py")

    @pytest.mark.asyncio
    async def test_rate_limit_headers_tracked(self, ref):
        def handler(request):
            return httpx.Response(200, headers={"X-RateLimit-Remaining": "4999", "X-RateLimit-Limit": "5000"},
                                  json={"content": b64(b"")})

        client = make_client(handler)
        assert await client.fetch(ref, "empty.py") == ""
        assert client.rate_limit.remaining == 4999
        assert not client.rate_limit.exhausted


class TestDecodeContent:
    def test_invalid_base64(self):
        assert isinstance(decode_content("a.py", "!!!not base64!!!"), BinaryUnreadable)

    def test_latin1_is_unreadable(self):
        assert isinstance(decode_content("a.py", b64("café".encode("latin-1"))), BinaryUnreadable)
