"""
Tests for contribs.identity (normalization and the Identity Resolver).

The GitHub API is faked with httpx.MockTransport; caches live in tmp_path.
"""
import httpx
import pytest

from conftest import SAMPLE_SLUG, requires_git
from contribs.cache.persistent import create_persistent_cache
from contribs.cancellation import CancellationSignal
from contribs.errors import CancellationError
from contribs.github.client import GitHubClient
from contribs.identity.normalize import (
    derive_profile_url,
    names_match,
    normalize_email,
    normalize_name,
    parse_identity,
)
from contribs.identity.resolver import EMAIL_CACHE_FILE, NAME_CACHE_FILE, IdentityResolver


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def test_normalize_email_case_and_whitespace():
    assert normalize_email("  Jane.Doe@USERS.NOREPLY.GITHUB.COM ") == "jane.doe@users.noreply.github.com"
    assert normalize_email("Jane.Doe@USERS.NOREPLY.GITHUB.COM") == normalize_email("jane.doe@users.noreply.github.com")


def test_normalize_email_none():
    assert normalize_email(None) == ""


def test_normalize_name_strips_accents_and_punctuation():
    assert normalize_name("José  O'Brien") == "joseobrien"
    assert normalize_name("Zoë-Ann") == "zoeann"


def test_derive_profile_url_variants():
    assert derive_profile_url("jane@users.noreply.github.com") == "https://github.com/jane"
    assert derive_profile_url("12345+jane@users.noreply.github.com") == "https://github.com/jane"
    assert derive_profile_url("Jane@USERS.NOREPLY.GITHUB.COM") == "https://github.com/jane"
    assert derive_profile_url("hubot@github.com") == "https://github.com/hubot"
    assert derive_profile_url("jane@example.com") is None
    assert derive_profile_url(None) is None


def test_parse_identity():
    assert parse_identity("Jane Doe <jane@example.com>") == ("Jane Doe", "jane@example.com")
    assert parse_identity("No Email") == ("No Email", None)


def test_names_match():
    assert names_match("bobsmith", "Bob Smith")
    assert names_match("Robert Smith Jr.", "robertsmith")
    assert not names_match("alice", "Bob Smith")
    assert not names_match("", "Bob")


# ---------------------------------------------------------------------------
# Resolver fixtures
# ---------------------------------------------------------------------------


class FakeGitHub:
    """Routes requests to canned JSON and records every call."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)
        for prefix, responder in self.routes.items():
            if request.url.path.startswith(prefix):
                result = responder(request) if callable(responder) else responder
                if isinstance(result, httpx.Response):
                    return result
                return httpx.Response(200, json=result)
        return httpx.Response(404, json={"message": "Not Found"})


def _resolver(tmp_path, fake=None, **kwargs):
    email_cache = create_persistent_cache(EMAIL_CACHE_FILE, state_dir=str(tmp_path))
    name_cache = create_persistent_cache(NAME_CACHE_FILE, state_dir=str(tmp_path))
    client = None
    if fake is not None:
        client = GitHubClient(
            base_url="https://api.github.test",
            backoff_base=0,
            transport=httpx.MockTransport(fake),
        )
    return IdentityResolver(email_cache, name_cache, client, **kwargs)


# ---------------------------------------------------------------------------
# IdentityResolver.resolve
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reserved_email_resolves_without_network(tmp_path):
    fake = FakeGitHub()
    resolver = _resolver(tmp_path, fake)
    url = await resolver.resolve("42+jane@users.noreply.github.com", "Jane", slug=SAMPLE_SLUG)
    assert url == "https://github.com/jane"
    assert fake.calls == []


@pytest.mark.asyncio
async def test_without_client_returns_none_and_caches_nothing(tmp_path):
    resolver = _resolver(tmp_path)
    assert await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG) is None
    assert await resolver.email_cache.entries_list() == []


@pytest.mark.asyncio
async def test_search_prefers_matching_login(tmp_path):
    fake = FakeGitHub({
        "/search/users": {"items": [
            {"login": "robert-s", "html_url": "https://github.com/robert-s"},
            {"login": "bobsmith", "html_url": "https://github.com/bobsmith"},
        ]},
        "/users/robert-s": {"login": "robert-s", "name": "Robert S."},
    })
    resolver = _resolver(tmp_path, fake)
    url = await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG)
    assert url == "https://github.com/bobsmith"
    assert "/users/robert-s" in fake.calls


@pytest.mark.asyncio
async def test_search_matches_display_name(tmp_path):
    fake = FakeGitHub({
        "/search/users": {"items": [{"login": "xyz123", "html_url": "https://github.com/xyz123"}]},
        "/users/xyz123": {"login": "xyz123", "name": "Bob Smith"},
    })
    resolver = _resolver(tmp_path, fake)
    assert await resolver.resolve(None, "Bob Smith", slug=SAMPLE_SLUG) == "https://github.com/xyz123"


@pytest.mark.asyncio
async def test_search_falls_back_to_first_candidate(tmp_path):
    fake = FakeGitHub({
        "/search/users": {"items": [
            {"login": "first-guess", "html_url": "https://github.com/first-guess"},
            {"login": "second", "html_url": "https://github.com/second"},
        ]},
        "/users/": {"name": "Somebody Else"},
    })
    resolver = _resolver(tmp_path, fake)
    assert await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG) == "https://github.com/first-guess"


@pytest.mark.asyncio
async def test_result_is_cached_under_email_and_name(tmp_path):
    """Either normalized form short-circuits the next lookup."""
    fake = FakeGitHub({"/search/users": {"items": [{"login": "bobsmith"}]}})
    resolver = _resolver(tmp_path, fake)
    await resolver.resolve("Bob@Example.com", "Bob Smith", slug=SAMPLE_SLUG)
    calls = len(fake.calls)

    assert await resolver.resolve("bob@example.com", None, slug=SAMPLE_SLUG) == "https://github.com/bobsmith"
    assert await resolver.resolve("other@example.com", "bob smith", slug=SAMPLE_SLUG) == "https://github.com/bobsmith"
    assert len(fake.calls) == calls

    assert (await resolver.email_cache.get("bob@example.com")).value == "https://github.com/bobsmith"
    assert (await resolver.name_cache.get("bobsmith")).value == "https://github.com/bobsmith"


@pytest.mark.asyncio
async def test_upstream_failure_caches_negative(tmp_path):
    """A failing API resolves to None, and the None is remembered."""
    fake = FakeGitHub({"/search/users": httpx.Response(500, text="boom")})
    resolver = _resolver(tmp_path, fake)
    assert await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG) is None
    calls = len(fake.calls)

    assert await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG) is None
    assert len(fake.calls) == calls
    entry = await resolver.email_cache.get("bob@example.com")
    assert entry is not None and entry.value is None


@pytest.mark.asyncio
async def test_cancellation_propagates_and_is_never_cached(tmp_path):
    signal = CancellationSignal()

    def cancel_mid_request(request):
        signal.cancel()
        return {"items": [{"login": "bobsmith"}]}

    fake = FakeGitHub({"/search/users": cancel_mid_request})
    resolver = _resolver(tmp_path, fake)
    with pytest.raises(CancellationError):
        await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG, signal=signal)

    assert await resolver.email_cache.get("bob@example.com") is None
    assert await resolver.name_cache.get("bobsmith") is None


@requires_git
@pytest.mark.asyncio
async def test_commit_lookup_uses_local_history(tmp_path, work_repo):
    """The newest local commit by the author is looked up on GitHub."""
    fake = FakeGitHub({
        f"/repos/{SAMPLE_SLUG}/commits/": {"author": {"login": "bob-gh", "html_url": "https://github.com/bob-gh"}},
    })
    resolver = _resolver(tmp_path, fake)
    url = await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG, repo_path=work_repo)
    assert url == "https://github.com/bob-gh"
    assert not any(call.startswith("/search") for call in fake.calls)


@requires_git
@pytest.mark.asyncio
async def test_commit_without_linked_account_falls_back_to_search(tmp_path, work_repo):
    fake = FakeGitHub({
        f"/repos/{SAMPLE_SLUG}/commits/": {"author": None},
        "/search/users": {"items": [{"login": "bobsmith"}]},
    })
    resolver = _resolver(tmp_path, fake)
    url = await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG, repo_path=work_repo)
    assert url == "https://github.com/bobsmith"


@pytest.mark.asyncio
async def test_user_detail_failure_still_guesses_first_candidate(tmp_path):
    """A failing profile lookup skips that candidate instead of ending the search."""
    fake = FakeGitHub({
        "/search/users": {"items": [
            {"login": "zz-first", "html_url": "https://github.com/zz-first"},
            {"login": "yy-second", "html_url": "https://github.com/yy-second"},
        ]},
        "/users/": httpx.Response(403, json={"message": "rate limited"}),
    })
    resolver = _resolver(tmp_path, fake)
    url = await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG)
    assert url == "https://github.com/zz-first"
    assert "/users/zz-first" in fake.calls
    assert "/users/yy-second" in fake.calls


@requires_git
@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 422, 502])
async def test_failed_commit_lookup_falls_back_to_search(tmp_path, work_repo, status):
    fake = FakeGitHub({
        f"/repos/{SAMPLE_SLUG}/commits/": httpx.Response(status, json={"message": "No commit found for SHA"}),
        "/search/users": {"items": [{"login": "bobsmith"}]},
    })
    resolver = _resolver(tmp_path, fake)
    url = await resolver.resolve("bob@example.com", "Bob Smith", slug=SAMPLE_SLUG, repo_path=work_repo)
    assert url == "https://github.com/bobsmith"
    assert any(call.startswith(f"/repos/{SAMPLE_SLUG}/commits/") for call in fake.calls)
    assert "/search/users" in fake.calls
    assert (await resolver.email_cache.get("bob@example.com")).value == "https://github.com/bobsmith"
