"""
contribs/identity/resolver.py — Contributor → GitHub profile resolution.

Resolution order for (email, name):

    1. Reserved GitHub email shape → derived URL, no network.
    2. Email cache, then name cache. Cached None is a deliberate negative
       result and short-circuits just like a hit.
    3. Newest commit by this author in the local clone → GET
       /repos/{slug}/commits/{sha} → author.html_url / author.login.
    4. User search by display name. The first few ranked candidates are
       compared by normalized login, then by their own display name (one
       detail lookup each). No match → the first candidate is accepted.
    5. Store the outcome, None included, under both normalized keys.

Cancellation (CancellationError or asyncio.CancelledError) always propagates
and is never cached. Every other failure is logged and becomes a cached None,
so identity problems never fail a request.
"""

import logging
from pathlib import Path
from typing import Optional

from contribs.cache.persistent import PersistentCache
from contribs.cancellation import CANCELLED, CancellationSignal, raise_if_cancelled
from contribs.errors import ContribsError
from contribs.git.runner import DEFAULT_GRACE_SECONDS, run_command
from contribs.github.client import GitHubClient, profile_url_for_login
from contribs.identity.normalize import (
    derive_profile_url,
    names_match,
    normalize_email,
    normalize_name,
)

logger = logging.getLogger(__name__)

EMAIL_CACHE_FILE = "github-email-profiles.json"
NAME_CACHE_FILE = "github-name-profiles.json"


class IdentityResolver:
    """Resolve contributors to profile URLs, backed by two persistent caches.

    Args:
        email_cache:       normalized email -> profile URL | None
        name_cache:        normalized name  -> profile URL | None
        client:            GitHubClient, or None to disable network lookups.
        search_candidates: User-search results to inspect.
        grace_seconds:     Kill grace for the local git lookup.
    """

    def __init__(
        self,
        email_cache: PersistentCache,
        name_cache: PersistentCache,
        client: Optional[GitHubClient] = None,
        *,
        search_candidates: int = 5,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self.email_cache = email_cache
        self.name_cache = name_cache
        self.client = client
        self.search_candidates = search_candidates
        self.grace_seconds = grace_seconds

    async def cached(self, email: Optional[str], name: Optional[str]) -> tuple[bool, Optional[str]]:
        """Return (hit, value) from the email cache, then the name cache."""
        email_key = normalize_email(email)
        if email_key:
            entry = await self.email_cache.get(email_key)
            if entry is not None:
                return True, entry.value
        name_key = normalize_name(name)
        if name_key:
            entry = await self.name_cache.get(name_key)
            if entry is not None:
                return True, entry.value
        return False, None

    async def remember(self, email: Optional[str], name: Optional[str], profile_url: Optional[str]) -> None:
        email_key = normalize_email(email)
        name_key = normalize_name(name)
        if email_key:
            await self.email_cache.set(email_key, profile_url)
        if name_key:
            await self.name_cache.set(name_key, profile_url)

    async def resolve(
        self,
        email: Optional[str],
        name: Optional[str],
        *,
        slug: str,
        repo_path: Optional[Path] = None,
        signal: Optional[CancellationSignal] = None,
    ) -> Optional[str]:
        """Resolve one contributor. Never raises except on cancellation."""
        derived = derive_profile_url(email)
        if derived:
            return derived

        raise_if_cancelled(signal)
        hit, value = await self.cached(email, name)
        if hit:
            logger.debug("Identity cache hit for %s <%s>: %s", name, email, value)
            return value

        if self.client is None:
            return None

        try:
            profile_url = await self._lookup_by_commit(email, name, slug, repo_path, signal)
        except CANCELLED:
            raise
        except ContribsError as exc:
            logger.warning("Commit lookup failed for %s <%s>: %s", name, email, exc)
            profile_url = None

        try:
            if profile_url is None and name:
                profile_url = await self._lookup_by_search(name, signal)
        except CANCELLED:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Identity lookup failed for %s <%s>: %s", name, email, exc)
            profile_url = None

        # A signal that fired during the lookup must not leave a negative behind
        raise_if_cancelled(signal)
        await self.remember(email, name, profile_url)
        logger.debug("Resolved %s <%s> -> %s", name, email, profile_url)
        return profile_url

    # ── Lookup strategies ─────────────────────────────────────────────────────

    async def _find_local_commit(
        self,
        email: Optional[str],
        name: Optional[str],
        repo_path: Optional[Path],
        signal: Optional[CancellationSignal],
    ) -> Optional[str]:
        author = (email or "").strip() or (name or "").strip()
        if repo_path is None or not author:
            return None
        result = await run_command(
            [
                "git", "log", "--all", "-n", "1", "--format=%H",
                "--fixed-strings", f"--author={author}",
            ],
            cwd=str(repo_path),
            signal=signal,
            allow_failure=True,
            grace_seconds=self.grace_seconds,
        )
        sha = result.stdout.strip()
        return sha or None

    async def _lookup_by_commit(
        self,
        email: Optional[str],
        name: Optional[str],
        slug: str,
        repo_path: Optional[Path],
        signal: Optional[CancellationSignal],
    ) -> Optional[str]:
        sha = await self._find_local_commit(email, name, repo_path, signal)
        if sha is None:
            return None
        payload = await self.client.get_commit(slug, sha, signal=signal)
        author = payload.get("author") if isinstance(payload, dict) else None
        if not isinstance(author, dict):
            return None
        return author.get("html_url") or profile_url_for_login(author.get("login"))

    async def _lookup_by_search(
        self, name: str, signal: Optional[CancellationSignal]
    ) -> Optional[str]:
        candidates = await self.client.search_users(
            name, per_page=self.search_candidates, signal=signal
        )
        candidates = [c for c in candidates if c.get("login")][: self.search_candidates]
        if not candidates:
            return None

        target = normalize_name(name)
        for candidate in candidates:
            login = candidate["login"]
            if names_match(login, target):
                return candidate.get("html_url") or profile_url_for_login(login)
            try:
                detail = await self.client.get_user(login, signal=signal)
            except CANCELLED:
                raise
            except ContribsError as exc:
                logger.warning("User lookup failed for %s: %s", login, exc)
                continue
            display_name = detail.get("name") if isinstance(detail, dict) else None
            if names_match(display_name, target):
                return candidate.get("html_url") or profile_url_for_login(login)

        first = candidates[0]
        logger.debug("No exact user match for %r; guessing %s", name, first["login"])
        return first.get("html_url") or profile_url_for_login(first["login"])
