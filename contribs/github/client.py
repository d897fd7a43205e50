"""
contribs/github/client.py — Async GitHub REST API client.

Every request carries:
    Accept: application/vnd.github+json
    X-GitHub-Api-Version: 2022-11-28
    Authorization: Bearer <token>      (only when a token is configured)

Response handling in get_json():
    - 2xx: parsed JSON
    - 202: GitHub is still computing the resource (statistics endpoints).
           Retried after backoff_base * 2**attempt seconds, for at most
           max_attempts attempts, then UpstreamError.
    - anything else: UpstreamError carrying the status code
    - transport errors: UpstreamError

Every await (request and backoff delay) is raced against the caller's
CancellationSignal, so cancelling aborts the in-flight HTTP request.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from contribs.cancellation import CancellationSignal, cancellable, raise_if_cancelled, sleep
from contribs.errors import UpstreamError
from contribs.events import ProgressEmitter

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_BASE_URL = "https://github.com"


def github_request_headers(token: Optional[str] = None) -> dict[str, str]:
    """Headers sent with every API request."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def profile_url_for_login(login: Optional[str]) -> Optional[str]:
    if not login:
        return None
    return f"{GITHUB_BASE_URL}/{login}"


class GitHubClient:
    """Thin async wrapper around the GitHub REST endpoints contribs needs.

    Args:
        token:        Optional personal access token.
        base_url:     API root (overridable for tests / GitHub Enterprise).
        max_attempts: Attempt budget for 202 "still computing" responses.
        backoff_base: Seconds; delay before retry n is backoff_base * 2**n.
        timeout:      Per-request timeout in seconds.
        transport:    Optional httpx transport (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        base_url: str = GITHUB_API_BASE,
        max_attempts: int = 6,
        backoff_base: float = 0.5,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.token = token
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=github_request_headers(token),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.AsyncBaseTransport] = None) -> "GitHubClient":
        return cls(
            config.github_token,
            base_url=config.api_base_url,
            max_attempts=config.max_api_attempts,
            backoff_base=config.backoff_base_seconds,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Core request loop ─────────────────────────────────────────────────────

    async def get_json(
        self,
        path: str,
        *,
        params: Optional[dict] = None,
        signal: Optional[CancellationSignal] = None,
        emitter: Optional[ProgressEmitter] = None,
    ) -> Any:
        """GET *path* and return its JSON body.

        Raises:
            UpstreamError:     non-OK status, transport failure, or the 202
                               retry budget ran out.
            CancellationError: the signal fired.
        """
        attempt = 0
        while True:
            raise_if_cancelled(signal)
            try:
                response = await cancellable(self._client.get(path, params=params), signal)
            except httpx.HTTPError as exc:
                raise UpstreamError(f"GitHub request to {path} failed: {exc}") from exc

            if response.status_code == 202:
                attempt += 1
                if attempt >= self.max_attempts:
                    raise UpstreamError(
                        "GitHub is still generating the requested statistics. "
                        "Please retry in a moment.",
                        status_code=202,
                    )
                delay = self.backoff_base * (2 ** attempt)
                logger.info(
                    "GitHub returned 202 for %s — retry %d/%d in %.1fs",
                    path, attempt + 1, self.max_attempts, delay,
                )
                if emitter is not None:
                    emitter.status(
                        f"GitHub is preparing statistics (attempt {attempt + 1}/{self.max_attempts})."
                    )
                await sleep(delay, signal)
                continue

            if not response.is_success:
                detail = response.text.strip()[:200]
                raise UpstreamError(
                    f"GitHub request {path} failed: {response.status_code} {detail}",
                    status_code=response.status_code,
                )

            try:
                return response.json()
            except ValueError as exc:
                raise UpstreamError(f"GitHub returned invalid JSON for {path}") from exc

    # ── Endpoints ─────────────────────────────────────────────────────────────

    async def get_repository(self, slug: str, *, signal=None) -> dict:
        return await self.get_json(f"/repos/{slug}", signal=signal)

    async def get_commit(self, slug: str, sha: str, *, signal=None) -> dict:
        return await self.get_json(f"/repos/{slug}/commits/{quote(sha)}", signal=signal)

    async def search_users(self, name: str, *, per_page: int = 5, signal=None) -> list[dict]:
        payload = await self.get_json(
            "/search/users",
            params={"q": f"{name} in:name", "per_page": per_page},
            signal=signal,
        )
        items = payload.get("items") if isinstance(payload, dict) else None
        return [item for item in (items or []) if isinstance(item, dict)]

    async def get_user(self, login: str, *, signal=None) -> dict:
        return await self.get_json(f"/users/{quote(login)}", signal=signal)

    async def get_contributor_stats(self, slug: str, *, signal=None, emitter=None) -> list[dict]:
        """Weekly per-author commit counts; GitHub answers 202 while computing them."""
        payload = await self.get_json(
            f"/repos/{slug}/stats/contributors", signal=signal, emitter=emitter
        )
        return [item for item in (payload or []) if isinstance(item, dict)]

    async def top_starred_repositories(self, owner: str, count: int, *, signal=None) -> list[str]:
        """Slugs of *owner*'s most-starred public repositories, most stars first."""
        payload = await self.get_json(
            "/search/repositories",
            params={"q": f"user:{owner}", "sort": "stars", "order": "desc", "per_page": count},
            signal=signal,
        )
        items = payload.get("items") if isinstance(payload, dict) else None
        slugs = [item.get("full_name") for item in (items or []) if isinstance(item, dict)]
        return [slug for slug in slugs if slug][:count]
