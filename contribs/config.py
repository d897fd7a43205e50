"""
contribs/config.py — All tunable parameters for contribs.

No retry budget, cache bound or path should be hardcoded in a component
module. Everything lives here so that tuning is a single-file diff.

Environment overrides are applied by ContribsConfig.from_env():
    GITHUB_TOKEN                 bearer token for api.github.com
    GIT_ROOT                     directory holding local clones (default ~/git)
    CONTRIBS_STATE_DIR           directory holding cache files
    CONTRIBS_RESOLVE_IDENTITIES  "0"/"false" disables profile lookups
"""

import os
from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class ContribsConfig:
    """
    Immutable configuration for the contribution pipeline.

    Override by constructing a new ContribsConfig (or dataclasses.replace)
    with the desired values.
    """

    # ── GitHub API ────────────────────────────────────────────────────────────
    github_token: Optional[str] = None
    # Sent as "Authorization: Bearer <token>". Unauthenticated requests are
    # limited to 60/hr and the search endpoint to 10/min.

    api_base_url: str = "https://api.github.com"

    clone_base_url: str = "https://github.com"
    # Clone URL is "<clone_base_url>/<owner>/<name>.git". Tests point this at
    # a local directory of bare repositories.

    request_timeout_seconds: float = 30.0

    max_api_attempts: int = 6
    # Attempts against an endpoint that answers 202 (statistics still being
    # computed) before giving up with UpstreamError.

    backoff_base_seconds: float = 0.5
    # Delay before retry n is backoff_base_seconds * 2**n.

    # ── Local clones ──────────────────────────────────────────────────────────
    git_root: str = os.path.join(os.path.expanduser("~"), "git")
    # Each repository is cloned to <git_root>/<owner>---<name>.

    kill_grace_seconds: float = 2.0
    # After SIGTERM on cancellation, wait this long before SIGKILL.

    # ── Identity resolution ───────────────────────────────────────────────────
    resolve_identities: bool = True
    # False skips all network lookups; only noreply/github.com emails resolve.

    search_candidates: int = 5
    # User-search results inspected before falling back to the first one.

    # ── Persistent caches ─────────────────────────────────────────────────────
    state_dir: Optional[str] = None
    # None resolves $XDG_STATE_HOME/contribs, else ~/.local/state/contribs.

    identity_cache_max_entries: int = 5000
    identity_cache_max_age_seconds: float = 30 * 24 * 3600.0

    summary_cache_max_entries: int = 200
    summary_cache_max_age_seconds: float = 7 * 24 * 3600.0

    remote_stats_cache_max_entries: int = 200
    remote_stats_cache_max_age_seconds: float = 6 * 3600.0

    cache_prune_interval_seconds: float = 300.0
    # Clamped to a minimum of 60s by the cache itself.

    # ── Progress ──────────────────────────────────────────────────────────────
    progress_emissions: int = 10
    # Period progress events per request, regardless of period count.

    @classmethod
    def from_env(cls, **overrides) -> "ContribsConfig":
        """Build a config from environment variables, then apply overrides."""
        env: dict = {}
        token = os.environ.get("GITHUB_TOKEN", "").strip()
        if token:
            env["github_token"] = token
        git_root = os.environ.get("GIT_ROOT", "").strip()
        if git_root:
            env["git_root"] = git_root
        state_dir = os.environ.get("CONTRIBS_STATE_DIR", "").strip()
        if state_dir:
            env["state_dir"] = state_dir
        flag = os.environ.get("CONTRIBS_RESOLVE_IDENTITIES", "").strip().lower()
        if flag:
            env["resolve_identities"] = flag not in ("0", "false", "no", "off")
        env.update(overrides)
        return cls(**env)

    def with_overrides(self, **overrides) -> "ContribsConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)
