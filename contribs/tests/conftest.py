"""
contribs/tests/conftest.py — Shared pytest fixtures for the contribs test suite.

Git-backed tests build throwaway repositories with the real git binary under
tmp_path; commit dates are pinned through GIT_AUTHOR_DATE/GIT_COMMITTER_DATE
so that period bucketing is deterministic.

Fixtures:
    isolated_git  — HOME and git config isolated from the developer machine.
    origin_root   — directory of bare repositories laid out as <owner>/<name>.git,
                    usable as a clone_base_url.
    widget_origin — origin_root holding acme/widget with SAMPLE_COMMITS.
    config        — ContribsConfig pointing every path into tmp_path.
"""

import os
import shutil
import subprocess
from pathlib import Path

import pytest

from contribs.config import ContribsConfig


# ── Pytest configuration hooks ────────────────────────────────────────────────

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that call the real GitHub API (deselected by default, "
        "pass --run-integration or -m integration to enable)",
    )


def pytest_addoption(parser):
    """Add --run-integration CLI flag to enable integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that call the real GitHub API.",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed or -m integration is used."""
    markexpr = config.getoption("-m", default="")
    if "integration" in markexpr:
        return

    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(
        reason="Integration test -- pass --run-integration or -m integration to run"
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")


# ── Sample history ────────────────────────────────────────────────────────────

SAMPLE_SLUG = "acme/widget"

# (author name, author email, ISO date); spans 2023-01 .. 2023-03, so months
SAMPLE_COMMITS = [
    ("Jane Doe", "jane@users.noreply.github.com", "2023-01-10T12:00:00+00:00"),
    ("Jane Doe", "jane@users.noreply.github.com", "2023-01-15T12:00:00+00:00"),
    ("Bob Smith", "bob@example.com", "2023-01-20T12:00:00+00:00"),
    ("Jane Doe", "jane@users.noreply.github.com", "2023-02-03T12:00:00+00:00"),
    ("Bob Smith", "bob@example.com", "2023-03-05T12:00:00+00:00"),
    ("Carol", "12345+carol@users.noreply.github.com", "2023-03-10T12:00:00+00:00"),
    ("Carol", "12345+carol@users.noreply.github.com", "2023-03-11T12:00:00+00:00"),
    ("Carol", "12345+carol@users.noreply.github.com", "2023-03-12T12:00:00+00:00"),
]


def git(*args: str, cwd: Path, env: dict | None = None) -> str:
    """Run git synchronously for fixture setup; returns stdout."""
    full_env = dict(os.environ)
    if env:
        full_env.update(env)
    completed = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        env=full_env,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def commit(repo: Path, name: str, email: str, date: str, message: str = "change") -> None:
    """Create an empty commit with pinned author and committer identity/date."""
    git(
        "commit", "--allow-empty", "-q", "-m", message,
        cwd=repo,
        env={
            "GIT_AUTHOR_NAME": name,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": name,
            "GIT_COMMITTER_EMAIL": email,
            "GIT_COMMITTER_DATE": date,
        },
    )


def make_work_repo(path: Path, commits) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git("init", "-q", cwd=path)
    for index, (name, email, date) in enumerate(commits):
        commit(path, name, email, date, message=f"change {index}")
    return path


def publish_bare(work: Path, origin_root: Path, slug: str) -> Path:
    """Clone *work* as a bare repository at <origin_root>/<owner>/<name>.git."""
    owner, name = slug.split("/")
    target = origin_root / owner / f"{name}.git"
    target.parent.mkdir(parents=True, exist_ok=True)
    git("clone", "-q", "--bare", str(work), str(target), cwd=origin_root)
    return target


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def isolated_git(tmp_path, monkeypatch):
    """Point HOME at tmp_path so neither global nor system git config leaks in."""
    if shutil.which("git") is None:
        pytest.skip("git binary not available")
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    for var in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        monkeypatch.delenv(var, raising=False)
    (home / ".gitconfig").write_text(
        "[user]\n\tname = Fixture\n\temail = fixture@example.com\n"
        "[init]\n\tdefaultBranch = main\n"
        "[commit]\n\tgpgsign = false\n",
        encoding="utf-8",
    )
    return home


@pytest.fixture
def origin_root(tmp_path, isolated_git) -> Path:
    root = tmp_path / "origin"
    root.mkdir()
    return root


@pytest.fixture
def work_repo(tmp_path, isolated_git) -> Path:
    """A non-bare repository holding SAMPLE_COMMITS."""
    return make_work_repo(tmp_path / "work" / "widget", SAMPLE_COMMITS)


@pytest.fixture
def widget_origin(origin_root, work_repo) -> Path:
    publish_bare(work_repo, origin_root, SAMPLE_SLUG)
    return origin_root


@pytest.fixture
def config(tmp_path) -> ContribsConfig:
    """Config with clones, caches and the origin all under tmp_path."""
    return ContribsConfig(
        github_token=None,
        api_base_url="https://api.github.test",
        clone_base_url=str(tmp_path / "origin"),
        git_root=str(tmp_path / "clones"),
        state_dir=str(tmp_path / "state"),
        kill_grace_seconds=0.5,
        backoff_base_seconds=0.0,
    )
