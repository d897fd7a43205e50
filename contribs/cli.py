"""
contribs/cli.py — Command-line interface for contribs.

Provides a single entry point that:
  1. Loads GITHUB_TOKEN (and other settings) from a .env file automatically
  2. Clones or refreshes the requested repositories under GIT_ROOT
  3. Writes each contribution summary as JSON
  4. Mirrors progress (status lines and raw git output) to the terminal

Usage:
    python -m contribs collect owner/name [LIMIT]   # one repository
    python -m contribs collect owner/name --remote  # GitHub statistics API only
    python -m contribs top-starred OWNER            # owner's most-starred repos
    python -m contribs repos                        # local clones under GIT_ROOT
    python -m contribs status                       # cache files and entry counts

Ctrl-C cancels the running request: the active git process is terminated and
nothing is written to the summary cache. Exit codes: 0 success, 1 failure,
130 cancelled.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal as signals
import sys
from pathlib import Path


# ── .env loader (stdlib only, no python-dotenv required) ─────────────────────

def _load_dotenv(env_file: str | None = None) -> dict[str, str]:
    """Load key=value pairs from a .env file into the environment.

    Existing environment values are NOT overwritten. Returns the dict of
    values that were newly loaded.

    Args:
        env_file: Explicit path. If None, searches for .env starting from the
                  current working directory up to the filesystem root.
    """
    if env_file is None:
        start = Path.cwd()
        for directory in [start, *start.parents]:
            candidate = directory / ".env"
            if candidate.is_file():
                env_file = str(candidate)
                break

    if not env_file or not Path(env_file).is_file():
        return {}

    loaded: dict[str, str] = {}
    with open(env_file, encoding="utf-8") as fh:
        for raw_line in fh:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if key and key not in os.environ:
                os.environ[key] = value
                loaded[key] = value

    return loaded


# ── Logging setup ─────────────────────────────────────────────────────────────

def _setup_logging(level: str = "WARNING") -> None:
    """Configure root logger with timestamps on stderr."""
    numeric = getattr(logging, level.upper(), logging.WARNING)
    fmt = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=numeric, format=fmt, datefmt=datefmt, stream=sys.stderr)
    # Request lines from the HTTP stack drown out progress output
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


logger = logging.getLogger("contribs.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


# ── Shared plumbing ───────────────────────────────────────────────────────────

def _config_from_args(args: argparse.Namespace):
    from contribs.config import ContribsConfig

    overrides = {}
    if args.token:
        overrides["github_token"] = args.token
    if args.git_root:
        overrides["git_root"] = args.git_root
    if args.state_dir:
        overrides["state_dir"] = args.state_dir
    if getattr(args, "no_identities", False):
        overrides["resolve_identities"] = False
    return ContribsConfig.from_env(**overrides)


def default_output_name(slug: str, limit: int) -> str:
    """'owner/name' + 5 -> 'owner--name--top-5.json'."""
    safe = slug.replace("/", "--").replace("\\", "--")
    return f"{safe}--top-{limit}.json"


def _write_summary(summary, destination: str | None, limit: int) -> None:
    payload = json.dumps(summary.to_dict(), indent=2)
    if destination == "-":
        sys.stdout.write(payload + "\n")
        return
    path = Path(destination or default_output_name(summary.slug, limit))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload + "\n", encoding="utf-8")
    print(f"Wrote {path}", file=sys.stderr)


def _run_cancellable(make_coro) -> int:
    """Run make_coro(signal) with SIGINT wired to the cancellation signal."""
    from contribs.cancellation import CANCELLED, CancellationSignal
    from contribs.errors import ContribsError

    async def _main() -> int:
        cancel = CancellationSignal()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signals.SIGINT, cancel.cancel)
        except (NotImplementedError, RuntimeError):
            # e.g. Windows event loops; KeyboardInterrupt still stops the run
            pass
        try:
            return await make_coro(cancel)
        finally:
            try:
                loop.remove_signal_handler(signals.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    try:
        return asyncio.run(_main())
    except CANCELLED:
        print("Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except ContribsError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE


# ── Subcommand: collect ───────────────────────────────────────────────────────

def cmd_collect(args: argparse.Namespace) -> int:
    """Collect the contribution summary of one repository."""
    from contribs.events import StreamMirror
    from contribs.pipeline import ContributionService

    config = _config_from_args(args)
    mirror = StreamMirror(stdout=sys.stderr)
    if not config.github_token:
        logger.warning(
            "GITHUB_TOKEN not set. Unauthenticated GitHub rate limit is 60 req/hr "
            "and identity resolution will be slow."
        )

    async def _collect(cancel) -> int:
        async with ContributionService.from_config(config) as service:
            print(
                f"Preparing statistics for {args.slug} "
                f"(top {args.limit} contributors per interval)...",
                file=sys.stderr,
            )
            if args.remote:
                summary = await service.collect_remote(
                    args.slug, args.limit, on_progress=mirror, signal=cancel
                )
                if summary is None:
                    print(f"GitHub reports no contributors for {args.slug}.", file=sys.stderr)
                    return EXIT_FAILURE
            else:
                summary = await service.collect(
                    args.slug, args.limit, on_progress=mirror, signal=cancel
                )
        _write_summary(summary, args.output, args.limit)
        return EXIT_OK

    return _run_cancellable(_collect)


# ── Subcommand: top-starred ───────────────────────────────────────────────────

def cmd_top_starred(args: argparse.Namespace) -> int:
    """Collect summaries for an owner's most-starred repositories, one at a time."""
    from contribs.events import StreamMirror
    from contribs.pipeline import ContributionService

    config = _config_from_args(args)
    mirror = StreamMirror(stdout=sys.stderr)
    output_dir = Path(args.output_dir or ".")

    async def _collect(cancel) -> int:
        async with ContributionService.from_config(config) as service:
            summaries = await service.collect_top_starred(
                args.owner, args.count, args.limit, on_progress=mirror, signal=cancel
            )
        for summary in summaries:
            _write_summary(summary, str(output_dir / default_output_name(summary.slug, args.limit)), args.limit)
        return EXIT_OK if summaries else EXIT_FAILURE

    return _run_cancellable(_collect)


# ── Subcommand: repos ─────────────────────────────────────────────────────────

def cmd_repos(args: argparse.Namespace) -> int:
    """List local clones under GIT_ROOT grouped by owner."""
    from contribs.git.sync import list_local_repositories

    config = _config_from_args(args)
    owners = list_local_repositories(config.git_root)
    if args.json:
        print(json.dumps(owners, indent=2, sort_keys=True))
        return EXIT_OK
    if not owners:
        print(f"No repositories under {config.git_root}")
        return EXIT_OK
    for owner in sorted(owners, key=str.lower):
        print(owner)
        for name in owners[owner]:
            print(f"  {owner}/{name}")
    return EXIT_OK


# ── Subcommand: status ────────────────────────────────────────────────────────

def cmd_status(args: argparse.Namespace) -> int:
    """Show cache files, their entry counts and the git root without running anything."""
    from contribs.aggregation.remote import REMOTE_STATS_CACHE_FILE
    from contribs.cache.persistent import create_persistent_cache, resolve_state_dir
    from contribs.identity.resolver import EMAIL_CACHE_FILE, NAME_CACHE_FILE
    from contribs.pipeline import SUMMARY_CACHE_FILE

    config = _config_from_args(args)

    async def _count(filename: str) -> int:
        cache = create_persistent_cache(filename, state_dir=config.state_dir)
        try:
            return len(await cache.entries_list())
        finally:
            await cache.close()

    state_dir = resolve_state_dir(config.state_dir)
    print(f"State directory : {state_dir}")
    print(f"Git root        : {config.git_root}")
    print(f"GitHub token    : {'present' if config.github_token else 'ABSENT'}")
    print()
    for filename in (SUMMARY_CACHE_FILE, EMAIL_CACHE_FILE, NAME_CACHE_FILE, REMOTE_STATS_CACHE_FILE):
        path = state_dir / filename
        if path.exists():
            count = asyncio.run(_count(filename))
            print(f"  ✓ {filename:<36} {count:>5} entries  {path.stat().st_size:>9} bytes")
        else:
            print(f"  ✗ {filename:<36} (missing)")
    return EXIT_OK


# ── Argument parser ───────────────────────────────────────────────────────────

def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}")
    if value <= 0:
        raise argparse.ArgumentTypeError("The number of contributors to display must be greater than 0.")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contribs",
        description=(
            "contribs — Top contributors per month or year for GitHub repositories.\n"
            "Reads GITHUB_TOKEN from .env automatically."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Top 5 contributors per period, written to octocat--hello-world--top-5.json
  python -m contribs collect octocat/hello-world

  # Top 10, printed to stdout, skipping GitHub profile lookups
  python -m contribs collect octocat/hello-world 10 --output - --no-identities

  # Use GitHub's precomputed statistics instead of cloning
  python -m contribs collect octocat/hello-world --remote

  # The three most-starred repositories of an owner
  python -m contribs top-starred octocat --count 3
        """,
    )

    # Global flags
    parser.add_argument(
        "--env-file",
        default=None,
        metavar="PATH",
        help="Path to .env file (default: auto-detect .env from the working directory up)",
    )
    parser.add_argument(
        "--token",
        default=None,
        metavar="GITHUB_TOKEN",
        help="GitHub personal access token (overrides .env and environment)",
    )
    parser.add_argument(
        "--git-root",
        default=None,
        metavar="PATH",
        help="Directory holding local clones (default: $GIT_ROOT or ~/git)",
    )
    parser.add_argument(
        "--state-dir",
        default=None,
        metavar="PATH",
        help="Directory holding cache files (default: $XDG_STATE_HOME/contribs)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    def add_collect_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--no-identities",
            action="store_true",
            help="Skip GitHub profile lookups (reserved-email derivation and caches only)",
        )

    # collect
    p_collect = subparsers.add_parser("collect", help="Contribution summary for one repository")
    p_collect.add_argument("slug", metavar="OWNER/NAME", help="Repository slug")
    p_collect.add_argument(
        "limit", nargs="?", type=_positive_int, default=5, metavar="LIMIT",
        help="Contributors to keep per period (default: 5)",
    )
    p_collect.add_argument(
        "--output", "-o", default=None, metavar="PATH",
        help='Output JSON path, or "-" for stdout (default: <owner>--<name>--top-<limit>.json)',
    )
    p_collect.add_argument(
        "--remote", action="store_true",
        help="Use GitHub's contributor statistics API instead of a local clone",
    )
    add_collect_flags(p_collect)
    p_collect.set_defaults(func=cmd_collect)

    # top-starred
    p_top = subparsers.add_parser(
        "top-starred", help="Summaries for an owner's most-starred repositories (sequential)"
    )
    p_top.add_argument("owner", metavar="OWNER", help="GitHub user or organisation")
    p_top.add_argument(
        "--count", type=_positive_int, default=5, metavar="N",
        help="Number of repositories (default: 5)",
    )
    p_top.add_argument(
        "--limit", type=_positive_int, default=5, metavar="N",
        help="Contributors to keep per period (default: 5)",
    )
    p_top.add_argument(
        "--output-dir", default=None, metavar="PATH",
        help="Directory for the JSON summaries (default: current directory)",
    )
    add_collect_flags(p_top)
    p_top.set_defaults(func=cmd_top_starred)

    # repos
    p_repos = subparsers.add_parser("repos", help="List local clones under the git root")
    p_repos.add_argument("--json", action="store_true", help="Print the owner map as JSON")
    p_repos.set_defaults(func=cmd_repos)

    # status
    p_status = subparsers.add_parser(
        "status", help="Show cache files and entry counts without running anything"
    )
    p_status.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
