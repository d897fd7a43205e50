"""
contribs/pipeline.py — Contribution-summary orchestration layer.

Wires the repository synchronizer, the period aggregator, the identity
resolver and the summary cache into a single entry point:

    validating -> syncing -> windowing -> (cache-hit-reuse | aggregating)
        -> resolving-identities -> persisting -> done

with `cancelled` reachable from every non-terminal phase via the caller's
CancellationSignal.

Features:
    - Partial reuse: a cached summary for the same (slug, limit) whose interval
      and commit window still match has every period but the last copied
      verbatim; only the most recent period is recomputed.
    - Progress: coarse status events per phase plus roughly ten
      "Processed i of n periods" events regardless of period count.
    - Cancellation: the signal reaches the live git subprocess, the in-flight
      HTTP request and any backoff delay. A cancelled run never writes to the
      summary cache.
    - Batch: collect_many() / collect_top_starred() process repositories
      strictly one after another; one failure does not abort the batch.

Usage:
    from contribs.pipeline import collect_contribution_summary
    summary = await collect_contribution_summary("octocat/hello-world", 5)
"""

import asyncio
import logging
import math
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from contribs.aggregation.history import count_commits, resolve_commit_window, shortlog_for_period
from contribs.aggregation.periods import determine_interval, generate_periods
from contribs.aggregation.remote import REMOTE_STATS_CACHE_FILE, collect_remote_contribution_summary
from contribs.aggregation.series import SeriesAccumulator
from contribs.aggregation.shortlog import parse_shortlog_rows, validate_limit
from contribs.cache.persistent import PersistentCache, create_persistent_cache
from contribs.cancellation import CANCELLED, CancellationSignal, raise_if_cancelled
from contribs.config import ContribsConfig
from contribs.errors import ContribsError
from contribs.events import ProgressCallback, ProgressEmitter
from contribs.git.sync import RepositorySynchronizer, directory_size, parse_slug
from contribs.github.client import GitHubClient
from contribs.identity.resolver import EMAIL_CACHE_FILE, NAME_CACHE_FILE, IdentityResolver
from contribs.models import PeriodContributor, PeriodDefinition, PeriodRecord, RepoContributionSummary

logger = logging.getLogger(__name__)

SUMMARY_CACHE_FILE = "repo-contribution-summaries.json"

# Cached summaries also carry every shortlog row per period, not only the top-N cut.
PERIOD_ROWS_KEY = "period_rows"


class Phase(str, Enum):
    VALIDATING = "validating"
    SYNCING = "syncing"
    WINDOWING = "windowing"
    CACHE_HIT_REUSE = "cache-hit-reuse"
    AGGREGATING = "aggregating"
    RESOLVING_IDENTITIES = "resolving-identities"
    PERSISTING = "persisting"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_PHASES = frozenset({Phase.DONE, Phase.CANCELLED, Phase.FAILED})

PhaseListener = Callable[[str, Phase], None]


def summary_cache_key(slug: str, limit: int) -> str:
    return f"{slug}#{limit}"


def progress_stride(period_count: int, emissions: int = 10) -> int:
    """Emit a progress event every *stride* periods (plus on the last one)."""
    return max(1, math.ceil(period_count / max(1, emissions)))


def reusable_period_count(
    cached: Optional[RepoContributionSummary],
    interval: str,
    start_date: str,
    end_date: str,
    definitions: list[PeriodDefinition],
) -> int:
    """How many leading periods of *cached* may be copied verbatim.

    Zero unless interval, start date and end date all match. The last period
    is always recomputed.
    """
    if cached is None:
        return 0
    if (cached.interval, cached.start_date, cached.end_date) != (interval, start_date, end_date):
        return 0
    reusable = 0
    for definition, record in zip(definitions[:-1], cached.periods):
        if record.definition != definition:
            break
        reusable += 1
    return reusable


async def _gather_cancelling(*aws: Awaitable):
    """asyncio.gather that cancels the siblings when one awaitable fails."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ContributionService:
    """Long-lived owner of the pipeline's components.

    Components are constructed once (see from_config) and shared by every
    request; only the persistent caches hold cross-request state.

    Args:
        config:         ContribsConfig.
        client:         GitHubClient used for identity lookups and metadata.
        summary_cache:  (slug#limit) -> RepoContributionSummary dict.
        email_cache:    normalized email -> profile URL | None.
        name_cache:     normalized name -> profile URL | None.
        synchronizer:   RepositorySynchronizer; built from config if omitted.
        stats_cache:    Remote contributor-stats cache (remote summaries only).
        on_phase:       Optional listener called with (slug, phase) on every
                        state-machine transition.
    """

    def __init__(
        self,
        config: ContribsConfig,
        *,
        client: Optional[GitHubClient],
        summary_cache: PersistentCache,
        email_cache: PersistentCache,
        name_cache: PersistentCache,
        synchronizer: Optional[RepositorySynchronizer] = None,
        stats_cache: Optional[PersistentCache] = None,
        on_phase: Optional[PhaseListener] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.summary_cache = summary_cache
        self.stats_cache = stats_cache
        self.synchronizer = synchronizer or RepositorySynchronizer(
            config.git_root, config.clone_base_url, config.kill_grace_seconds
        )
        self.resolver = IdentityResolver(
            email_cache,
            name_cache,
            client if config.resolve_identities else None,
            search_candidates=config.search_candidates,
            grace_seconds=config.kill_grace_seconds,
        )
        self.on_phase = on_phase

    @classmethod
    def from_config(
        cls,
        config: Optional[ContribsConfig] = None,
        *,
        transport=None,
        on_phase: Optional[PhaseListener] = None,
    ) -> "ContributionService":
        """Build every component from *config* (environment when omitted)."""
        config = config or ContribsConfig.from_env()

        def _cache(filename: str, max_entries: int, max_age: float) -> PersistentCache:
            return create_persistent_cache(
                filename,
                max_entries=max_entries,
                max_age_seconds=max_age,
                prune_interval_seconds=config.cache_prune_interval_seconds,
                state_dir=config.state_dir,
            )

        return cls(
            config,
            client=GitHubClient.from_config(config, transport=transport),
            summary_cache=_cache(
                SUMMARY_CACHE_FILE,
                config.summary_cache_max_entries,
                config.summary_cache_max_age_seconds,
            ),
            email_cache=_cache(
                EMAIL_CACHE_FILE,
                config.identity_cache_max_entries,
                config.identity_cache_max_age_seconds,
            ),
            name_cache=_cache(
                NAME_CACHE_FILE,
                config.identity_cache_max_entries,
                config.identity_cache_max_age_seconds,
            ),
            stats_cache=_cache(
                REMOTE_STATS_CACHE_FILE,
                config.remote_stats_cache_max_entries,
                config.remote_stats_cache_max_age_seconds,
            ),
            on_phase=on_phase,
        )

    async def aclose(self) -> None:
        """Stop cache pruning timers and close the HTTP client."""
        for cache in (self.summary_cache, self.resolver.email_cache,
                      self.resolver.name_cache, self.stats_cache):
            if cache is not None:
                await cache.close()
        if self.client is not None:
            await self.client.aclose()

    async def __aenter__(self) -> "ContributionService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _enter(self, slug: str, phase: Phase) -> Phase:
        logger.info("%s: %s", slug, phase.value)
        if self.on_phase is not None:
            self.on_phase(slug, phase)
        return phase

    async def _description(self, slug: str, signal: Optional[CancellationSignal]) -> Optional[str]:
        if self.client is None:
            return None
        try:
            payload = await self.client.get_repository(slug, signal=signal)
        except CANCELLED:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not fetch description for %s: %s", slug, exc)
            return None
        description = payload.get("description") if isinstance(payload, dict) else None
        return description or None

    async def _cached_summary(
        self, key: str
    ) -> tuple[Optional[RepoContributionSummary], Optional[dict[str, list[PeriodContributor]]]]:
        """(summary, untruncated rows per label) from the summary cache.

        Rows are None for entries written without them.
        """
        entry = await self.summary_cache.get(key)
        if entry is None:
            return None, None
        try:
            summary = RepoContributionSummary.from_dict(entry.value)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed cached summary %s: %s", key, exc)
            return None, None
        raw_rows = entry.value.get(PERIOD_ROWS_KEY)
        if not isinstance(raw_rows, dict):
            return summary, None
        try:
            rows = {
                str(label): [PeriodContributor.from_dict(row) for row in label_rows]
                for label, label_rows in raw_rows.items()
            }
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed cached period rows %s: %s", key, exc)
            return summary, None
        return summary, rows

    async def _resolve_unresolved(
        self,
        accumulator: SeriesAccumulator,
        contributors: Iterable[PeriodContributor],
        *,
        slug: str,
        repo_path: Path,
        signal: Optional[CancellationSignal],
    ) -> None:
        for contributor in accumulator.unresolved(contributors):
            profile_url = await self.resolver.resolve(
                contributor.email,
                contributor.author,
                slug=slug,
                repo_path=repo_path,
                signal=signal,
            )
            accumulator.learn(contributor.email, contributor.author, profile_url)

    # ── Public API ────────────────────────────────────────────────────────────

    async def collect(
        self,
        slug: str,
        limit: int,
        *,
        on_progress: Optional[ProgressCallback] = None,
        signal: Optional[CancellationSignal] = None,
    ) -> RepoContributionSummary:
        """Collect (or refresh) the contribution summary for *slug*.

        Raises:
            ValidationError:   limit is not a positive integer or slug is malformed.
            SyncError:         a git step other than the fast-forward pull failed.
            WindowError:       the clone has no (parsable) commits.
            CancellationError: the signal fired.
        """
        emitter = ProgressEmitter(on_progress)
        phase = self._enter(slug, Phase.VALIDATING)
        try:
            validate_limit(limit)
            parse_slug(slug)
            raise_if_cancelled(signal)
            emitter.status(f"Preparing repository data for {slug}...")

            phase = self._enter(slug, Phase.SYNCING)
            repo_path = await self.synchronizer.ensure(slug, emitter=emitter, signal=signal)

            phase = self._enter(slug, Phase.WINDOWING)
            grace = self.config.kill_grace_seconds
            first_commit, last_commit = await resolve_commit_window(
                repo_path, signal=signal, grace_seconds=grace
            )
            interval = determine_interval(first_commit, last_commit)
            definitions = generate_periods(first_commit, last_commit, interval)
            start_date, end_date = first_commit.isoformat(), last_commit.isoformat()
            description, disk_size, clone_depth = await _gather_cancelling(
                self._description(slug, signal),
                asyncio.to_thread(directory_size, str(repo_path)),
                count_commits(repo_path, signal=signal, grace_seconds=grace),
            )

            key = summary_cache_key(slug, limit)
            cached, cached_rows = await self._cached_summary(key)
            reused = reusable_period_count(cached, interval, start_date, end_date, definitions)
            accumulator = SeriesAccumulator(d.label for d in definitions)
            periods: list[PeriodRecord] = []
            if reused:
                phase = self._enter(slug, Phase.CACHE_HIT_REUSE)
                logger.debug("Reusing %d of %d cached periods for %s", reused, len(definitions), key)
                for record in cached.periods[:reused]:
                    copy = PeriodRecord.from_dict(record.to_dict())
                    for contributor in copy.contributors:
                        accumulator.learn(contributor.email, contributor.author, contributor.profile_url)
                    periods.append(copy)
                reused_labels = [d.label for d in definitions[:reused]]
                if cached_rows is not None and all(label in cached_rows for label in reused_labels):
                    for label in reused_labels:
                        accumulator.add_rows(label, cached_rows[label])
                else:
                    accumulator.add_cached_series(reused_labels, cached.series)

            phase = self._enter(slug, Phase.AGGREGATING)
            emitter.status(f"Calculating top {limit} contributors per {interval}")
            stride = progress_stride(len(definitions), self.config.progress_emissions)
            for index in range(reused, len(definitions)):
                raise_if_cancelled(signal)
                definition = definitions[index]
                output = await shortlog_for_period(
                    repo_path, definition, signal=signal, grace_seconds=grace
                )
                rows = parse_shortlog_rows(output)
                accumulator.add_rows(definition.label, rows)
                record = PeriodRecord(definition.label, definition.start, definition.end, rows[:limit])
                await self._resolve_unresolved(
                    accumulator, record.contributors, slug=slug, repo_path=repo_path, signal=signal
                )
                periods.append(record)
                if (index + 1) % stride == 0 or index == len(definitions) - 1:
                    emitter.status(f"Processed {index + 1} of {len(definitions)} periods")

            phase = self._enter(slug, Phase.RESOLVING_IDENTITIES)
            accumulator.apply_to_records(periods)
            series = accumulator.build_series(periods)
            summary = RepoContributionSummary(
                slug=slug,
                interval=interval,
                start_date=start_date,
                end_date=end_date,
                periods=periods,
                series=series,
                repo_path=str(repo_path),
                description=description,
                clone_depth=clone_depth,
                disk_size=disk_size,
            )

            raise_if_cancelled(signal)
            phase = self._enter(slug, Phase.PERSISTING)
            payload = summary.to_dict(include_repo_path=False)
            payload[PERIOD_ROWS_KEY] = {
                label: [row.to_dict() for row in rows]
                for label, rows in accumulator.rows_by_label().items()
            }
            await self.summary_cache.set(key, payload)

            phase = self._enter(slug, Phase.DONE)
            emitter.status("Contributor statistics ready.")
            return summary
        except CANCELLED:
            logger.info("%s: cancelled during %s", slug, phase.value)
            self._enter(slug, Phase.CANCELLED)
            raise
        except ContribsError as exc:
            logger.info("%s: failed during %s: %s", slug, phase.value, exc)
            self._enter(slug, Phase.FAILED)
            raise

    async def collect_remote(
        self,
        slug: str,
        limit: int,
        *,
        on_progress: Optional[ProgressCallback] = None,
        signal: Optional[CancellationSignal] = None,
    ) -> Optional[RepoContributionSummary]:
        """Summary from GitHub's statistics API instead of a local clone."""
        parse_slug(slug)
        if self.client is None or self.stats_cache is None:
            raise ContribsError("Remote statistics need a GitHub client and a stats cache.")
        return await collect_remote_contribution_summary(
            slug,
            limit,
            self.client,
            self.stats_cache,
            git_root=self.config.git_root,
            emitter=ProgressEmitter(on_progress),
            signal=signal,
        )

    async def collect_many(
        self,
        slugs: Iterable[str],
        limit: int,
        *,
        on_progress: Optional[ProgressCallback] = None,
        signal: Optional[CancellationSignal] = None,
    ) -> list[RepoContributionSummary]:
        """Collect summaries one repository at a time.

        A failing repository is logged and skipped; cancellation stops the
        whole batch.
        """
        validate_limit(limit)
        emitter = ProgressEmitter(on_progress)
        summaries: list[RepoContributionSummary] = []
        slugs = list(slugs)
        for position, slug in enumerate(slugs, start=1):
            raise_if_cancelled(signal)
            emitter.status(f"[{position}/{len(slugs)}] {slug}")
            try:
                summaries.append(
                    await self.collect(slug, limit, on_progress=on_progress, signal=signal)
                )
            except CANCELLED:
                raise
            except ContribsError as exc:
                logger.warning("Skipping %s: %s", slug, exc)
                emitter.status(f"Skipping {slug}: {exc}")
        return summaries

    async def collect_top_starred(
        self,
        owner: str,
        count: int,
        limit: int,
        *,
        on_progress: Optional[ProgressCallback] = None,
        signal: Optional[CancellationSignal] = None,
    ) -> list[RepoContributionSummary]:
        """Collect summaries for *owner*'s *count* most-starred repositories."""
        validate_limit(limit)
        validate_limit(count)
        if self.client is None:
            raise ContribsError("Listing starred repositories needs a GitHub client.")
        emitter = ProgressEmitter(on_progress)
        emitter.status(f"Looking up the {count} most-starred repositories of {owner}...")
        slugs = await self.client.top_starred_repositories(owner, count, signal=signal)
        logger.info("Top-starred repositories of %s: %s", owner, ", ".join(slugs) or "none")
        return await self.collect_many(slugs, limit, on_progress=on_progress, signal=signal)


# ---------------------------------------------------------------------------
# Module-level entry point
# ---------------------------------------------------------------------------

async def collect_contribution_summary(
    slug: str,
    limit: int,
    *,
    on_progress: Optional[ProgressCallback] = None,
    signal: Optional[CancellationSignal] = None,
    config: Optional[ContribsConfig] = None,
    service: Optional[ContributionService] = None,
) -> RepoContributionSummary:
    """One-shot collection. Uses *service* when given, else builds (and closes) one."""
    if service is not None:
        return await service.collect(slug, limit, on_progress=on_progress, signal=signal)
    validate_limit(limit)
    async with ContributionService.from_config(config) as owned:
        return await owned.collect(slug, limit, on_progress=on_progress, signal=signal)
