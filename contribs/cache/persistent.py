"""
contribs/cache/persistent.py — Generic file-backed key/value cache.

One JSON file per cache instance under the per-user state directory:

    {
      "version": 1,
      "entries": {
        "<key>": {"value": <T>, "updatedAt": "<ISO-8601>"}
      }
    }

Features:
    - Lazy, deduplicated load: the file is read on first access and
      concurrent first callers share that single load.
    - TTL expiry (max_age_seconds) checked on get() and by a background
      pruning task that runs every max(60, prune_interval_seconds).
    - Size bound (max_entries): the oldest updatedAt entries are evicted first.
    - Atomic persistence: write "<file>.<pid>.tmp", then os.replace().
      Writes to one instance are serialized. A failed write is logged and
      reported as False; the cache keeps working from memory.

A file with an unknown version or a malformed shape is treated as empty.
Sharing one file between processes is unsupported.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_FILE_VERSION = 1
APP_STATE_DIR = "contribs"
MIN_PRUNE_INTERVAL_SECONDS = 60.0
DEFAULT_PRUNE_INTERVAL_SECONDS = 300.0


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def resolve_state_dir(override: Optional[str] = None) -> Path:
    """Resolve (and create) the directory holding cache files.

    Precedence: explicit override, $CONTRIBS_STATE_DIR, $XDG_STATE_HOME/contribs,
    ~/.local/state/contribs.
    """
    if override:
        target = Path(override).expanduser()
    elif os.environ.get("CONTRIBS_STATE_DIR", "").strip():
        target = Path(os.environ["CONTRIBS_STATE_DIR"].strip()).expanduser()
    else:
        base = os.environ.get("XDG_STATE_HOME", "").strip()
        root = Path(base) if base else Path.home() / ".local" / "state"
        target = root / APP_STATE_DIR
    target.mkdir(parents=True, exist_ok=True)
    return target


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CacheEntry(Generic[T]):
    """A cached value and the moment it was written."""

    value: T
    updated_at: datetime

    def to_dict(self) -> dict:
        return {"value": self.value, "updatedAt": self.updated_at.isoformat()}


class PersistentCache(Generic[T]):
    """JSON-file-backed cache with TTL, size bound and background pruning.

    Values must be JSON-serialisable. ``None`` is a legitimate value (used for
    negative results); a miss is signalled by get() returning ``None`` instead
    of a CacheEntry.

    Args:
        filename:               File name inside the state directory.
        max_entries:            Evict oldest entries beyond this many.
        max_age_seconds:        Entries older than this are expired.
        prune_interval_seconds: Background prune cadence (clamped to >= 60s).
        state_dir:              Directory override (see resolve_state_dir).
        clock:                  Returns "now" as an aware datetime.
    """

    def __init__(
        self,
        filename: str,
        *,
        max_entries: Optional[int] = None,
        max_age_seconds: Optional[float] = None,
        prune_interval_seconds: Optional[float] = None,
        state_dir: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.filename = filename
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self.prune_interval_seconds = max(
            MIN_PRUNE_INTERVAL_SECONDS,
            prune_interval_seconds if prune_interval_seconds is not None
            else DEFAULT_PRUNE_INTERVAL_SECONDS,
        )
        self._state_dir = state_dir
        self._clock = clock or _utcnow
        self._entries: dict[str, CacheEntry[T]] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._prune_task: Optional[asyncio.Task] = None

    # ── Paths ────────────────────────────────────────────────────────────────

    @property
    def path(self) -> Path:
        return resolve_state_dir(self._state_dir) / self.filename

    # ── Loading ──────────────────────────────────────────────────────────────

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            entries = await asyncio.to_thread(self._read_file)
            self._entries.update(entries)
            self._loaded = True
        self._schedule_prune()

    def _read_file(self) -> dict[str, CacheEntry[T]]:
        path = self.path
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Corrupt cache file %s (%s) — starting fresh", path, exc)
            return {}

        if (
            not isinstance(payload, dict)
            or payload.get("version") != CACHE_FILE_VERSION
            or not isinstance(payload.get("entries"), dict)
        ):
            logger.warning("Cache file %s has an unexpected shape — ignoring it", path)
            return {}

        entries: dict[str, CacheEntry[T]] = {}
        for key, record in payload["entries"].items():
            if not isinstance(record, dict) or "value" not in record:
                continue
            updated_at = _parse_timestamp(record.get("updatedAt"))
            if updated_at is None:
                continue
            entries[key] = CacheEntry(value=record["value"], updated_at=updated_at)
        logger.debug("Loaded %d entries from %s", len(entries), path)
        return entries

    # ── Persistence ──────────────────────────────────────────────────────────

    async def _persist(self) -> bool:
        """Write the current entries to disk. Returns False if the write failed."""
        async with self._write_lock:
            payload = {
                "version": CACHE_FILE_VERSION,
                "entries": {key: entry.to_dict() for key, entry in self._entries.items()},
            }
            return await asyncio.to_thread(self._write_file, payload)

    def _write_file(self, payload: dict) -> bool:
        tmp = None
        try:
            path = self.path
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
            os.replace(tmp, path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to persist cache %s: %s", self.filename, exc)
            if tmp is not None and tmp.exists():
                try:
                    tmp.unlink()
                except OSError:
                    pass
            return False

    # ── Expiry and eviction ──────────────────────────────────────────────────

    def _is_expired(self, entry: CacheEntry[T], now: datetime) -> bool:
        if not self.max_age_seconds:
            return False
        return (now - entry.updated_at).total_seconds() > self.max_age_seconds

    def _enforce_limits(self) -> int:
        if not self.max_entries or len(self._entries) <= self.max_entries:
            return 0
        excess = len(self._entries) - self.max_entries
        # sorted() is stable, so ties keep insertion order
        oldest = sorted(self._entries.items(), key=lambda item: item[1].updated_at)
        for key, _ in oldest[:excess]:
            del self._entries[key]
        logger.debug("Evicted %d entries from %s", excess, self.filename)
        return excess

    async def prune_expired(self) -> int:
        """Remove every TTL-expired entry. Returns the number removed."""
        if not self.max_age_seconds:
            return 0
        await self._ensure_loaded()
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            await self._persist()
        return len(expired)

    def _schedule_prune(self) -> None:
        if not self.max_age_seconds or self._prune_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._prune_task = loop.create_task(self._prune_loop())

    async def _prune_loop(self) -> None:
        while self.max_age_seconds:
            await asyncio.sleep(self.prune_interval_seconds)
            try:
                removed = await self.prune_expired()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Background prune of %s failed: %s", self.filename, exc)
                continue
            if removed:
                logger.debug("Pruned %d expired entries from %s", removed, self.filename)

    async def close(self) -> None:
        """Stop the background pruning task."""
        task, self._prune_task = self._prune_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # ── Public API ───────────────────────────────────────────────────────────

    async def get(self, key: str) -> Optional[CacheEntry[T]]:
        await self._ensure_loaded()
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[key]
            await self._persist()
            return None
        return entry

    async def set(self, key: str, value: T) -> bool:
        """Store *value* under *key*. Returns whether the write reached disk."""
        await self._ensure_loaded()
        # Re-insert so that dict order tracks write order
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value=value, updated_at=self._clock())
        self._enforce_limits()
        return await self._persist()

    async def entries_list(self) -> list[tuple[str, CacheEntry[T]]]:
        await self._ensure_loaded()
        return list(self._entries.items())

    async def __aenter__(self) -> "PersistentCache[T]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def create_persistent_cache(
    filename: str,
    *,
    max_entries: Optional[int] = None,
    max_age_seconds: Optional[float] = None,
    prune_interval_seconds: Optional[float] = None,
    state_dir: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> PersistentCache:
    """Construct a PersistentCache. Nothing is read until first access."""
    return PersistentCache(
        filename,
        max_entries=max_entries,
        max_age_seconds=max_age_seconds,
        prune_interval_seconds=prune_interval_seconds,
        state_dir=state_dir,
        clock=clock,
    )
