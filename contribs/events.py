"""
contribs/events.py — Progress Event Bus.

Two event variants flow from the pipeline to whichever presentation layer is
attached:

    StatusEvent(message)               coarse phase transitions
    GitEvent(command, stream, text)    raw subprocess output, tagged with a
                                       human-readable command label

Delivery is a plain callback. Events are ephemeral: nothing here is persisted
and delivery is best effort (a failing consumer is logged and ignored).

Consumers shipped with the package:
    ProgressLog   bounded, coalescing view (one entry per git command label)
    StreamMirror  mirrors events to local stdout/stderr
    to_ndjson     line-delimited JSON relay format
"""

import json
import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TextIO, Union

logger = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"
MAX_PROGRESS_ENTRIES = 20


@dataclass(frozen=True)
class StatusEvent:
    """A coarse, human-readable progress message."""

    message: str
    type: str = field(default="status", init=False)


@dataclass(frozen=True)
class GitEvent:
    """A chunk of subprocess output."""

    command: str
    stream: str  # "stdout" | "stderr"
    text: str
    type: str = field(default="git", init=False)

    def __post_init__(self) -> None:
        if self.stream not in (STDOUT, STDERR):
            raise ValueError(f"Unknown stream {self.stream!r}")


ProgressEvent = Union[StatusEvent, GitEvent]
ProgressCallback = Callable[[ProgressEvent], None]


def event_to_dict(event: ProgressEvent) -> dict:
    """Serialise an event to the relay wire shape."""
    if isinstance(event, StatusEvent):
        return {"type": "status", "message": event.message}
    if isinstance(event, GitEvent):
        return {
            "type": "git",
            "command": event.command,
            "stream": event.stream,
            "text": event.text,
        }
    raise TypeError(f"Unknown progress event: {event!r}")


def event_from_dict(payload: dict) -> ProgressEvent:
    """Inverse of event_to_dict(). Raises ValueError on unknown shapes."""
    kind = payload.get("type")
    if kind == "status":
        return StatusEvent(message=str(payload.get("message", "")))
    if kind == "git":
        return GitEvent(
            command=str(payload.get("command", "")),
            stream=str(payload.get("stream", STDOUT)),
            text=str(payload.get("text", "")),
        )
    raise ValueError(f"Unknown progress event type: {kind!r}")


def to_ndjson(event: ProgressEvent) -> str:
    """One JSON document per line, as relayed to remote clients."""
    return json.dumps(event_to_dict(event)) + "\n"


class ProgressEmitter:
    """Callback wrapper used by every pipeline component.

    A missing callback turns every emission into a no-op. Exceptions raised
    by the consumer are logged and swallowed so that a broken presentation
    layer cannot fail an aggregation.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback

    @property
    def enabled(self) -> bool:
        return self._callback is not None

    def emit(self, event: ProgressEvent) -> None:
        if self._callback is None:
            return
        try:
            self._callback(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Progress consumer raised %s: %s", type(exc).__name__, exc)

    def status(self, message: str) -> None:
        self.emit(StatusEvent(message))

    def git(self, command: str, stream: str, text: str) -> None:
        self.emit(GitEvent(command=command, stream=stream, text=text))

    def handlers_for(
        self, command: str
    ) -> tuple[Optional[Callable[[str], None]], Optional[Callable[[str], None]]]:
        """Return (on_stdout, on_stderr) sinks tagged with *command*."""
        if self._callback is None:
            return None, None
        return (
            lambda chunk: self.git(command, STDOUT, chunk),
            lambda chunk: self.git(command, STDERR, chunk),
        )


# ---------------------------------------------------------------------------
# Consumers
# ---------------------------------------------------------------------------

@dataclass
class ProgressEntry:
    """One visible line of a ProgressLog."""

    id: int
    message: str
    timestamp: float
    kind: str  # "status" | "git"
    command: Optional[str] = None


class ProgressLog:
    """Bounded, coalescing view of a progress stream.

    - A status message identical to the newest entry refreshes its timestamp
      instead of appending a duplicate.
    - Git output for a command label replaces that label's previous entry and
      moves it to the end, so a noisy ``git clone`` occupies one line.
    - Only the newest *max_entries* entries are kept.
    """

    def __init__(
        self,
        max_entries: int = MAX_PROGRESS_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = max_entries
        self._clock = clock
        self._entries: list[ProgressEntry] = []
        self._git_entry_ids: dict[str, int] = {}
        self._next_id = 0

    @property
    def entries(self) -> list[ProgressEntry]:
        return list(self._entries)

    def messages(self) -> list[str]:
        return [entry.message for entry in self._entries]

    def __call__(self, event: ProgressEvent) -> None:
        self.apply(event)

    def apply(self, event: ProgressEvent) -> None:
        if isinstance(event, StatusEvent):
            self._apply_status(event.message)
        elif isinstance(event, GitEvent):
            self._apply_git(event.command, event.text)
        else:
            raise TypeError(f"Unknown progress event: {event!r}")

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _append(self, entry: ProgressEntry) -> None:
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            evicted = self._entries[:-self.max_entries]
            self._entries = self._entries[-self.max_entries:]
            for old in evicted:
                if old.kind == "git" and self._git_entry_ids.get(old.command) == old.id:
                    del self._git_entry_ids[old.command]

    def _apply_status(self, message: str) -> None:
        trimmed = (message or "").strip()
        if not trimmed:
            return
        now = self._clock()
        last = self._entries[-1] if self._entries else None
        if last is not None and last.kind == "status" and last.message == trimmed:
            last.timestamp = now
            return
        self._append(ProgressEntry(self._new_id(), trimmed, now, "status"))

    def _apply_git(self, command: str, text: str) -> None:
        trimmed = (text or "").strip()
        if not trimmed:
            return
        # git progress meters redraw with carriage returns; keep the last frame
        trimmed = trimmed.replace("\r", "\n").strip().splitlines()[-1].strip()
        safe_command = command or "git"
        label = f"[{safe_command}] {trimmed}"
        now = self._clock()

        existing_id = self._git_entry_ids.get(safe_command)
        if existing_id is not None:
            existing = next((e for e in self._entries if e.id == existing_id), None)
            if existing is not None:
                self._entries.remove(existing)
                existing.message = label
                existing.timestamp = now
                self._append(existing)
                return

        entry = ProgressEntry(self._new_id(), label, now, "git", command=safe_command)
        self._git_entry_ids[safe_command] = entry.id
        self._append(entry)


class StreamMirror:
    """Mirror events to local standard streams (status lines and raw git output)."""

    def __init__(self, stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None) -> None:
        self._stdout = stdout
        self._stderr = stderr

    def __call__(self, event: ProgressEvent) -> None:
        out = self._stdout or sys.stdout
        err = self._stderr or sys.stderr
        if isinstance(event, StatusEvent):
            out.write(event.message + "\n")
        elif isinstance(event, GitEvent):
            (err if event.stream == STDERR else out).write(event.text)
        else:
            raise TypeError(f"Unknown progress event: {event!r}")
        out.flush()
