"""
Unit tests for contribs.events (Progress Event Bus and its consumers).
"""
import io
import json

import pytest

from contribs.events import (
    GitEvent,
    ProgressEmitter,
    ProgressLog,
    StatusEvent,
    StreamMirror,
    event_from_dict,
    event_to_dict,
    to_ndjson,
)


# ---------------------------------------------------------------------------
# Event shapes
# ---------------------------------------------------------------------------


def test_status_event_wire_shape():
    assert event_to_dict(StatusEvent("Cloning...")) == {"type": "status", "message": "Cloning..."}


def test_git_event_wire_shape():
    event = GitEvent("git fetch --all --tags", "stderr", "remote: done\n")
    assert event_to_dict(event) == {
        "type": "git",
        "command": "git fetch --all --tags",
        "stream": "stderr",
        "text": "remote: done\n",
    }


def test_git_event_rejects_unknown_stream():
    with pytest.raises(ValueError):
        GitEvent("git clone", "stdin", "x")


def test_event_from_dict_inverts_event_to_dict():
    for event in (StatusEvent("ok"), GitEvent("git clone a/b", "stdout", "chunk")):
        assert event_from_dict(event_to_dict(event)) == event


def test_event_from_dict_unknown_type():
    with pytest.raises(ValueError):
        event_from_dict({"type": "metric"})


def test_to_ndjson_is_one_line():
    line = to_ndjson(GitEvent("git clone a/b", "stderr", "Receiving objects:  10%\r"))
    assert line.endswith("\n") and line.count("\n") == 1
    assert json.loads(line)["stream"] == "stderr"


# ---------------------------------------------------------------------------
# ProgressEmitter
# ---------------------------------------------------------------------------


def test_emitter_without_callback_is_noop():
    emitter = ProgressEmitter()
    assert not emitter.enabled
    emitter.status("nothing happens")
    assert emitter.handlers_for("git clone") == (None, None)


def test_emitter_handlers_tag_command_and_stream():
    received = []
    emitter = ProgressEmitter(received.append)
    on_stdout, on_stderr = emitter.handlers_for("git clone acme/widget")
    on_stdout("out")
    on_stderr("err")
    assert received == [
        GitEvent("git clone acme/widget", "stdout", "out"),
        GitEvent("git clone acme/widget", "stderr", "err"),
    ]


def test_emitter_swallows_consumer_errors():
    """A broken consumer must not fail the pipeline."""
    def broken(event):
        raise RuntimeError("display went away")

    ProgressEmitter(broken).status("still fine")


# ---------------------------------------------------------------------------
# ProgressLog
# ---------------------------------------------------------------------------


def test_log_dedupes_consecutive_status():
    clock = iter([1.0, 2.0, 3.0])
    log = ProgressLog(clock=lambda: next(clock))
    log(StatusEvent("Fetching remote references..."))
    log(StatusEvent("Fetching remote references..."))
    assert log.messages() == ["Fetching remote references..."]
    assert log.entries[0].timestamp == 2.0


def test_log_ignores_blank_messages():
    log = ProgressLog()
    log(StatusEvent("   "))
    log(GitEvent("git fetch", "stdout", "\n"))
    assert log.entries == []


def test_log_coalesces_git_output_per_command():
    """Repeated output of one command replaces its line and moves it last."""
    log = ProgressLog()
    log(GitEvent("git clone acme/widget", "stderr", "Receiving objects:  10%"))
    log(StatusEvent("working"))
    log(GitEvent("git clone acme/widget", "stderr", "Receiving objects:  50%\rReceiving objects: 100%\r"))
    assert log.messages() == ["working", "[git clone acme/widget] Receiving objects: 100%"]


def test_log_keeps_separate_lines_per_command():
    log = ProgressLog()
    log(GitEvent("git clone a/b", "stderr", "cloning"))
    log(GitEvent("git fetch --all --tags", "stderr", "fetching"))
    assert log.messages() == ["[git clone a/b] cloning", "[git fetch --all --tags] fetching"]


def test_log_is_bounded():
    log = ProgressLog(max_entries=3)
    for i in range(5):
        log(StatusEvent(f"step {i}"))
    assert log.messages() == ["step 2", "step 3", "step 4"]


def test_evicted_git_lines_are_forgotten():
    """Command labels pushed out by the bound do not stay tracked."""
    log = ProgressLog(max_entries=2)
    for i in range(10):
        log(GitEvent(f"git clone acme/repo{i}", "stderr", "cloning"))
    assert log.messages() == ["[git clone acme/repo8] cloning", "[git clone acme/repo9] cloning"]
    assert set(log._git_entry_ids) == {"git clone acme/repo8", "git clone acme/repo9"}

    log(GitEvent("git clone acme/repo0", "stderr", "again"))
    assert log.messages() == ["[git clone acme/repo9] cloning", "[git clone acme/repo0] again"]


def test_log_rejects_unknown_events():
    with pytest.raises(TypeError):
        ProgressLog().apply({"type": "status", "message": "dict, not an event"})


# ---------------------------------------------------------------------------
# StreamMirror
# ---------------------------------------------------------------------------


def test_stream_mirror_routes_streams():
    out, err = io.StringIO(), io.StringIO()
    mirror = StreamMirror(stdout=out, stderr=err)
    mirror(StatusEvent("Clone complete."))
    mirror(GitEvent("git clone a/b", "stdout", "hello"))
    mirror(GitEvent("git clone a/b", "stderr", "progress"))
    assert out.getvalue() == "Clone complete.\nhello"
    assert err.getvalue() == "progress"
