"""
contribs/git/runner.py — Cancellable subprocess execution.

Every version-control invocation goes through run_command():

    - a fixed argument vector, stdin closed, GIT_TERMINAL_PROMPT=0 so that a
      missing credential fails fast instead of hanging on a prompt
    - stdout/stderr decoded incrementally and forwarded chunk by chunk to the
      optional sinks (the Progress Event Bus)
    - non-zero exit raises SyncError unless allow_failure=True
    - when the cancellation signal fires (or the task is cancelled) the child
      gets SIGTERM, then SIGKILL after a grace period, before the error
      propagates
"""

import asyncio
import codecs
import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from contribs.cancellation import CANCELLED, CancellationSignal, cancellable
from contribs.errors import SyncError

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 2.0
_READ_CHUNK = 4096


@dataclass
class CommandResult:
    """Exit status and full captured output of a finished command."""

    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def _pump(
    stream: Optional[asyncio.StreamReader],
    sink: list[str],
    callback: Optional[Callable[[str], None]],
) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(_READ_CHUNK)
        text = decoder.decode(chunk, final=not chunk)
        if text:
            sink.append(text)
            if callback is not None:
                callback(text)
        if not chunk:
            break


async def terminate_process(
    process: asyncio.subprocess.Process, grace_seconds: float = DEFAULT_GRACE_SECONDS
) -> None:
    """SIGTERM, wait up to *grace_seconds*, then SIGKILL."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
        return
    except asyncio.TimeoutError:
        logger.warning("pid %d ignored SIGTERM for %.1fs — killing", process.pid, grace_seconds)
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


async def run_command(
    argv: Sequence[str],
    *,
    cwd: Optional[str] = None,
    on_stdout: Optional[Callable[[str], None]] = None,
    on_stderr: Optional[Callable[[str], None]] = None,
    signal: Optional[CancellationSignal] = None,
    allow_failure: bool = False,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    on_start: Optional[Callable[[asyncio.subprocess.Process], None]] = None,
) -> CommandResult:
    """Run *argv* to completion and return its captured output.

    Args:
        argv:          Program and arguments (no shell).
        cwd:           Working directory.
        on_stdout:     Receives decoded stdout chunks as they arrive.
        on_stderr:     Receives decoded stderr chunks as they arrive.
        signal:        Cancellation signal; firing it kills the child.
        allow_failure: Return the result instead of raising on non-zero exit.
        grace_seconds: Delay between SIGTERM and SIGKILL on cancellation.
        on_start:      Called with the Process right after spawning.

    Raises:
        SyncError:         the command could not be spawned or exited non-zero.
        CancellationError: the signal fired while the command was running.
    """
    argv = [str(arg) for arg in argv]
    if signal is not None:
        signal.raise_if_cancelled()

    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise SyncError(f"Could not start {' '.join(argv)}: {exc}") from exc

    if on_start is not None:
        on_start(process)

    stdout: list[str] = []
    stderr: list[str] = []
    completion = asyncio.gather(
        _pump(process.stdout, stdout, on_stdout),
        _pump(process.stderr, stderr, on_stderr),
        process.wait(),
    )
    try:
        await cancellable(completion, signal)
    except CANCELLED:
        logger.info("Cancelling %s (pid %d)", argv[:2], process.pid)
        await terminate_process(process, grace_seconds)
        raise

    result = CommandResult(
        argv=argv,
        returncode=process.returncode if process.returncode is not None else -1,
        stdout="".join(stdout),
        stderr="".join(stderr),
    )
    if not result.ok and not allow_failure:
        raise SyncError(
            f"Command failed ({result.returncode}): {' '.join(argv)}\n{result.stderr.strip()}"
        )
    return result
