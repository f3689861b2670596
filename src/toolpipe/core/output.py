"""Scoped cleanup around process output extraction."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from typing import TYPE_CHECKING, Callable, List, Sequence, Tuple, TypeVar

if TYPE_CHECKING:
    from toolpipe.core.executor import Execution

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def discard_temp_files(paths: Sequence[str]) -> None:
    """Best-effort deletion; a leftover temp file is logged, never raised."""

    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            continue
        except OSError as exc:
            LOGGER.warning("Could not delete temp file %s: %s", path, exc)


def read_streams(process: subprocess.Popen) -> Tuple[bytes, bytes]:
    """Read stdout and stderr to EOF.

    stderr is drained on a helper thread so a chatty process cannot block on a
    full pipe while we are still reading stdout.
    """

    stderr_chunks: List[bytes] = []

    def _drain() -> None:
        if process.stderr is not None:
            stderr_chunks.append(process.stderr.read())

    drainer = threading.Thread(target=_drain, name=f"stderr-{process.pid}", daemon=True)
    drainer.start()
    stdout = process.stdout.read() if process.stdout is not None else b""
    drainer.join()
    return stdout, b"".join(stderr_chunks)


def read_stdout(process: subprocess.Popen) -> bytes:
    stdout, _ = read_streams(process)
    return stdout


def drain_stderr(execution: "Execution") -> threading.Thread:
    """Log stderr lines at debug level until EOF on a helper thread.

    For long-running processes whose stdout is read incrementally; the thread
    is joined by ``release``.
    """

    process = execution.process

    def _drain() -> None:
        for line in iter(process.stderr.readline, b""):
            LOGGER.debug("pid %s stderr: %s", process.pid, line.rstrip().decode("utf-8", errors="replace"))

    drainer = threading.Thread(target=_drain, name=f"stderr-{process.pid}", daemon=True)
    drainer.start()
    execution.workers.append(drainer)
    return drainer


def _close(process: subprocess.Popen, stream) -> None:
    if stream is None:
        return
    try:
        stream.close()
    except OSError as exc:
        LOGGER.debug("Closing pipe of %s failed: %s", process.pid, exc)


def release(execution: "Execution", kill: bool = False) -> None:
    """Tear down an execution: optionally kill, reap, close pipes, delete files.

    stdout is closed first so a process still writing to it gets a broken
    pipe; the helper threads are joined before stderr is closed under them.
    """

    process = execution.process
    if kill and process.poll() is None:
        process.kill()
    _close(process, process.stdout)
    for worker in execution.workers:
        worker.join()
    _close(process, process.stderr)
    process.wait()
    discard_temp_files(execution.temp_files)


def with_process(execution: "Execution", extractor: Callable[[subprocess.Popen], T]) -> T:
    """Run ``extractor`` on the process, then always reap it and clean up.

    If the extractor raises, the process is killed so ``wait`` cannot hang on
    a program still blocked writing to a pipe nobody reads.
    """

    try:
        result = extractor(execution.process)
    except BaseException:
        release(execution, kill=True)
        raise
    release(execution)
    return result
