"""Lazy line generator backed by a long-running process.

The process is started on the first pull and kept alive while values are
requested one line at a time. Its stderr is drained into the debug log so a
chatty tool cannot stall on a full pipe. State transitions are explicit:

    NOT_STARTED --next_value--> RUNNING --EOF--> FINISHED
    any state   --reset------> NOT_STARTED
    any state   --close------> FINISHED
"""

from __future__ import annotations

import enum
import logging
from typing import Mapping, Optional

from toolpipe.core.executor import CommandExecutor, Execution
from toolpipe.core.models import CommandSpec
from toolpipe.core.output import drain_stderr, release

LOGGER = logging.getLogger(__name__)


class GeneratorState(enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    FINISHED = "finished"


def _strip_line_ending(line: bytes) -> bytes:
    if line.endswith(b"\r\n"):
        return line[:-2]
    if line.endswith(b"\n"):
        return line[:-1]
    return line


class LineGenerator:
    """Yield stdout lines of a command, one per ``next_value`` call."""

    def __init__(
        self,
        executor: CommandExecutor,
        spec: CommandSpec,
        parameter_values: Mapping[str, str],
        seed: bytes = b"",
    ) -> None:
        self._executor = executor
        self._spec = spec
        self._parameter_values = dict(parameter_values)
        self._seed = seed
        self._execution: Optional[Execution] = None
        self._state = GeneratorState.NOT_STARTED

    @property
    def state(self) -> GeneratorState:
        return self._state

    def has_more(self) -> bool:
        return self._state is not GeneratorState.FINISHED

    def next_value(self) -> Optional[bytes]:
        """Return the next line, or None once the process has no more output.

        Starting the process may raise DependencyMissing, a parameter error or
        ProcessLaunchFailure; the generator then stays NOT_STARTED.
        """

        if self._state is GeneratorState.FINISHED:
            return None
        if self._state is GeneratorState.NOT_STARTED:
            self._execution = self._executor.execute(self._spec, self._parameter_values, [self._seed])
            drain_stderr(self._execution)
            self._state = GeneratorState.RUNNING
            LOGGER.debug("Generator started pid %s", self._execution.process.pid)

        line = self._execution.process.stdout.readline()
        if not line:
            self._teardown(kill=False)
            self._state = GeneratorState.FINISHED
            return None
        return _strip_line_ending(line)

    def reset(self) -> None:
        self._teardown(kill=True)
        self._state = GeneratorState.NOT_STARTED

    def close(self) -> None:
        self._teardown(kill=True)
        self._state = GeneratorState.FINISHED

    def _teardown(self, kill: bool) -> None:
        execution, self._execution = self._execution, None
        if execution is not None:
            release(execution, kill=kill)

    def __iter__(self):
        while True:
            value = self.next_value()
            if value is None:
                return
            yield value

    def __enter__(self) -> "LineGenerator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
