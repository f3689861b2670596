"""Command invocation engine.

Turns a CommandSpec plus resolved parameter values into a running process.
The process is always started from an argument vector, never through a shell,
so nothing in a captured message can be interpreted as shell syntax. Message
bytes reach the process either through stdin or through temp files whose
paths are inserted at the placeholder position.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from toolpipe.core.config import ExecutionConfig
from toolpipe.core.dependencies import check_dependencies
from toolpipe.core.errors import ProcessLaunchFailure, TempFileFailure
from toolpipe.core.models import CommandSpec, InputMode
from toolpipe.core.output import discard_temp_files
from toolpipe.core.parameters import apply_parameters_to, parameter_environment
from toolpipe.core.ports import DependencyCheck

LOGGER = logging.getLogger(__name__)

InputItem = Union[bytes, Tuple[bytes, Optional[str]]]


class Execution(NamedTuple):
    """A live process plus the temp files and helper threads it owns."""

    process: subprocess.Popen
    temp_files: List[str]
    workers: List[threading.Thread]


def _normalize_input(item: InputItem) -> Tuple[bytes, Optional[str]]:
    if isinstance(item, tuple):
        data, suffix = item
        return bytes(data), suffix
    return bytes(item), None


def apply_default_environment(env: Dict[str, str]) -> None:
    """Fill in defaults without overriding anything already set."""

    # Python tools should flush line by line so generators see output early.
    env.setdefault("PYTHONUNBUFFERED", "1")


class CommandExecutor:
    """Dependency-checked, argv-only process launcher."""

    def __init__(self, dependency_check: DependencyCheck, config: Optional[ExecutionConfig] = None) -> None:
        self._exists = dependency_check
        self._config = config or ExecutionConfig()

    @property
    def config(self) -> ExecutionConfig:
        return self._config

    def build_argv(
        self,
        spec: CommandSpec,
        parameter_values: Mapping[str, str],
        input_paths: Sequence[str] = (),
    ) -> List[str]:
        """Substitute parameters and place input paths at the placeholder."""

        prefix = apply_parameters_to(spec.prefix_tokens, parameter_values)
        postfix = apply_parameters_to(spec.postfix_tokens, parameter_values)
        return prefix + list(input_paths) + postfix

    def _environment(self, parameter_values: Mapping[str, str]) -> Dict[str, str]:
        env = dict(os.environ)
        apply_default_environment(env)
        env.update(parameter_environment(parameter_values, self._config.param_env_prefix))
        return env

    def _write_temp_files(self, inputs: Sequence[Tuple[bytes, Optional[str]]]) -> List[str]:
        paths: List[str] = []
        try:
            for data, suffix in inputs:
                fd, path = tempfile.mkstemp(
                    prefix=self._config.temp_prefix,
                    suffix=suffix or "",
                    dir=self._config.temp_dir,
                )
                paths.append(path)
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
        except OSError as exc:
            discard_temp_files(paths)
            LOGGER.error("Failed to write temp file: %s", exc)
            raise TempFileFailure(exc) from exc
        return paths

    def execute(
        self,
        spec: CommandSpec,
        parameter_values: Mapping[str, str],
        inputs: Sequence[InputItem] = (),
    ) -> Execution:
        """Start ``spec`` and deliver ``inputs`` to it.

        Raises DependencyMissing before anything is created, parameter errors
        before any temp file is written, TempFileFailure when the input cannot
        be written, and ProcessLaunchFailure when the process cannot be started
        (after deleting the temp files). In stdin mode the input is written on
        a helper thread so a tool that streams its output cannot block us.
        """

        check_dependencies(spec, self._exists)
        # Validate placeholders before touching the filesystem.
        self.build_argv(spec, parameter_values)

        normalized = [_normalize_input(item) for item in inputs]
        temp_files: List[str] = []
        if spec.input_mode is InputMode.FILENAME:
            temp_files = self._write_temp_files(normalized)
        argv = self.build_argv(spec, parameter_values, temp_files)

        stdin = subprocess.PIPE if spec.input_mode is InputMode.STDIN else subprocess.DEVNULL
        try:
            process = subprocess.Popen(
                argv,
                stdin=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._environment(parameter_values),
            )
        except (OSError, ValueError) as exc:
            # ValueError: a NUL byte in an argv token or environment value.
            discard_temp_files(temp_files)
            LOGGER.error("Failed to start %s: %s", argv[0], exc)
            raise ProcessLaunchFailure(argv, exc) from exc

        LOGGER.debug("Started pid %s: %s", process.pid, argv)
        workers: List[threading.Thread] = []
        if spec.input_mode is InputMode.STDIN:
            writer = threading.Thread(
                target=_feed_stdin,
                args=(process, [data for data, _ in normalized]),
                name=f"stdin-{process.pid}",
                daemon=True,
            )
            writer.start()
            workers.append(writer)
        return Execution(process=process, temp_files=temp_files, workers=workers)


def _feed_stdin(process: subprocess.Popen, buffers: Sequence[bytes]) -> None:
    """Write every buffer to stdin and close it.

    The target program may legitimately exit without reading its input, so a
    broken pipe is not an error here.
    """

    stream = process.stdin
    if stream is None:
        return
    try:
        for data in buffers:
            stream.write(data)
        stream.flush()
    except OSError as exc:
        LOGGER.debug("Process %s did not consume its input: %s", process.pid, exc)
    finally:
        try:
            stream.close()
        except OSError as exc:
            LOGGER.debug("Closing stdin of %s failed: %s", process.pid, exc)

