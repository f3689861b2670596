from __future__ import annotations

import os
import sys
import threading
from pathlib import Path

import pytest

from toolpipe.core.config import ExecutionConfig
from toolpipe.core.errors import (
    DependencyMissing,
    ProcessLaunchFailure,
    TempFileFailure,
    UnresolvedPlaceholder,
)
from toolpipe.core.executor import CommandExecutor, apply_default_environment
from toolpipe.core.models import INPUT_PLACEHOLDER, CommandSpec, InputMode
from toolpipe.core.output import read_streams, read_stdout, with_process

ECHO_STDIN = "import sys; sys.stdout.buffer.write(sys.stdin.buffer.read())"
CAT_FILES = (
    "import sys\n"
    "for path in sys.argv[1:]:\n"
    "    sys.stdout.buffer.write(open(path, 'rb').read())\n"
)
STREAMING_ECHO = (
    "import sys\n"
    "while True:\n"
    "    chunk = sys.stdin.buffer.read1(4096)\n"
    "    if not chunk:\n"
    "        break\n"
    "    sys.stdout.buffer.write(chunk)\n"
    "    sys.stdout.buffer.flush()\n"
)


def _executor(tmp_path: Path, exists=lambda name: True) -> CommandExecutor:
    return CommandExecutor(exists, ExecutionConfig(temp_dir=str(tmp_path)))


def _python(code: str, *extra: str) -> CommandSpec:
    return CommandSpec.from_tokens([sys.executable, "-c", code, *extra])


def test_stdin_mode_round_trip(tmp_path: Path) -> None:
    executor = _executor(tmp_path)
    spec = _python(ECHO_STDIN)

    execution = executor.execute(spec, {}, [b"hello\x00world"])

    assert spec.input_mode is InputMode.STDIN
    assert execution.temp_files == []
    assert with_process(execution, read_stdout) == b"hello\x00world"


def test_stdin_mode_concatenates_inputs(tmp_path: Path) -> None:
    execution = _executor(tmp_path).execute(_python(ECHO_STDIN), {}, [b"one,", (b"two", ".txt")])

    assert with_process(execution, read_stdout) == b"one,two"


def test_filename_mode_writes_exact_bytes_and_cleans_up(tmp_path: Path) -> None:
    payload = b"\xff\xfe; rm -rf / `id` $(whoami)\r\n"
    spec = _python(CAT_FILES, INPUT_PLACEHOLDER)

    execution = _executor(tmp_path).execute(spec, {}, [payload])

    assert spec.input_mode is InputMode.FILENAME
    assert len(execution.temp_files) == 1
    temp_file = execution.temp_files[0]
    assert Path(temp_file).read_bytes() == payload
    assert os.path.basename(temp_file).startswith("toolpipe-")
    assert execution.process.args[-1] == temp_file

    assert with_process(execution, read_stdout) == payload
    assert not os.path.exists(temp_file)
    assert list(tmp_path.iterdir()) == []


def test_filename_mode_places_paths_between_prefix_and_postfix(tmp_path: Path) -> None:
    code = "import sys; print(' '.join(a if a.startswith('-') else 'FILE' for a in sys.argv[1:]))"
    spec = _python(code, "--before", INPUT_PLACEHOLDER, "--after")

    execution = _executor(tmp_path).execute(spec, {}, [(b"a", ".json"), (b"b", ".json")])

    assert all(path.endswith(".json") for path in execution.temp_files)
    assert with_process(execution, read_stdout).strip() == b"--before FILE FILE --after"


def test_parameters_reach_argv_and_environment(tmp_path: Path) -> None:
    code = "import os, sys; print(sys.argv[1]); print(os.environ['TOOLPIPE_PARAM_GREETING'])"
    spec = _python(code, "--name=${greeting}")

    execution = _executor(tmp_path).execute(spec, {"greeting": "hi there"}, [b""])

    assert with_process(execution, read_stdout).splitlines() == [b"--name=hi there", b"hi there"]


def test_missing_dependency_spawns_nothing(tmp_path: Path) -> None:
    spec = CommandSpec.from_tokens(
        [sys.executable, "-c", "pass", INPUT_PLACEHOLDER], required_binaries=("missing-tool",)
    )
    executor = _executor(tmp_path, exists=lambda name: name != "missing-tool")

    with pytest.raises(DependencyMissing) as excinfo:
        executor.execute(spec, {}, [b"data"])

    assert excinfo.value.name == "missing-tool"
    assert list(tmp_path.iterdir()) == []


def test_unresolved_placeholder_writes_no_temp_files(tmp_path: Path) -> None:
    spec = _python("pass", "${undeclared}", INPUT_PLACEHOLDER)

    with pytest.raises(UnresolvedPlaceholder):
        _executor(tmp_path).execute(spec, {}, [b"data"])

    assert list(tmp_path.iterdir()) == []


def test_launch_failure_deletes_temp_files(tmp_path: Path) -> None:
    missing = str(tmp_path / "does-not-exist" / "tool")
    spec = CommandSpec.from_tokens([missing, INPUT_PLACEHOLDER])

    with pytest.raises(ProcessLaunchFailure) as excinfo:
        _executor(tmp_path).execute(spec, {}, [b"data"])

    assert excinfo.value.argv[0] == missing
    assert isinstance(excinfo.value.cause, OSError)
    assert [path for path in tmp_path.iterdir() if path.is_file()] == []


def test_process_that_ignores_stdin_is_not_an_error(tmp_path: Path) -> None:
    spec = _python("import sys; sys.exit(3)")

    execution = _executor(tmp_path).execute(spec, {}, [b"x" * (1 << 20)])
    stdout, stderr = with_process(execution, read_streams)

    assert stdout == b""
    assert execution.process.returncode == 3


def test_build_argv_substitutes_tokens(tmp_path: Path) -> None:
    spec = CommandSpec.from_tokens(["tool", "-u", "${user}", INPUT_PLACEHOLDER, "-o", "${out}"])

    argv = _executor(tmp_path).build_argv(spec, {"user": "bob", "out": "x.txt"}, ["/tmp/in"])

    assert argv == ["tool", "-u", "bob", "/tmp/in", "-o", "x.txt"]


def test_default_environment_does_not_override() -> None:
    env: dict[str, str] = {}
    apply_default_environment(env)
    assert env["PYTHONUNBUFFERED"] == "1"

    env = {"PYTHONUNBUFFERED": "0"}
    apply_default_environment(env)
    assert env["PYTHONUNBUFFERED"] == "0"


def test_large_input_through_streaming_tool(tmp_path: Path) -> None:
    payload = bytes(range(256)) * 4096
    executor = _executor(tmp_path)
    outputs: list[bytes] = []

    def _pipe() -> None:
        execution = executor.execute(_python(STREAMING_ECHO), {}, [payload])
        outputs.append(with_process(execution, read_stdout))

    worker = threading.Thread(target=_pipe, daemon=True)
    worker.start()
    worker.join(timeout=60)

    assert not worker.is_alive()
    assert outputs == [payload]


def test_stdin_writer_is_joined_on_release(tmp_path: Path) -> None:
    execution = _executor(tmp_path).execute(_python(ECHO_STDIN), {}, [b"data"])

    assert with_process(execution, read_stdout) == b"data"
    assert execution.workers
    assert not any(worker.is_alive() for worker in execution.workers)


def test_nul_byte_in_parameter_is_a_launch_failure(tmp_path: Path) -> None:
    spec = _python("pass", "${p}", INPUT_PLACEHOLDER)

    with pytest.raises(ProcessLaunchFailure) as excinfo:
        _executor(tmp_path).execute(spec, {"p": "a\x00b"}, [b"data"])

    assert isinstance(excinfo.value.cause, ValueError)
    assert list(tmp_path.iterdir()) == []


def test_unwritable_temp_dir_is_a_toolpipe_error(tmp_path: Path) -> None:
    executor = CommandExecutor(lambda name: True, ExecutionConfig(temp_dir=str(tmp_path / "missing")))
    spec = _python(CAT_FILES, INPUT_PLACEHOLDER)

    with pytest.raises(TempFileFailure) as excinfo:
        executor.execute(spec, {}, [b"data"])

    assert isinstance(excinfo.value.cause, OSError)
