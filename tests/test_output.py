from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from toolpipe.core.config import ExecutionConfig
from toolpipe.core.executor import CommandExecutor, Execution
from toolpipe.core.models import INPUT_PLACEHOLDER, CommandSpec
from toolpipe.core.output import discard_temp_files, read_streams, with_process

SLEEPER = "import time, sys; print('ready', flush=True); time.sleep(30)"


def _start(tmp_path: Path, code: str, *extra: str, inputs=(b"data",)) -> Execution:
    executor = CommandExecutor(lambda name: True, ExecutionConfig(temp_dir=str(tmp_path)))
    spec = CommandSpec.from_tokens([sys.executable, "-c", code, *extra])
    return executor.execute(spec, {}, list(inputs))


def test_streams_are_collected_separately(tmp_path: Path) -> None:
    code = (
        "import sys\n"
        "sys.stderr.write('e' * 200000)\n"
        "sys.stdout.write('out')\n"
    )
    execution = _start(tmp_path, code)

    stdout, stderr = with_process(execution, read_streams)

    assert stdout == b"out"
    assert stderr == b"e" * 200000
    assert execution.process.returncode == 0


def test_cleanup_runs_when_extractor_raises(tmp_path: Path) -> None:
    execution = _start(tmp_path, SLEEPER, INPUT_PLACEHOLDER)
    temp_file = execution.temp_files[0]
    assert os.path.exists(temp_file)

    def _explode(process) -> None:
        process.stdout.readline()
        raise RuntimeError("extractor failed")

    with pytest.raises(RuntimeError, match="extractor failed"):
        with_process(execution, _explode)

    assert execution.process.returncode is not None
    assert not os.path.exists(temp_file)


def test_missing_temp_file_is_ignored(tmp_path: Path) -> None:
    execution = _start(tmp_path, "pass", INPUT_PLACEHOLDER)
    os.remove(execution.temp_files[0])

    assert with_process(execution, read_streams) == (b"", b"")


def test_undeletable_temp_file_is_logged(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    directory = tmp_path / "not-a-file"
    directory.mkdir()

    discard_temp_files([str(directory)])

    assert directory.exists()
    assert "Could not delete temp file" in caplog.text
