from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from toolpipe.core.config import ExecutionConfig, ProcessorConfig
from toolpipe.core.errors import MissingParameters
from toolpipe.core.executor import CommandExecutor
from toolpipe.core.models import (
    CommandSpec,
    Highlight,
    MatchRule,
    Parameter,
    RegexSpec,
    ToolDefinition,
    ToolScope,
)
from toolpipe.core.processor import ToolProcessor, file_extension

UPPER = "import sys; sys.stdout.buffer.write(sys.stdin.buffer.read().upper())"
RAW = b"POST /api HTTP/1.1\r\nHost: example.com\r\nContent-Type: text/plain\r\n\r\nhello"


def _tool(code: str = UPPER, **kwargs) -> ToolDefinition:
    command_kwargs = {key: kwargs.pop(key) for key in ("pass_headers", "parameters") if key in kwargs}
    command = CommandSpec(prefix_tokens=(sys.executable, "-c", code), **command_kwargs)
    return ToolDefinition(name="upper", command=command, **kwargs)


def _processor(tool: ToolDefinition, exists=lambda name: True, **kwargs) -> ToolProcessor:
    return ToolProcessor(tool, CommandExecutor(exists), **kwargs)


def test_body_is_rewritten_and_headers_kept() -> None:
    result = _processor(_tool()).process(RAW)

    assert result == b"POST /api HTTP/1.1\r\nHost: example.com\r\nContent-Type: text/plain\r\n\r\nHELLO"


def test_pass_headers_pipes_whole_message() -> None:
    result = _processor(_tool(pass_headers=True)).process(RAW)

    assert result == RAW.upper()


def test_ignore_output_keeps_message() -> None:
    assert _processor(_tool()).process(RAW, ignore_output=True) is RAW


def test_disabled_tool_is_skipped() -> None:
    assert _processor(_tool(enabled=False)).process(RAW) is RAW


def test_scope_limits_message_direction() -> None:
    processor = _processor(_tool(scope=ToolScope.REQUEST_ONLY))

    assert processor.process(RAW, is_request=False) is RAW
    assert processor.process(RAW, is_request=True) != RAW


def test_message_without_body_is_skipped() -> None:
    raw = b"GET / HTTP/1.1\r\nHost: example.com\r\n\r\n"

    assert _processor(_tool()).process(raw) is raw


def test_filter_blocks_non_matching_message() -> None:
    processor = _processor(_tool(filter=MatchRule(prefix=b"{")))

    assert processor.process(RAW) is RAW


def test_filter_sees_headers_and_scope() -> None:
    rule = MatchRule(in_scope=True)
    processor = _processor(_tool(filter=rule))

    assert processor.process(RAW, url="https://example.com/api", in_scope=lambda url: True) != RAW
    assert processor.process(RAW, url="https://example.com/api", in_scope=lambda url: False) is RAW


def test_missing_dependency_leaves_message_unchanged() -> None:
    assert _processor(_tool(), exists=lambda name: False).process(RAW) is RAW


def test_launch_failure_leaves_message_unchanged() -> None:
    tool = ToolDefinition(name="broken", command=CommandSpec(prefix_tokens=("/nonexistent/toolpipe-tool",)))

    assert _processor(tool).process(RAW) is RAW


def test_run_raises_parameter_errors() -> None:
    tool = _tool(parameters=(Parameter(name="key", required=True),))

    with pytest.raises(MissingParameters):
        _processor(tool).run([b"data"])

    result = _processor(tool, parameters={"key": "k"}).run([b"data"])
    assert result.stdout == b"DATA"
    assert result.exit_code == 0


def test_run_reports_exit_code_and_stderr() -> None:
    code = "import sys; sys.stderr.write('oops'); sys.exit(5)"

    result = _processor(_tool(code)).run([b""])

    assert result.exit_code == 5
    assert result.stderr == b"oops"


def test_developer_mode_logs_stderr(caplog: pytest.LogCaptureFixture) -> None:
    code = "import sys; sys.stderr.write('diagnostic output'); sys.stdout.write('ok')"
    processor = _processor(_tool(code), config=ProcessorConfig(developer=True))

    processor.process(RAW)

    assert "diagnostic output" in caplog.text


def test_handle_runs_off_the_event_loop() -> None:
    processor = _processor(_tool())

    result = asyncio.run(processor.handle(RAW, url="https://example.com/a.txt"))

    assert result.endswith(b"\r\n\r\nHELLO")


def test_file_extension_from_url() -> None:
    assert file_extension("https://example.com/data/report.JSON?x=1") == ".JSON"
    assert file_extension("https://example.com/data/") is None
    assert file_extension(None) is None


def test_temp_file_failure_leaves_message_unchanged(tmp_path: Path) -> None:
    command = CommandSpec.from_tokens([sys.executable, "-c", "pass", "<INPUT>"])
    executor = CommandExecutor(lambda name: True, ExecutionConfig(temp_dir=str(tmp_path / "missing")))
    processor = ToolProcessor(ToolDefinition(name="cat", command=command), executor)

    assert processor.process(RAW) is RAW


def test_annotate_returns_tool_stdout() -> None:
    code = "import sys; print(len(sys.stdin.buffer.read()), 'bytes')"
    processor = _processor(_tool(code, filter=MatchRule(prefix=b"hel")))

    assert processor.annotate(RAW) == "5 bytes\n"
    assert processor.annotate(RAW.replace(b"hello", b"world")) is None


def test_annotate_keeps_existing_comment_unless_overwriting() -> None:
    processor = _processor(_tool("print('new')"))

    assert processor.annotate(RAW, existing="old") is None
    assert processor.annotate(RAW, existing="old", overwrite=True) == "new\n"


def test_annotate_swallows_tool_errors() -> None:
    assert _processor(_tool(), exists=lambda name: False).annotate(RAW) is None


def test_highlight_uses_command_as_predicate() -> None:
    code = "import sys; sys.exit(0 if b'hello' in sys.stdin.buffer.read() else 1)"
    processor = _processor(_tool(code))

    assert processor.highlight(RAW, Highlight.RED) is Highlight.RED
    assert processor.highlight(RAW.replace(b"hello", b"bye"), Highlight.RED) is None
    assert processor.highlight(RAW, Highlight.RED, existing=Highlight.BLUE) is None
    assert processor.highlight(RAW, Highlight.RED, existing=Highlight.BLUE, overwrite=True) is Highlight.RED


def test_highlight_respects_tool_filter() -> None:
    processor = _processor(_tool("pass", filter=MatchRule(regex=RegexSpec("^json"))))

    assert processor.highlight(RAW, Highlight.GREEN) is None
