"""Core tool dispatch pipeline.

This module is host-agnostic. For one ToolDefinition it enforces a strict
order:
1) Fast-exit for disabled tools or messages outside the tool's scope
2) Split headers and body unless the command wants the whole message
3) Apply the tool's filter (or the command's own success filter)
4) Execute the command and collect stdout with guaranteed cleanup
5) Rebuild the message around the new body

Any toolpipe error while piping live traffic leaves the message unchanged.
``annotate`` and ``highlight`` reuse steps 1-3 and turn the command's stdout
or its verdict into a comment or a color instead of a new message.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from toolpipe.core.config import ProcessorConfig
from toolpipe.core.describe import command_line
from toolpipe.core.errors import ToolPipeError
from toolpipe.core.executor import CommandExecutor, InputItem
from toolpipe.core.http import body_offset, build_http_message, split_headers
from toolpipe.core.matching import MatchEvaluator
from toolpipe.core.models import Highlight, Message, ToolDefinition
from toolpipe.core.output import read_streams, with_process
from toolpipe.core.parameters import resolve_parameter_values
from toolpipe.core.ports import ScopePredicate

LOGGER = logging.getLogger(__name__)

_EXTENSION = re.compile(r"\.[a-z0-9]+$", re.IGNORECASE)


@dataclass(frozen=True)
class ToolResult:
    """Output of one direct tool run."""

    stdout: bytes
    stderr: bytes
    exit_code: int


def file_extension(url: Optional[str]) -> Optional[str]:
    """Extension of the URL path, used as the temp-file suffix."""

    if not url:
        return None
    match = _EXTENSION.search(urlsplit(url).path)
    return match.group(0) if match else None


class ToolProcessor:
    """Orchestrates filtering, execution, and output collection for a tool."""

    def __init__(
        self,
        tool: ToolDefinition,
        executor: CommandExecutor,
        evaluator: Optional[MatchEvaluator] = None,
        config: Optional[ProcessorConfig] = None,
        parameters: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._tool = tool
        self._executor = executor
        self._evaluator = evaluator or MatchEvaluator(executor)
        self._config = config or ProcessorConfig()
        self._parameters = dict(parameters or {})

    @property
    def tool(self) -> ToolDefinition:
        return self._tool

    def run(self, inputs: Sequence[InputItem], parameters: Optional[Mapping[str, str]] = None) -> ToolResult:
        """Operator-triggered execution: errors are raised, not swallowed."""

        values = resolve_parameter_values(self._tool.command, {**self._parameters, **(parameters or {})})
        execution = self._executor.execute(self._tool.command, values, inputs)
        stdout, stderr = with_process(execution, read_streams)
        self._log_stderr(stderr)
        return ToolResult(stdout=stdout, stderr=stderr, exit_code=execution.process.returncode)

    def _prepare(
        self,
        raw: bytes,
        url: Optional[str],
        in_scope: Optional[ScopePredicate],
        is_request: bool,
        command_filter: bool = True,
    ) -> Optional[Tuple[List[str], bytes]]:
        """Headers and tool input for ``raw``, or None when the tool does not apply.

        With ``command_filter`` off only the tool's own filter is checked; the
        caller runs the command as a predicate itself.
        """

        tool = self._tool
        if not tool.enabled or not tool.is_in_scope(is_request):
            return None

        headers = split_headers(raw)
        body = raw if tool.command.pass_headers else raw[body_offset(raw) :]
        # Without a body, tools that only see bodies have nothing to work on.
        if not body:
            return None

        message = Message(
            content=body,
            text=body.decode("utf-8", errors="replace"),
            headers=tuple(headers),
            url=url,
            in_scope=in_scope,
            is_request=is_request,
        )
        if tool.filter is None and not command_filter:
            return headers, body
        if not self._evaluator.is_applicable(tool, message):
            return None
        return headers, body

    def process(
        self,
        raw: bytes,
        url: Optional[str] = None,
        in_scope: Optional[ScopePredicate] = None,
        is_request: bool = True,
        ignore_output: bool = False,
    ) -> bytes:
        """Pipe one raw HTTP message through the tool.

        Returns the replacement message, or ``raw`` itself whenever the tool
        does not apply or fails.
        """

        prepared = self._prepare(raw, url, in_scope, is_request)
        if prepared is None:
            return raw
        headers, body = prepared

        try:
            result = self.run([(body, file_extension(url))])
        except ToolPipeError as exc:
            LOGGER.error("Error piping message through %s: %s", self._tool.name, exc)
            return raw

        if ignore_output:
            return raw
        LOGGER.info("Message rewritten by %s (%s bytes)", self._tool.name, len(result.stdout))
        if self._tool.command.pass_headers:
            return result.stdout
        return build_http_message(headers, result.stdout)

    def annotate(
        self,
        raw: bytes,
        url: Optional[str] = None,
        in_scope: Optional[ScopePredicate] = None,
        is_request: bool = True,
        existing: Optional[str] = None,
        overwrite: bool = False,
    ) -> Optional[str]:
        """Comment for ``raw`` taken from the tool's stdout.

        Returns None when the message already has a comment (unless
        ``overwrite``), when the tool does not apply, or when it fails.
        """

        if existing and not overwrite:
            return None
        prepared = self._prepare(raw, url, in_scope, is_request)
        if prepared is None:
            return None
        _, body = prepared
        try:
            result = self.run([(body, file_extension(url))])
        except ToolPipeError as exc:
            LOGGER.error("Error annotating message with %s: %s", self._tool.name, exc)
            return None
        return result.stdout.decode("utf-8", errors="replace")

    def highlight(
        self,
        raw: bytes,
        color: Highlight,
        url: Optional[str] = None,
        in_scope: Optional[ScopePredicate] = None,
        is_request: bool = True,
        existing: Optional[Highlight] = None,
        overwrite: bool = False,
    ) -> Optional[Highlight]:
        """``color`` when the tool's command accepts ``raw`` as a predicate."""

        if existing is not None and not overwrite:
            return None
        prepared = self._prepare(raw, url, in_scope, is_request, command_filter=False)
        if prepared is None:
            return None
        _, body = prepared
        if not self._evaluator.command_matches(self._tool.command, body, self._parameters):
            return None
        return color

    async def handle(self, raw: bytes, **kwargs) -> bytes:
        """Run ``process`` on a worker thread so the caller's loop stays free."""

        return await asyncio.to_thread(self.process, raw, **kwargs)

    def _log_stderr(self, stderr: bytes) -> None:
        if not self._config.developer or not stderr:
            return
        LOGGER.warning(
            "%s called %s and stderr was not empty:\n%s",
            self._tool.name,
            command_line(self._tool.command),
            stderr.decode("utf-8", errors="replace"),
        )
