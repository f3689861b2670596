"""Rule evaluation logic (core domain).

A MatchRule is evaluated in a fixed order:

- every built-in predicate present on the rule (prefix, postfix, regex,
  header, command, in_scope) must hold,
- then every ``and_also`` child must match,
- only if that gate fails are the ``or_else`` children consulted,
- the result is inverted by ``rule.negation`` and then by the caller's
  ``negate`` flag.

Absent predicates contribute nothing, so an empty rule matches everything.
"""

from __future__ import annotations

import functools
import logging
import re
import unicodedata
from typing import Iterable, Mapping, Optional, Sequence

from toolpipe.core.describe import command_line, describe_rule
from toolpipe.core.errors import ToolPipeError
from toolpipe.core.executor import CommandExecutor
from toolpipe.core.models import (
    CommandSpec,
    HeaderMatch,
    MatchRule,
    MatchStrategy,
    Message,
    RegexFlag,
    RegexSpec,
    ToolDefinition,
)
from toolpipe.core.output import read_streams, with_process
from toolpipe.core.parameters import resolve_parameter_values

LOGGER = logging.getLogger(__name__)

_RE_FLAGS = {
    RegexFlag.CASE_INSENSITIVE: re.IGNORECASE,
    RegexFlag.MULTILINE: re.MULTILINE,
    RegexFlag.DOTALL: re.DOTALL,
    RegexFlag.UNICODE_CASE: re.UNICODE,
    RegexFlag.COMMENTS: re.VERBOSE,
}


@functools.lru_cache(maxsize=256)
def compile_regex(pattern: str, flags: RegexFlag) -> re.Pattern:
    re_flags = 0
    for flag, value in _RE_FLAGS.items():
        if flags & flag:
            re_flags |= value
    if flags & RegexFlag.CANON_EQ:
        pattern = unicodedata.normalize("NFC", pattern)
    return re.compile(pattern, re_flags)


def regex_matches(regex: RegexSpec, text: str) -> bool:
    """Substring search; an invalid pattern never matches."""

    try:
        compiled = compile_regex(regex.pattern, regex.flags)
    except re.error as exc:
        LOGGER.error("Error in regex pattern '%s': %s", regex.pattern, exc)
        return False
    if regex.flags & RegexFlag.CANON_EQ:
        text = unicodedata.normalize("NFC", text)
    return compiled.search(text) is not None


def header_matches(header: HeaderMatch, headers: Optional[Sequence[str]]) -> bool:
    if headers is None:
        return False
    wanted = header.header.lower()
    for line in headers:
        if not line.lower().startswith(wanted):
            continue
        name, sep, value = line.partition(":")
        # Only whitespace may sit between the configured name and the colon.
        if not sep or name[len(wanted) :].strip():
            continue
        if regex_matches(header.regex, value.strip()):
            return True
    return False


class MatchEvaluator:
    """Evaluate MatchRule trees, running command predicates when needed."""

    def __init__(self, executor: CommandExecutor) -> None:
        self._executor = executor

    def evaluate(self, rule: MatchRule, message: Message, negate: bool = False) -> bool:
        result = self._matches(rule, message) != rule.negation
        return result != negate

    def _matches(self, rule: MatchRule, message: Message) -> bool:
        gate = (
            self._builtin_predicates(rule, message)
            and all(self.evaluate(child, message) for child in rule.and_also)
        )
        if gate or not rule.or_else:
            return gate
        return any(self.evaluate(child, message) for child in rule.or_else)

    def _builtin_predicates(self, rule: MatchRule, message: Message) -> bool:
        if rule.prefix and not message.content.startswith(rule.prefix):
            return False
        if rule.postfix and not message.content.endswith(rule.postfix):
            return False
        if rule.regex is not None and not regex_matches(rule.regex, message.text):
            return False
        if rule.header is not None and not header_matches(rule.header, message.headers):
            return False
        if rule.command is not None and not self.command_matches(rule.command, message.content):
            return False
        if rule.in_scope and not _is_in_scope(message):
            return False
        return True

    def command_matches(
        self,
        spec: CommandSpec,
        payload: bytes,
        parameters: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """Use a command as a predicate over ``payload``.

        Any failure to build, start or read the process is a non-match.
        """

        try:
            values = resolve_parameter_values(spec, parameters or {})
            execution = self._executor.execute(spec, values, [payload])
            stdout, stderr = with_process(execution, read_streams)
        except (ToolPipeError, OSError) as exc:
            LOGGER.warning("Command filter `%s` failed: %s", command_line(spec), exc)
            return False

        if spec.stdout_filter is not None:
            return self.evaluate(spec.stdout_filter, Message.from_bytes(stdout))
        if spec.stderr_filter is not None:
            return self.evaluate(spec.stderr_filter, Message.from_bytes(stderr))
        return execution.process.returncode in spec.success_exit_codes

    def is_applicable(self, tool: ToolDefinition, message: Message) -> bool:
        """Check a tool's filter, or its command's own success filter."""

        if tool.filter is not None:
            applicable = self.evaluate(tool.filter, message)
            if not applicable:
                LOGGER.debug("%s skipped: message does not satisfy %s", tool.name, describe_rule(tool.filter))
            return applicable
        if tool.command.has_filter:
            return self.command_matches(tool.command, message.content)
        return True

    def can_process(
        self,
        tool: ToolDefinition,
        messages: Iterable[Message],
        strategy: MatchStrategy = MatchStrategy.ALL,
    ) -> bool:
        """Apply a tool's filter to a selection of messages."""

        if tool.filter is None and not tool.command.has_filter:
            return True
        checks = (self.is_applicable(tool, message) for message in messages)
        if strategy is MatchStrategy.ALL:
            return all(checks)
        return any(checks)


def _is_in_scope(message: Message) -> bool:
    if message.url is None or message.in_scope is None:
        return False
    return bool(message.in_scope(message.url))
