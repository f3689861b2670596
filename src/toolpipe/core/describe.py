"""Human-readable rendering of rules and commands.

Used for log lines and for listing tools; negated rules swap their
connectives so "doesn't start with X or doesn't end with Y" reads naturally.
"""

from __future__ import annotations

import re
from typing import List

from toolpipe.core.models import (
    INPUT_PLACEHOLDER,
    CommandSpec,
    HeaderMatch,
    InputMode,
    MatchRule,
    RegexFlag,
    RegexSpec,
)

TRUNCATE_AT = 64

_NEEDS_QUOTING = re.compile(r"[\"\s\\]")
_QUOTED_CHARS = re.compile(r"[\"\\]")


def shell_quote(token: str) -> str:
    """Quote a token for display only; tokens are never run through a shell."""

    if not _NEEDS_QUOTING.search(token):
        return token
    return '"' + _QUOTED_CHARS.sub(lambda match: "\\" + match.group(0), token) + '"'


def truncate(text: str, limit: int = TRUNCATE_AT) -> str:
    if len(text) < limit:
        return text
    return text[:limit] + "..."


def command_line(spec: CommandSpec, limit: int = TRUNCATE_AT) -> str:
    tokens: List[str] = [shell_quote(token) for token in spec.prefix_tokens]
    if spec.input_mode is InputMode.FILENAME:
        tokens.append(INPUT_PLACEHOLDER)
        tokens.extend(shell_quote(token) for token in spec.postfix_tokens)
    return truncate(" ".join(tokens), limit)


def describe_bytes(value: bytes) -> str:
    try:
        return '"' + value.decode("utf-8") + '"'
    except UnicodeDecodeError:
        return "bytes " + ":".join(f"{byte:02x}" for byte in value)


def describe_regex(regex: RegexSpec, negation: bool) -> str:
    verb = "doesn't match" if negation else "matches"
    text = f'{verb} regex "{regex.pattern}"'
    flags = [flag.description for flag in RegexFlag if flag and regex.flags & flag]
    if flags:
        text += f" ({', '.join(flags)})"
    return text


def describe_header(header: HeaderMatch, negation: bool) -> str:
    return f'header "{header.header}" ' + describe_regex(header.regex, negation)


def describe_command(spec: CommandSpec, negation: bool) -> str:
    prefix = f"when invoking `{command_line(spec)}`, "
    if spec.stdout_filter is not None:
        return prefix + "stdout " + describe_rule(spec.stdout_filter, negation)
    if spec.stderr_filter is not None:
        return prefix + "stderr " + describe_rule(spec.stderr_filter, negation)
    codes = [str(code) for code in spec.success_exit_codes]
    if not codes:
        return prefix + "no exit code is accepted"
    values = codes[0] if len(codes) == 1 else ", ".join(codes[:-1]) + f" or {codes[-1]}"
    return prefix + ("exit code isn't " if negation else "exit code is ") + values


def describe_rule(rule: MatchRule, negation: bool = False, hide_parentheses: bool = False) -> str:
    negated = negation != rule.negation
    joiner = " or " if negated else " and "
    items: List[str] = []
    if rule.prefix:
        verb = "doesn't start" if negated else "starts"
        items.append(f"{verb} with {describe_bytes(rule.prefix)}")
    if rule.postfix:
        verb = "doesn't end" if negated else "ends"
        items.append(f"{verb} with {describe_bytes(rule.postfix)}")
    if rule.regex is not None:
        items.append(describe_regex(rule.regex, negated))
    if rule.header is not None:
        items.append(describe_header(rule.header, negated))
    if rule.command is not None:
        items.append(describe_command(rule.command, negated))
    if rule.in_scope:
        items.append("request is" + ("n't" if negated else "") + " in scope")
    if rule.and_also:
        items.append(joiner.join(describe_rule(child, negated) for child in rule.and_also))
    if rule.or_else:
        or_joiner = " and " if negated else " or "
        items.append(or_joiner.join(describe_rule(child, negated) for child in rule.or_else))

    result = truncate(joiner.join(items))
    if len(items) == 1 or hide_parentheses:
        return result
    return f"({result})"
