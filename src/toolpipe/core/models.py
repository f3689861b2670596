"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any host-specific message or configuration types. Everything is
frozen and child collections are tuples, so rule trees are immutable once the
configuration layer has built them.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

INPUT_PLACEHOLDER = "<INPUT>"

_PARAMETER_NAME = re.compile(r"^[A-Za-z0-9_]+$")


class InputMode(enum.Enum):
    """How message bytes reach the external process."""

    STDIN = "stdin"
    FILENAME = "filename"


class ToolScope(enum.Enum):
    """Which side of an HTTP exchange a tool applies to."""

    REQUEST_RESPONSE = "request_response"
    REQUEST_ONLY = "request_only"
    RESPONSE_ONLY = "response_only"


class MatchStrategy(enum.Enum):
    """How a filter is applied to a selection of several messages."""

    ALL = "all"
    ANY = "any"


class Highlight(enum.Enum):
    """Colors a highlighter tool can mark a message with."""

    RED = "red"
    ORANGE = "orange"
    YELLOW = "yellow"
    GREEN = "green"
    CYAN = "cyan"
    BLUE = "blue"
    PINK = "pink"
    MAGENTA = "magenta"
    GRAY = "gray"


class ParameterInputType(enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    FILE = "file"


class RegexFlag(enum.IntFlag):
    """Regex flags, stored with their historical numeric values."""

    NONE = 0
    CASE_INSENSITIVE = 2
    COMMENTS = 4
    MULTILINE = 8
    DOTALL = 32
    UNICODE_CASE = 64
    CANON_EQ = 128

    @classmethod
    def compose(cls, flags: Iterable["RegexFlag"]) -> "RegexFlag":
        value = cls.NONE
        for flag in flags:
            value |= flag
        return value

    @classmethod
    def from_int(cls, value: int) -> "RegexFlag":
        known = cls.NONE
        for member in (
            cls.CASE_INSENSITIVE,
            cls.COMMENTS,
            cls.MULTILINE,
            cls.DOTALL,
            cls.UNICODE_CASE,
            cls.CANON_EQ,
        ):
            if value & member:
                known |= member
        return known

    @property
    def description(self) -> str:
        return _FLAG_DESCRIPTIONS.get(self, self.name or "")


_FLAG_DESCRIPTIONS = {
    RegexFlag.CASE_INSENSITIVE: "Case insensitive",
    RegexFlag.COMMENTS: "Comments",
    RegexFlag.MULTILINE: "Multiline",
    RegexFlag.DOTALL: "Dot matches all",
    RegexFlag.UNICODE_CASE: "Unicode case",
    RegexFlag.CANON_EQ: "Canonical equivalence",
}


@dataclass(frozen=True)
class Message:
    """Normalized view of one captured message, built by the caller."""

    content: bytes
    text: str
    headers: Optional[Tuple[str, ...]] = None
    url: Optional[str] = None
    in_scope: Optional[Callable[[str], bool]] = None
    is_request: bool = True

    @classmethod
    def from_bytes(cls, data: bytes) -> "Message":
        """Wrap raw bytes (e.g. process output) without headers or URL."""

        return cls(content=data, text=data.decode("utf-8", errors="replace"))


@dataclass(frozen=True)
class RegexSpec:
    pattern: str
    flags: RegexFlag = RegexFlag.NONE


@dataclass(frozen=True)
class HeaderMatch:
    header: str
    regex: RegexSpec


@dataclass(frozen=True)
class ParameterMetadata:
    """Structured hints for whatever prompts the operator for a value."""

    input_type: ParameterInputType = ParameterInputType.TEXT
    choices: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Parameter:
    name: str
    label: str = ""
    default_value: str = ""
    required: bool = False
    description: str = ""
    metadata: Optional[ParameterMetadata] = None

    def __post_init__(self) -> None:
        if not _PARAMETER_NAME.match(self.name):
            raise ValueError(f"Invalid parameter name: {self.name!r}")

    @property
    def display_name(self) -> str:
        return self.label if self.label.strip() else self.name


@dataclass(frozen=True)
class CommandSpec:
    """Declarative description of one external command invocation."""

    prefix_tokens: Tuple[str, ...]
    postfix_tokens: Tuple[str, ...] = ()
    input_mode: InputMode = InputMode.STDIN
    pass_headers: bool = False
    parameters: Tuple[Parameter, ...] = ()
    required_binaries: Tuple[str, ...] = ()
    stdout_filter: Optional["MatchRule"] = None
    stderr_filter: Optional["MatchRule"] = None
    success_exit_codes: Tuple[int, ...] = (0,)

    def __post_init__(self) -> None:
        if not self.prefix_tokens:
            raise ValueError("A command needs at least one prefix token")
        names = [parameter.name for parameter in self.parameters]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate parameter names: {', '.join(duplicates)}")

    @classmethod
    def from_tokens(cls, tokens: Iterable[str], **kwargs) -> "CommandSpec":
        """Split a flat token list on the ``<INPUT>`` placeholder.

        A list without the placeholder becomes a stdin-mode command.
        """

        tokens = list(tokens)
        positions = [index for index, token in enumerate(tokens) if token == INPUT_PLACEHOLDER]
        if len(positions) > 1:
            raise ValueError(f"At most one {INPUT_PLACEHOLDER} token is allowed")
        if not positions:
            return cls(prefix_tokens=tuple(tokens), input_mode=InputMode.STDIN, **kwargs)
        index = positions[0]
        return cls(
            prefix_tokens=tuple(tokens[:index]),
            postfix_tokens=tuple(tokens[index + 1 :]),
            input_mode=InputMode.FILENAME,
            **kwargs,
        )

    @property
    def input_placeholder_index(self) -> Optional[int]:
        if self.input_mode is InputMode.FILENAME:
            return len(self.prefix_tokens)
        return None

    @property
    def executable(self) -> str:
        return self.prefix_tokens[0]

    @property
    def has_filter(self) -> bool:
        return self.stdout_filter is not None or self.stderr_filter is not None

    @property
    def tokens(self) -> Tuple[str, ...]:
        """The flat token list, with ``<INPUT>`` marking the file position."""

        if self.input_mode is InputMode.FILENAME:
            return self.prefix_tokens + (INPUT_PLACEHOLDER,) + self.postfix_tokens
        return self.prefix_tokens


@dataclass(frozen=True)
class MatchRule:
    """Recursive predicate over a message."""

    negation: bool = False
    prefix: Optional[bytes] = None
    postfix: Optional[bytes] = None
    regex: Optional[RegexSpec] = None
    header: Optional[HeaderMatch] = None
    command: Optional[CommandSpec] = None
    in_scope: bool = False
    and_also: Tuple["MatchRule", ...] = ()
    or_else: Tuple["MatchRule", ...] = ()


@dataclass(frozen=True)
class ToolDefinition:
    """A named tool: a command plus an optional filter gating it."""

    name: str
    command: CommandSpec
    enabled: bool = True
    scope: ToolScope = ToolScope.REQUEST_RESPONSE
    filter: Optional[MatchRule] = None
    tags: Tuple[str, ...] = ()

    def is_in_scope(self, is_request: bool) -> bool:
        if self.scope is ToolScope.REQUEST_ONLY:
            return is_request
        if self.scope is ToolScope.RESPONSE_ONLY:
            return not is_request
        return True
