"""Exceptions raised by the core.

Every error derives from ToolPipeError so callers that must never crash the
surrounding pipeline (command predicates, the tool processor) can catch one
type.
"""

from __future__ import annotations

from typing import Iterable, Sequence


class ToolPipeError(Exception):
    """Base class for all toolpipe errors."""


class DependencyMissing(ToolPipeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Dependent executable `{name}` cannot be found in $PATH")
        self.name = name


class MissingParameters(ToolPipeError):
    def __init__(self, names: Iterable[str]) -> None:
        self.names = list(names)
        super().__init__(f"Missing required parameters: {', '.join(self.names)}")


class UnresolvedPlaceholder(ToolPipeError):
    def __init__(self, name: str) -> None:
        super().__init__(f'No value provided for parameter "{name}"')
        self.name = name


class TempFileFailure(ToolPipeError):
    """The input could not be written to a temp file for the command."""

    def __init__(self, cause: OSError) -> None:
        super().__init__(f"Could not write temp file: {cause}")
        self.cause = cause


class ProcessLaunchFailure(ToolPipeError):
    def __init__(self, argv: Sequence[str], cause: Exception) -> None:
        super().__init__(f"Failed to start `{argv[0] if argv else ''}`: {cause}")
        self.argv = list(argv)
        self.cause = cause
