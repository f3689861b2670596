"""Executable lookup (core domain).

The lookup is a pure function of the search path it is given. Only
``PathDependencyChecker.from_environment`` reads the live environment, so
tests can build a checker over a temporary directory or pass any callable.
"""

from __future__ import annotations

import os
import sys
from typing import Iterable, List, Optional, Sequence, Tuple

from toolpipe.core.errors import DependencyMissing
from toolpipe.core.models import CommandSpec
from toolpipe.core.ports import DependencyCheck

POSIX_SUFFIXES: Tuple[str, ...] = ("",)
WINDOWS_SUFFIXES: Tuple[str, ...] = ("", ".exe", ".bat", ".cmd")


def default_suffixes() -> Tuple[str, ...]:
    return WINDOWS_SUFFIXES if sys.platform.startswith("win") else POSIX_SUFFIXES


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


class PathDependencyChecker:
    """Resolve binaries against an explicit list of directories."""

    def __init__(self, search_path: Iterable[str], suffixes: Optional[Sequence[str]] = None) -> None:
        self._search_path = [entry for entry in search_path if entry]
        self._suffixes = tuple(suffixes) if suffixes is not None else default_suffixes()

    @classmethod
    def from_environment(cls) -> "PathDependencyChecker":
        return cls(os.environ.get("PATH", "").split(os.pathsep))

    def exists(self, name: str) -> bool:
        if not name:
            return False
        # Explicit paths are checked as given rather than searched for.
        if os.sep in name or (os.altsep and os.altsep in name):
            return any(_is_executable(name + suffix) for suffix in self._suffixes)
        for directory in self._search_path:
            for suffix in self._suffixes:
                if _is_executable(os.path.join(directory, name + suffix)):
                    return True
        return False

    __call__ = exists


def required_binaries(spec: CommandSpec) -> List[str]:
    """The primary executable followed by every declared dependency."""

    return [spec.executable, *spec.required_binaries]


def missing_dependencies(spec: CommandSpec, exists: DependencyCheck) -> List[str]:
    return [name for name in required_binaries(spec) if not exists(name)]


def check_dependencies(spec: CommandSpec, exists: DependencyCheck) -> None:
    """Raise DependencyMissing for the first binary that does not resolve."""

    for name in required_binaries(spec):
        if not exists(name):
            raise DependencyMissing(name)
