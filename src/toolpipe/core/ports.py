"""Ports (interfaces) used by the core.

Ports define the minimal contracts for environment lookups so that the core
can be exercised with fakes instead of the real filesystem.
"""

from __future__ import annotations

from typing import Protocol


class DependencyCheck(Protocol):
    """Answers whether a named binary can be executed."""

    def __call__(self, name: str) -> bool:
        ...


class ScopePredicate(Protocol):
    """Host-supplied check whether a URL is in the operator's scope."""

    def __call__(self, url: str) -> bool:
        ...
