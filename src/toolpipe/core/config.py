"""Core configuration dataclasses.

We keep settings loading outside the core, but these dataclasses define the
shape the core expects so the app layer can build it safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ExecutionConfig:
    """Process and temp-file settings for the command executor."""

    temp_prefix: str = "toolpipe-"
    temp_dir: Optional[str] = None
    param_env_prefix: str = "TOOLPIPE_PARAM_"


@dataclass(frozen=True)
class ProcessorConfig:
    """Settings consumed by the tool processor."""

    developer: bool = False
