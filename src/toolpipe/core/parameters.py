"""Parameter resolution and ``${name}`` placeholder substitution."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping

from toolpipe.core.errors import MissingParameters, UnresolvedPlaceholder
from toolpipe.core.models import CommandSpec

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z0-9_]+)\}")


def resolve_parameter_values(spec: CommandSpec, provided: Mapping[str, str]) -> Dict[str, str]:
    """Merge caller values with declared defaults.

    Resolution per parameter: a non-empty provided value, else a non-empty
    default, else the empty string. Every required parameter that ends up
    empty is collected so the error names all of them at once. Provided
    values for undeclared names are passed through unchanged.
    """

    resolved: Dict[str, str] = {}
    missing: List[str] = []
    for parameter in spec.parameters:
        value = provided.get(parameter.name) or parameter.default_value or ""
        if not value and parameter.required:
            missing.append(parameter.display_name)
        resolved[parameter.name] = value

    if missing:
        raise MissingParameters(missing)

    for key, value in provided.items():
        resolved.setdefault(key, value)
    return resolved


def contains_placeholder(token: str) -> bool:
    return PLACEHOLDER_PATTERN.search(token) is not None


def apply_parameters(token: str, values: Mapping[str, str]) -> str:
    """Replace every ``${name}`` in ``token``.

    A placeholder naming a value absent from ``values`` raises
    UnresolvedPlaceholder, whether or not the parameter is required.
    """

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            raise UnresolvedPlaceholder(key)
        return values[key]

    return PLACEHOLDER_PATTERN.sub(_substitute, token)


def apply_parameters_to(tokens: Iterable[str], values: Mapping[str, str]) -> List[str]:
    return [apply_parameters(token, values) for token in tokens]


def parameter_environment(values: Mapping[str, str], prefix: str) -> Dict[str, str]:
    """Expose resolved values as ``<PREFIX><NAME>`` environment variables."""

    return {f"{prefix}{key.upper()}": value for key, value in values.items()}
