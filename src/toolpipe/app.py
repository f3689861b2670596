"""Command-line entry point for toolpipe."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable, Mapping, Optional

from art import text2art

from toolpipe import settings
from toolpipe.core.config import ExecutionConfig, ProcessorConfig
from toolpipe.core.dependencies import PathDependencyChecker
from toolpipe.core.errors import (
    DependencyMissing,
    MissingParameters,
    ToolPipeError,
    UnresolvedPlaceholder,
)
from toolpipe.core.executor import CommandExecutor
from toolpipe.core.generator import LineGenerator
from toolpipe.core.models import INPUT_PLACEHOLDER, CommandSpec, ToolDefinition
from toolpipe.core.parameters import resolve_parameter_values
from toolpipe.core.processor import ToolProcessor

NAME = "TOOLPIPE"
FONT = "small"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    # The banner goes to stderr so piped stdout stays byte-exact.
    if sys.stderr.isatty():
        sys.stderr.write(text2art(NAME, font=FONT))


class _ParameterMaskingFormatter(logging.Formatter):
    """Replace secret parameter values with ``<name>`` in every record."""

    def __init__(self, secrets: Mapping[str, str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        # Longest first, so a value containing another secret is masked whole.
        self._secrets = sorted(
            ((value, name) for name, value in secrets.items() if value),
            key=lambda item: len(item[0]),
            reverse=True,
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for value, name in self._secrets:
            message = message.replace(value, f"<{name}>")
        return message


def _secret_parameters(config: dict, pairs: Iterable[str]) -> dict[str, str]:
    """``NAME=VALUE`` pairs whose name carries one of the redaction markers."""

    redact_cfg = config.get("redact", {})
    if not redact_cfg.get("enabled", False):
        return {}
    markers = [marker.lower() for marker in redact_cfg.get("markers", [])]
    secrets: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if sep and any(marker in name.lower() for marker in markers):
            secrets[name] = value
    return secrets


def _file_handler(file_cfg: dict) -> RotatingFileHandler:
    path = file_cfg.get("path", "logs/toolpipe.log")
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging(verbose: bool = False, parameter_pairs: Iterable[str] = ()) -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = "DEBUG" if verbose else str(config.get("level", "WARNING")).upper()
    level = getattr(logging, level_name, logging.WARNING)
    formatter = _ParameterMaskingFormatter(
        _secret_parameters(config, parameter_pairs),
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    if config.get("file", {}).get("enabled", False):
        handlers.append(_file_handler(config["file"]))
    if not handlers:
        return

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)


def _build_executor() -> CommandExecutor:
    config = ExecutionConfig(
        temp_prefix=settings.TEMP_PREFIX,
        temp_dir=settings.TEMP_DIR,
        param_env_prefix=settings.PARAM_ENV_PREFIX,
    )
    return CommandExecutor(PathDependencyChecker.from_environment(), config)


def _parse_parameters(pairs: list[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {pair!r}")
        values[name] = value
    return values


def _build_spec(args: argparse.Namespace) -> CommandSpec:
    tokens = list(args.tokens)
    if tokens and tokens[0] == "--":
        tokens = tokens[1:]
    if not tokens:
        raise argparse.ArgumentTypeError("No command given")
    if getattr(args, "filename", False) and INPUT_PLACEHOLDER not in tokens:
        tokens.append(INPUT_PLACEHOLDER)
    return CommandSpec.from_tokens(tokens, required_binaries=tuple(args.require))


def _deps(args: argparse.Namespace) -> int:
    checker = PathDependencyChecker.from_environment()
    missing = 0
    for name in args.names:
        found = checker.exists(name)
        missing += 0 if found else 1
        print(f"{name}: {'found' if found else 'missing'}")
    return 1 if missing else 0


def _pipe(args: argparse.Namespace) -> int:
    spec = _build_spec(args)
    tool = ToolDefinition(name="cli", command=spec)
    processor = ToolProcessor(
        tool,
        _build_executor(),
        config=ProcessorConfig(developer=settings.DEVELOPER),
        parameters=_parse_parameters(args.param),
    )
    data = sys.stdin.buffer.read()
    result = processor.run([(data, args.suffix)])
    sys.stdout.buffer.write(result.stdout)
    sys.stdout.buffer.flush()
    return result.exit_code


def _generate(args: argparse.Namespace) -> int:
    spec = _build_spec(args)
    values = resolve_parameter_values(spec, _parse_parameters(args.param))
    with LineGenerator(_build_executor(), spec, values) as generator:
        for line in generator:
            sys.stdout.buffer.write(line + b"\n")
    sys.stdout.buffer.flush()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="toolpipe")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    deps = subparsers.add_parser("deps", help="Check whether binaries are on the PATH")
    deps.add_argument("names", nargs="+")
    deps.set_defaults(handler=_deps)

    for name, handler, help_text in (
        ("pipe", _pipe, "Pipe stdin through a command and print its stdout"),
        ("generate", _generate, "Print the lines a generator command produces"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-p", "--param", action="append", default=[], metavar="NAME=VALUE")
        sub.add_argument("-r", "--require", action="append", default=[], metavar="BINARY")
        sub.add_argument(
            "tokens",
            nargs=argparse.REMAINDER,
            help=f"Command tokens; {INPUT_PLACEHOLDER} marks the input file",
        )
        sub.set_defaults(handler=handler)
        if name == "pipe":
            sub.add_argument("-f", "--filename", action="store_true", help="Pass input as a temp file")
            sub.add_argument("-s", "--suffix", default=None, help="Temp file suffix, e.g. .json")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _print_banner()
    _configure_logging(args.verbose, getattr(args, "param", []))

    try:
        return args.handler(args)
    except (argparse.ArgumentTypeError, ValueError) as exc:
        parser.error(str(exc))
    except DependencyMissing as exc:
        LOGGER.error("%s", exc)
        print(f"toolpipe: {exc}", file=sys.stderr)
        return 127
    except (MissingParameters, UnresolvedPlaceholder) as exc:
        print(f"toolpipe: {exc}", file=sys.stderr)
        return 2
    except ToolPipeError as exc:
        print(f"toolpipe: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
