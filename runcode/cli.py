"""CLI interface for running target scripts."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Optional

import typer

from harness.colorlog import setup_logging
from harness.errors import HarnessError
from harness.loader import Strictness
from runcode.config import load_config
from runcode.orchestrator import RunCode, RunOptions, show_help, show_version
from runcode.server import serve

logger = logging.getLogger(__name__)

POSITIONALS_KEY = "_"

_NUMBER = re.compile(r"^-?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")

app = typer.Typer(
    help="RunCode - execute Python scripts in a controlled sandbox",
    add_completion=False,
)


def coerce_value(value: str) -> object:
    if not _NUMBER.match(value):
        return value
    try:
        return int(value)
    except ValueError:
        return float(value)


def _is_option(token: str) -> bool:
    return token.startswith("-") and len(token) > 1 and not _NUMBER.match(token)


def parse_extra_args(tokens: Sequence[str]) -> dict[str, object]:
    """Turn pass-through tokens into an argument map.

    ``--key value`` and ``--key=value`` set a value (numbers coerced), a
    bare ``--flag`` sets True and stray positionals collect under ``_``.
    """
    parsed: dict[str, object] = {}
    positionals: list[object] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if not _is_option(token):
            positionals.append(coerce_value(token))
            continue
        name = token.lstrip("-")
        if "=" in name:
            name, value = name.split("=", 1)
            parsed[name] = coerce_value(value)
        elif index < len(tokens) and not _is_option(tokens[index]):
            parsed[name] = coerce_value(tokens[index])
            index += 1
        else:
            parsed[name] = True
    if positionals:
        parsed[POSITIONALS_KEY] = positionals
    return parsed


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def run(
    ctx: typer.Context,
    target: Optional[str] = typer.Option(None, "-f", help="Target Python file to execute"),
    extra_param: Optional[str] = typer.Option(None, "--extraParam", help="JSON file containing extra parameters"),
    param_file: Optional[str] = typer.Option(None, "--file", help="Alias for --extraParam"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Alias for --extraParam"),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.001, help="Execution timeout in seconds (default 30)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate without executing"),
    localserver: Optional[int] = typer.Option(None, "--localserver", help="Serve files on this port instead of running a script"),
    root: Optional[str] = typer.Option(None, "--root", help="Directory served by --localserver"),
    settings: Optional[str] = typer.Option(None, "--settings", help="Harness settings YAML file"),
    version: bool = typer.Option(False, "--version", "-V", help="Show version information"),
    detailed_help: bool = typer.Option(False, "--detailed-help", help="Show detailed help"),
) -> None:
    """Execute a Python file in the sandbox, or serve files locally."""
    if version:
        show_version()
        raise typer.Exit(0)
    if detailed_help:
        show_help()
        raise typer.Exit(0)

    setup_logging(verbose)
    try:
        config = load_config(settings)
    except HarnessError as e:
        typer.secho(f"❌ Invalid settings: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if localserver is not None:
        try:
            RunCode(config).load_modules(Strictness.SERVER)
        except HarnessError as e:
            typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        raise typer.Exit(serve(localserver, root or config.server_root, config.cdn_mappings, config.server_host))

    if not target:
        typer.secho("❌ Missing required option: -f <target-file>", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    options = RunOptions(
        target=target,
        args=parse_extra_args(ctx.args),
        param_file=extra_param or param_file or config_file,
        timeout_seconds=timeout,
        verbose=verbose,
        dry_run=dry_run,
    )
    try:
        code = RunCode(config).run(options)
    except Exception as e:
        logger.error(f"💥 Unhandled error: {e}")
        code = 1
    raise typer.Exit(code)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
