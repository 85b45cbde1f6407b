"""Command line for remapping coverage reports through source maps."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, ConfigError, RemapSettings, load_config
from .coverage.remapper import ReportRemapper
from .sourcemap.discovery import load_source_map, register_report_maps
from .sourcemap.resolver import MalformedMapError, SourceMapResolver
from .sourcemap.store import MapStore

APP_HELP = "Remap instrumented code coverage back to original sources."
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

app = typer.Typer(help=APP_HELP)


def _load_settings(config: str) -> RemapSettings:
    config_path = Path(config)
    try:
        return load_config(config_path, required=config != DEFAULT_CONFIG_NAME)
    except ConfigError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=1) from error


def _load_report(report_path: Path) -> Dict[str, Any]:
    """Read a JSON coverage report keyed by file path."""
    try:
        with report_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except OSError as error:
        typer.echo(f"Failed to read report {report_path}: {error}", err=True)
        raise typer.Exit(code=1) from error
    except json.JSONDecodeError as error:
        typer.echo(f"Report {report_path} is not valid JSON: {error}", err=True)
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Coverage report must be a mapping of file paths.", err=True)
        raise typer.Exit(code=1)
    return data


def _register_explicit_maps(store: MapStore, report: Dict[str, Any], map_args: List[str]) -> None:
    for map_arg in map_args:
        generated, separator, map_path = map_arg.rpartition("=")
        if not separator or not generated or not map_path:
            raise typer.BadParameter(f"Expected GENERATED=MAPFILE, got {map_arg!r}", param_hint="--map")
        key = generated if generated in report else str(Path(generated).resolve())
        try:
            payload = Path(map_path).read_text(encoding="utf-8")
        except OSError as error:
            typer.echo(f"Failed to read source map {map_path}: {error}", err=True)
            raise typer.Exit(code=1) from error
        try:
            store.register(key, payload)
        except MalformedMapError as error:
            typer.echo(f"Malformed source map {map_path}: {error}", err=True)
            raise typer.Exit(code=1) from error


@app.command()
def remap(
    report: Optional[Path] = typer.Argument(
        None,
        help="Coverage JSON report; defaults to the configured report.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Where to write the remapped report (stdout when omitted).",
    ),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the remapcov configuration file.",
    ),
    maps: List[str] = typer.Option(
        [],
        "--map",
        help="Register GENERATED=MAPFILE explicitly; may be repeated.",
    ),
    discover: bool = typer.Option(
        True,
        "--discover/--no-discover",
        help="Look for inline, sibling and embedded source maps.",
    ),
) -> None:
    """Rewrite a coverage report into original-source coordinates."""

    settings = _load_settings(config)
    logging.basicConfig(level=settings.logging.level, format=LOG_FORMAT)

    report_path = report or settings.report
    if report_path is None:
        raise typer.BadParameter("No report given and none configured.", param_hint="REPORT")
    output_path = output or settings.output

    data = _load_report(report_path)
    before = set(data)

    store = MapStore()
    _register_explicit_maps(store, data, maps)
    if discover:
        pending = {path: entry for path, entry in data.items() if path not in store}
        register_report_maps(
            store,
            pending,
            inline=settings.discovery.inline,
            sibling=settings.discovery.sibling,
            embedded=settings.discovery.embedded,
        )

    remapper = ReportRemapper(store, enforce_line_bounds=settings.remap.enforce_line_bounds)
    remapper.apply(data)

    rendered = json.dumps(data, indent=2)
    if output_path is None:
        typer.echo(rendered)
    else:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(rendered + "\n", encoding="utf-8")

    moved = len(before - set(data))
    typer.echo(
        f"Remapped {moved} of {len(before)} file(s) using {len(store)} source map(s).",
        err=True,
    )


@app.command()
def sources(
    generated: Path = typer.Argument(..., help="Generated file whose map should be inspected."),
    map_file: Optional[Path] = typer.Option(
        None,
        "--map",
        help="Read the map from this file instead of discovering it.",
    ),
) -> None:
    """List the original sources a generated file maps to."""

    if map_file is not None:
        try:
            payload: Optional[str] = map_file.read_text(encoding="utf-8")
        except OSError as error:
            typer.echo(f"Failed to read source map {map_file}: {error}", err=True)
            raise typer.Exit(code=1) from error
    else:
        payload = load_source_map(generated)
    if payload is None:
        typer.echo(f"No source map found for {generated}", err=True)
        raise typer.Exit(code=1)

    try:
        resolver = SourceMapResolver.from_payload(payload, str(generated))
    except MalformedMapError as error:
        typer.echo(f"Malformed source map for {generated}: {error}", err=True)
        raise typer.Exit(code=1) from error

    for source in sorted(resolver.listed_sources()):
        typer.echo(source)


if __name__ == "__main__":
    app()
