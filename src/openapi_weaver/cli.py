"""CLI entry point for openapi-weaver."""

import json
import logging
from pathlib import Path

import click
import yaml

from openapi_weaver.assembler import GenerationResult
from openapi_weaver.config import GeneratorConfig, load_config
from openapi_weaver.errors import GenerationError, WeaverError
from openapi_weaver.pipeline import run_config


def _write_view(path: Path, view: dict) -> None:
    """Write one view; ``.json`` files get JSON, anything else YAML."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".json":
        text = json.dumps(view, indent=2, ensure_ascii=False, default=str) + "\n"
    else:
        text = yaml.safe_dump(view, sort_keys=False, allow_unicode=True)
    path.write_text(text, encoding="utf-8")


def _report(error: GenerationError) -> None:
    for diagnostic in error.diagnostics:
        click.echo(f"error: {diagnostic}", err=True)
        if diagnostic.entity:
            click.echo(f"  in: {diagnostic.entity}", err=True)
        if diagnostic.directive:
            click.echo(f"  at: {diagnostic.directive}", err=True)
    click.echo(f"{len(error.diagnostics)} error(s); nothing written.", err=True)


def _configure(config_path: Path | None, verbose: bool, **options) -> GeneratorConfig:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        return load_config(config_path, options)
    except WeaverError as e:
        raise click.ClickException(str(e.to_diagnostic()))


def _run(config: GeneratorConfig) -> GenerationResult:
    if not config.inputs:
        raise click.UsageError("no input manifests; pass -i/--input or set 'inputs' in the config file")
    click.echo(f"Reading {len(config.inputs)} input(s), {len(config.includes)} include(s)...")
    try:
        return run_config(config)
    except GenerationError as e:
        _report(e)
        raise SystemExit(1)


@click.group()
def main():
    """openapi-weaver: build OpenAPI documents from annotated declarations."""
    pass


@main.command()
@click.option("-i", "--input", "inputs", multiple=True, type=click.Path(path_type=Path), help="Entity manifest (file or directory). Repeatable.")
@click.option("--include", "includes", multiple=True, type=click.Path(path_type=Path), help="Static document merged on top of the generated one. Repeatable.")
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Output file for the full document.")
@click.option("--output-schemas", type=click.Path(path_type=Path), help="Output file for components.schemas only.")
@click.option("--output-paths", type=click.Path(path_type=Path), help="Output file for paths only.")
@click.option("--output-fragments", type=click.Path(path_type=Path), help="Output file for the headless fragment (no openapi/info/servers).")
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), help="YAML config file.")
@click.option("--workers", type=int, default=None, help="Parallel parse workers.")
@click.option("--no-root", "no_root", is_flag=True, default=False, help="Do not require a root document.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def generate(inputs, includes, output, output_schemas, output_paths, output_fragments, config_path, workers, no_root, verbose):
    """Generate the document views from entity manifests."""
    config = _configure(
        config_path,
        verbose,
        inputs=inputs,
        includes=includes,
        output=output,
        output_schemas=output_schemas,
        output_paths=output_paths,
        output_fragments=output_fragments,
        workers=workers,
        require_root=False if no_root else None,
    )
    if not config.outputs:
        raise click.UsageError("no output requested; pass -o/--output or one of --output-schemas/--output-paths/--output-fragments")

    result = _run(config)
    for view, path in config.outputs.items():
        data = getattr(result, view)
        if data is None:
            click.echo(f"  Skipped {path} (no root document)")
            continue
        _write_view(path, data)
        click.echo(f"  Wrote {view} to {path}")

    click.echo(f"Done! {len(result.paths)} path(s), {len(result.schemas)} schema(s).")


@main.command()
@click.option("-i", "--input", "inputs", multiple=True, type=click.Path(path_type=Path), help="Entity manifest (file or directory). Repeatable.")
@click.option("--include", "includes", multiple=True, type=click.Path(path_type=Path), help="Static document merged on top of the generated one. Repeatable.")
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), help="YAML config file.")
@click.option("--no-root", "no_root", is_flag=True, default=False, help="Do not require a root document.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def check(inputs, includes, config_path, no_root, verbose):
    """Run the whole pipeline without writing anything."""
    config = _configure(
        config_path,
        verbose,
        inputs=inputs,
        includes=includes,
        require_root=False if no_root else None,
    )
    result = _run(config)
    click.echo(f"OK: {len(result.paths)} path(s), {len(result.schemas)} schema(s).")
