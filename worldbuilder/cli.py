"""Click CLI commands for WorldBuilder."""

import asyncio
import logging
import pathlib

import click

from . import config
from .fetch import MeshFetcher
from .models import load_avatar_spec, load_world_plan
from .pipeline import AssemblyPipeline
from .scene import export_glb
from .stl import DecodeError, decode_stl, detect_format

logger = logging.getLogger(__name__)


def _output_path(output: str) -> pathlib.Path:
    """Bare file names land in the configured output directory."""
    path = pathlib.Path(output)
    if not path.is_absolute() and path.parent == pathlib.Path("."):
        return config.OUTPUT_DIR / path
    return path


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose: bool):
    """WorldBuilder CLI for assembling world plans and avatar specs into GLB files."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")


@cli.command()
@click.argument('plan_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', '-o', default='world.glb', help='Output GLB file path')
def world(plan_file: str, output: str):
    """Assemble a world plan JSON file into a GLB scene."""
    text = pathlib.Path(plan_file).read_text()
    asyncio.run(async_world(text, _output_path(output)))


@cli.command()
@click.argument('spec_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', '-o', default='avatar.glb', help='Output GLB file path')
@click.option('--base-url', default=None, help='Base URL for mesh override fetches')
def avatar(spec_file: str, output: str, base_url: str):
    """Assemble an avatar spec JSON file into a GLB model."""
    text = pathlib.Path(spec_file).read_text()
    asyncio.run(async_avatar(text, _output_path(output), base_url))


@cli.command('inspect-stl')
@click.argument('stl_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--z-up', is_flag=True, help='Remap Z-up source axes to Y-up')
def inspect_stl(stl_file: str, z_up: bool):
    """Decode an STL file and print what was found."""
    data = pathlib.Path(stl_file).read_bytes()
    mesh = decode_stl(data, swap_yz=z_up)
    if isinstance(mesh, DecodeError):
        raise click.ClickException(f"{mesh.kind.value}: {mesh}")
    lo, hi = mesh.bounds()
    click.echo(f"format:     {detect_format(data)}")
    click.echo(f"triangles:  {mesh.triangle_count}")
    click.echo(f"vertices:   {mesh.vertex_count}")
    click.echo(f"indices:    {mesh.index_format}")
    click.echo(f"bounds min: {lo[0]:.3f} {lo[1]:.3f} {lo[2]:.3f}")
    click.echo(f"bounds max: {hi[0]:.3f} {hi[1]:.3f} {hi[2]:.3f}")


def _report(result):
    for message in result.warnings:
        click.echo(f"  warning: {message}")
    for message in result.errors:
        click.echo(f"  error: {message}")


async def async_world(text: str, output: pathlib.Path):
    """Async helper for world assembly and export."""
    try:
        pipeline = AssemblyPipeline()
        result = await pipeline.assemble_world(text)
        _report(result)
        export_glb(result.root, output)
        click.echo(f"World '{result.detail.name}' ({result.state.value}): "
                   f"{len(result.detail.objects.children)} objects -> {output}")
    except Exception as e:
        logger.error(f"Error assembling world: {e}")
        raise click.ClickException(str(e))


async def async_avatar(text: str, output: pathlib.Path, base_url):
    """Async helper for avatar assembly and export."""
    try:
        pipeline = AssemblyPipeline(fetcher=MeshFetcher(base_url=base_url))
        result = await pipeline.assemble_avatar(text)
        _report(result)
        export_glb(result.root, output)
        summary = result.detail.summary if result.detail else "n/a"
        click.echo(f"Avatar ({result.state.value}) rendered: {summary} -> {output}")
    except Exception as e:
        logger.error(f"Error assembling avatar: {e}")
        raise click.ClickException(str(e))
