"""czibridge CLI - inspect and extract CZI documents through libCZIApi."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer

from czibridge import __version__
from czibridge.czi.reader import CziReader
from czibridge.czi.types import (
    IntRect,
    PyramidStatistics,
    SubBlockStatistics,
    SubBlockStatisticsEx,
)
from czibridge.native.exceptions import CziError
from czibridge.native.library import (
    BuildInfo,
    get_library,
    library_build_info,
    library_version,
    stream_classes,
)
from czibridge.utils.logging import configure_logging, get_logger, set_correlation_context

app = typer.Typer(
    name="czibridge",
    help="czibridge: inspect CZI microscopy documents through libCZIApi",
    add_completion=False,
)

PathArgument = Annotated[
    Path,
    typer.Argument(
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        help="Path to a CZI document",
    ),
]
Verbosity = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="Increase verbosity (-v, -vv)"),
]


# =============================================================================
# Commands
# =============================================================================


@app.command()
def version(
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    verbose: Verbosity = 0,
) -> None:
    """Show package and native library versions."""
    _configure_logging(verbose)
    set_correlation_context(command="version")
    native: str | None = None
    build: BuildInfo | None = None
    try:
        library = get_library()
        native = str(library_version(library))
        build = library_build_info(library)
    except CziError as e:
        get_logger(__name__).debug("Native library unavailable", error=e)

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "version": __version__,
                    "libczi": native,
                    "build": dataclasses.asdict(build) if build else None,
                }
            )
        )
        return
    typer.echo(f"czibridge {__version__}")
    typer.echo(f"libCZI {native}" if native else "libCZI unavailable")
    if build:
        source = " ".join(p for p in (build.repository_branch, build.repository_tag) if p)
        typer.echo(f"  built with {build.compiler or 'unknown compiler'}")
        if build.repository_url:
            typer.echo(f"  from {build.repository_url} {source}".rstrip())


@app.command("stream-classes")
def list_stream_classes(
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    verbose: Verbosity = 0,
) -> None:
    """List the stream classes built into the native library."""
    _configure_logging(verbose)
    set_correlation_context(command="stream-classes")
    try:
        classes = stream_classes(get_library())
    except CziError as e:
        _fail("Failed to list stream classes", e, json_output)

    if json_output:
        typer.echo(json.dumps([dataclasses.asdict(c) for c in classes]))
        return
    for stream_class in classes:
        typer.echo(f"{stream_class.name}: {stream_class.description}")


@app.command()
def info(
    path: PathArgument,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    verbose: Verbosity = 0,
) -> None:
    """Show file header, sub-block and pyramid statistics, and attachments."""
    _start("info", path, verbose)
    try:
        with CziReader.open(path, library=get_library()) as reader:
            header = reader.file_header()
            stats = reader.statistics_ex()
            pyramid = reader.pyramid_statistics()
            attachments = [
                {
                    "index": a.index,
                    "name": a.name,
                    "content_file_type": a.content_file_type,
                    "guid": str(a.guid),
                }
                for a in reader.iter_attachment_infos()
            ]
    except CziError as e:
        _fail("Failed to read document", e, json_output)

    summary = {
        "path": str(path),
        "guid": str(header.guid),
        "version": f"{header.major_version}.{header.minor_version}",
        "statistics": _statistics_to_dict(stats),
        "pyramid": _pyramid_to_dict(pyramid),
        "attachments": attachments,
    }
    if json_output:
        typer.echo(json.dumps(summary, indent=2))
        return

    typer.echo(f"File:        {path}")
    typer.echo(f"GUID:        {summary['guid']}")
    typer.echo(f"Version:     {summary['version']}")
    typer.echo(f"Sub-blocks:  {stats.sub_block_count}")
    box = stats.bounding_box
    typer.echo(f"Bounding box: x={box.x} y={box.y} w={box.w} h={box.h}")
    for dimension, start, size in stats.dim_bounds:
        typer.echo(f"  {dimension.name}: start={start} size={size}")
    for scene in stats.scene_bounding_boxes:
        box = scene.bounding_box
        typer.echo(f"  Scene {scene.scene_index}: x={box.x} y={box.y} w={box.w} h={box.h}")
    for scene_index, layers in sorted(pyramid.scenes.items()):
        counts = ", ".join(
            f"layer {item.layer_info.pyramid_layer_no}: {item.count}" for item in layers
        )
        typer.echo(f"  Pyramid (scene {scene_index}): {counts}")
    typer.echo(f"Attachments: {len(attachments)}")
    for entry in attachments:
        typer.echo(f"  [{entry['index']}] {entry['name']} ({entry['content_file_type']})")


@app.command()
def metadata(path: PathArgument, verbose: Verbosity = 0) -> None:
    """Print the document's XML metadata."""
    _start("metadata", path, verbose)
    try:
        with CziReader.open(path, library=get_library()) as reader:
            xml = reader.metadata_xml()
    except CziError as e:
        _fail("Failed to read metadata", e)
    typer.echo(xml)


@app.command("extract-subblock")
def extract_subblock(
    path: PathArgument,
    index: Annotated[int, typer.Argument(min=0, help="Sub-block index")],
    output: Annotated[Path, typer.Argument(help="Image file to write (format from suffix)")],
    verbose: Verbosity = 0,
) -> None:
    """Decode one sub-block and save it as an image."""
    _start("extract-subblock", path, verbose)
    logger = get_logger(__name__)
    try:
        with CziReader.open(path, library=get_library()) as reader:
            bitmap = reader.decode_sub_block(index)
        image = bitmap.to_image()
    except CziError as e:
        _fail(f"Failed to extract sub-block {index}", e)

    try:
        image.save(output)
    except (OSError, ValueError) as e:
        logger.error("Failed to save image", output=str(output), error=str(e))
        typer.echo(f"Error: cannot write {output}: {e}", err=True)
        raise typer.Exit(1) from None
    logger.info("Sub-block saved", index=index, output=str(output))
    typer.echo(f"Saved sub-block {index} ({bitmap.width}x{bitmap.height}) to {output}")


@app.command("extract-attachment")
def extract_attachment(
    path: PathArgument,
    index: Annotated[int, typer.Argument(min=0, help="Attachment index")],
    output: Annotated[Path, typer.Argument(help="File to write the attachment to")],
    verbose: Verbosity = 0,
) -> None:
    """Write one attachment's raw bytes to a file."""
    _start("extract-attachment", path, verbose)
    try:
        with CziReader.open(path, library=get_library()) as reader:
            with reader.attachment(index) as attachment:
                data = attachment.raw_bytes()
                name = attachment.info().name
    except CziError as e:
        _fail(f"Failed to extract attachment {index}", e)

    output.write_bytes(data)
    get_logger(__name__).info("Attachment saved", index=index, output=str(output))
    typer.echo(f"Saved attachment {index} ({name}, {len(data)} bytes) to {output}")


# =============================================================================
# Helpers
# =============================================================================


def _start(command: str, path: Path, verbose: int) -> None:
    _configure_logging(verbose)
    set_correlation_context(document=str(path), command=command)


def _configure_logging(verbose: int) -> None:
    """Configure logging based on verbosity level."""
    if verbose == 0:
        level = "WARNING"
    elif verbose == 1:
        level = "INFO"
    else:  # verbose >= 2
        level = "DEBUG"

    configure_logging(level=level)


def _fail(message: str, error: CziError, json_output: bool = False) -> NoReturn:
    get_logger(__name__).error(message, error=error)
    if json_output:
        typer.echo(json.dumps({"error": str(error), "kind": error.kind.value}))
    else:
        typer.echo(f"Error: {message}: {error}", err=True)
    raise typer.Exit(1) from None


def _rect(rect: IntRect) -> list[int]:
    return [rect.x, rect.y, rect.w, rect.h]


def _statistics_to_dict(stats: SubBlockStatistics) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "sub_block_count": stats.sub_block_count,
        "min_m_index": stats.min_m_index,
        "max_m_index": stats.max_m_index,
        "bounding_box": _rect(stats.bounding_box),
        "bounding_box_layer0": _rect(stats.bounding_box_layer0),
        "dimensions": {d.name: {"start": s, "size": n} for d, s, n in stats.dim_bounds},
    }
    if isinstance(stats, SubBlockStatisticsEx):
        summary["scenes"] = {
            str(scene.scene_index): {
                "bounding_box": _rect(scene.bounding_box),
                "bounding_box_layer0": _rect(scene.bounding_box_layer0),
            }
            for scene in stats.scene_bounding_boxes
        }
    return summary


def _pyramid_to_dict(pyramid: PyramidStatistics) -> dict[str, Any]:
    return {
        str(scene): [
            {
                "minification_factor": item.layer_info.minification_factor,
                "pyramid_layer_no": item.layer_info.pyramid_layer_no,
                "count": item.count,
            }
            for item in layers
        ]
        for scene, layers in pyramid.scenes.items()
    }


if __name__ == "__main__":
    app()
