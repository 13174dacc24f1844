from __future__ import annotations

import dataclasses
import logging
import os
import posixpath
import tempfile
from contextlib import ExitStack
from enum import Enum
from typing import IO, Optional, Union

from .archive import ZippedShapefile, ZipSource, list_shp_files
from .crs import resolve_crs
from .datasource import ShapefileSource
from .encoding import resolve_encoding
from .errors import ArchiveEntryMissing, OutputFormatUnsupported, UnknownKsjId
from .geojson_writer import write_geojson
from .geoparquet_writer import write_geoparquet
from .gpkg_writer import write_gpkg
from .ksj_id import extract_ksj_id
from .schema import build_schema
from .transform import CoordTransformer
from .translate import TranslateOptions, Translator

logger = logging.getLogger(__name__)

__all__ = ["OutputFormat", "convert_shp", "convert_file", "list_shp_files", "options_for_zip"]

DEFAULT_CHUNK_SIZE = 2048


class OutputFormat(Enum):
    GEOPARQUET = "geoparquet"
    GEOJSON = "geojson"
    GPKG = "gpkg"

    @classmethod
    def from_name(cls, name: str) -> "OutputFormat":
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise OutputFormatUnsupported(f"Unsupported output format: {name}") from None

    @classmethod
    def from_path(cls, path: Union[str, os.PathLike]) -> "OutputFormat":
        ext = os.path.splitext(os.fspath(path))[1].lower()
        try:
            return _EXTENSIONS[ext]
        except KeyError:
            raise OutputFormatUnsupported(f"Unsupported extension: {ext or os.fspath(path)}") from None


_EXTENSIONS = {
    ".parquet": OutputFormat.GEOPARQUET,
    ".geoparquet": OutputFormat.GEOPARQUET,
    ".geojson": OutputFormat.GEOJSON,
    ".json": OutputFormat.GEOJSON,
    ".gpkg": OutputFormat.GPKG,
}


def layer_name_for(target_shp: str) -> str:
    return posixpath.splitext(posixpath.basename(target_shp))[0] or "layer"


def convert_shp(
    zip_source: ZipSource,
    target_shp: str,
    sink: IO[bytes],
    output_format: OutputFormat,
    options: TranslateOptions,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    compression: str = "zstd",
    translator: Optional[Translator] = None,
    workdir: Optional[str] = None,
) -> int:
    """
    Convert one Shapefile of a KSJ ZIP archive and write it to `sink`.

    Runs, in order:
      - extract .shp/.shx/.dbf into temporary seekable stores
      - resolve CRS and attribute encoding
      - build the output schema (column names, codelists)
      - stream rows through the coordinate transform into the encoder

    Returns the number of features written.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not options.target_shp:
        options = dataclasses.replace(options, target_shp=target_shp)

    with ExitStack() as stack:
        archive = stack.enter_context(ZippedShapefile(zip_source, target_shp))
        shp, shx, dbf = (stack.enter_context(tempfile.TemporaryFile(dir=workdir)) for _ in range(3))
        archive.extract_shp(shp)
        archive.extract_shx(shx)
        archive.extract_dbf(dbf)
        logger.info("Extracted %s, %s, %s", archive.shp_name, archive.shx_name, archive.dbf_name)

        crs = resolve_crs(archive)
        encoding = resolve_encoding(archive)

        source = stack.enter_context(ShapefileSource(shp, shx, dbf, encoding))
        schema = build_schema(source.fields(), crs, options, translator)
        transformer = CoordTransformer(crs)

        logger.info("Writing %s (%s -> EPSG:%d)", output_format.value, crs.value, crs.output_epsg)
        if output_format is OutputFormat.GEOPARQUET:
            n = write_geoparquet(source, sink, schema, transformer, chunk_size, compression)
        elif output_format is OutputFormat.GEOJSON:
            n = write_geojson(source, sink, schema, transformer)
        elif output_format is OutputFormat.GPKG:
            n = write_gpkg(source, sink, schema, transformer, layer_name_for(target_shp), workdir)
        else:
            raise OutputFormatUnsupported(f"Unsupported output format: {output_format}")

    logger.info("Converted %s: %d features", target_shp, n)
    return n


def options_for_zip(
    zip_path: Union[str, os.PathLike],
    target_shp: str = "",
    translate_colnames: bool = True,
    translate_contents: bool = True,
    ignore_translation_errors: bool = False,
) -> TranslateOptions:
    """TranslateOptions with the KSJ id and year taken from the ZIP filename."""
    wants_translation = translate_colnames or translate_contents
    try:
        ksj_id, year = extract_ksj_id(os.fspath(zip_path))
    except UnknownKsjId:
        if wants_translation and not ignore_translation_errors:
            raise
        if wants_translation:
            logger.warning("No KSJ id in %s; translating without dataset rules", zip_path)
        ksj_id, year = "", 0
    else:
        logger.info("KSJ id %s, year %d", ksj_id, year)
    return TranslateOptions(
        ksj_id=ksj_id,
        year=year,
        target_shp=target_shp,
        translate_colnames=translate_colnames,
        translate_contents=translate_contents,
        ignore_translation_errors=ignore_translation_errors,
    )


def _pick_target(zip_path: Union[str, os.PathLike], target_shp: Optional[str]) -> str:
    if target_shp:
        return target_shp
    shps = list_shp_files(zip_path)
    if not shps:
        raise ArchiveEntryMissing(f"No .shp file in {zip_path}")
    if len(shps) > 1:
        logger.info("%d Shapefiles in the archive, converting the first: %s", len(shps), shps[0])
    return shps[0]


def convert_file(
    zip_path: Union[str, os.PathLike],
    out_path: Union[str, os.PathLike],
    target_shp: Optional[str] = None,
    output_format: Optional[OutputFormat] = None,
    translate_colnames: bool = True,
    translate_contents: bool = True,
    ignore_translation_errors: bool = False,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    compression: str = "zstd",
    translator: Optional[Translator] = None,
    workdir: Optional[str] = None,
) -> int:
    """
    Path-based wrapper around convert_shp.

    The format defaults to the one implied by `out_path`'s extension, the
    target to the first .shp of the archive.
    """
    fmt = output_format or OutputFormat.from_path(out_path)
    target = _pick_target(zip_path, target_shp)
    options = options_for_zip(
        zip_path,
        target_shp=target,
        translate_colnames=translate_colnames,
        translate_contents=translate_contents,
        ignore_translation_errors=ignore_translation_errors,
    )
    with open(out_path, "wb") as sink:
        return convert_shp(
            zip_path, target, sink, fmt, options,
            chunk_size=chunk_size, compression=compression,
            translator=translator, workdir=workdir,
        )
