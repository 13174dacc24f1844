from __future__ import annotations
import argparse
import logging
import os
import sys
import tempfile

from .errors import KsjError
from .orchestrator import DEFAULT_CHUNK_SIZE, OutputFormat, convert_file, list_shp_files
from .translate import Translator
from .version import __version__

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _positive_int(s: str) -> int:
    try:
        v = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {s}") from None
    if v <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {s}")
    return v


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ksj2gp",
        description="Zipped KSJ Shapefile → GeoParquet / GeoJSON / GeoPackage.",
    )
    ap.add_argument("zip", help="Path to the KSJ ZIP archive.")
    ap.add_argument("out", nargs="?", help="Output file; the format follows its extension "
                                           "(.parquet, .geojson, .gpkg) unless --format is given.")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Selection
    ap.add_argument("--target-shp", default=None,
                    help="Entry name of the .shp to convert (default: the first one in the archive).")
    ap.add_argument("--list", action="store_true", help="List the .shp entries of the archive and exit.")
    ap.add_argument("--format", choices=[f.value for f in OutputFormat], default=None,
                    help="Output format, overrides the extension of OUT.")

    # Translation
    ap.add_argument("--no-translate-colnames", action="store_true",
                    help="Keep column ids (e.g. N03_001) instead of Japanese column names.")
    ap.add_argument("--no-translate-contents", action="store_true",
                    help="Keep coded values instead of their labels.")
    ap.add_argument("--ignore-translation-errors", action="store_true",
                    help="Keep the raw column id when no translation is known.")
    ap.add_argument("--translation-data", default=None, metavar="DIR",
                    help="Directory with colnames.json and codelists.json replacing the bundled tables.")

    # Output tuning
    ap.add_argument("--chunk-size", type=_positive_int, default=DEFAULT_CHUNK_SIZE,
                    help=f"Rows per record batch / row group (default: {DEFAULT_CHUNK_SIZE}).")
    ap.add_argument("--compression", default="zstd", help="Parquet compression codec (default: zstd).")

    # Logging
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    ap.add_argument("-q", "--quiet", action="store_true", help="Only warnings and errors.")
    return ap


def _log_level(args) -> int:
    if args.verbose:
        return logging.DEBUG
    if args.quiet:
        return logging.WARNING
    return logging.INFO


def _convert_atomically(args, fmt: OutputFormat, translator) -> int:
    # write next to the destination, then rename, so a failed run leaves no partial file
    out_dir = os.path.dirname(os.path.abspath(args.out))
    fd, tmp = tempfile.mkstemp(prefix=".ksj2gp-", suffix=".part", dir=out_dir)
    os.close(fd)
    try:
        n = convert_file(
            args.zip,
            tmp,
            target_shp=args.target_shp,
            output_format=fmt,
            translate_colnames=not args.no_translate_colnames,
            translate_contents=not args.no_translate_contents,
            ignore_translation_errors=args.ignore_translation_errors,
            chunk_size=args.chunk_size,
            compression=args.compression,
            translator=translator,
        )
        os.replace(tmp, args.out)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    return n


def main(argv=None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    logging.basicConfig(level=_log_level(args), format=LOG_FORMAT)

    if not args.list and not args.out:
        ap.error("OUT is required unless --list is given")

    try:
        if args.list:
            for name in list_shp_files(args.zip):
                print(name)
            return 0

        fmt = OutputFormat.from_name(args.format) if args.format else OutputFormat.from_path(args.out)
        translator = Translator.from_directory(args.translation_data) if args.translation_data else None
        n = _convert_atomically(args, fmt, translator)
    except KsjError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1

    logger.info("Done: %d features → %s", n, args.out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
