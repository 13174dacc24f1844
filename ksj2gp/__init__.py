from .version import __version__
from .archive import ZippedShapefile, list_shp_files
from .crs import JapanCrs
from .encoding import TextEncoding
from .errors import KsjError, SchemaMismatchError
from .datasource import ShapefileSource
from .geoparquet_writer import GeoParquetWriter
from .ksj_id import extract_ksj_id
from .orchestrator import OutputFormat, convert_file, convert_shp
from .schema import OutputSchema, build_schema
from .translate import TranslateOptions, Translator

__all__ = [
    "__version__",
    "ZippedShapefile", "list_shp_files",
    "JapanCrs", "TextEncoding",
    "KsjError", "SchemaMismatchError",
    "ShapefileSource",
    "GeoParquetWriter",
    "extract_ksj_id",
    "OutputFormat", "convert_file", "convert_shp",
    "OutputSchema", "build_schema",
    "TranslateOptions", "Translator",
]
