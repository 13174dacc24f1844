from __future__ import annotations

import datetime
import logging
import os
import shutil
import tempfile
from typing import IO, Any, Dict, List, Optional, Sequence

import fiona
from fiona.crs import CRS
from shapely.geometry import mapping

from .builder import translate_code
from .schema import FieldKind, OutputField, OutputSchema
from .transform import geometry_kind

logger = logging.getLogger(__name__)

DEFAULT_LAYER = "layer"
GEOMETRY_COLUMN = "geom"

_WRITE_BATCH = 2048

_FIONA_TYPES = {
    FieldKind.NUMERIC: "float",
    FieldKind.INTEGER: "int",
    FieldKind.TEXT: "str",
    FieldKind.BOOLEAN: "bool",
    FieldKind.DATE: "date",
}

# geometry name from the Shapefile header -> OGR layer geometry type
_FIONA_GEOMETRY = {
    "POINT": "Point",
    "MULTIPOINT": "MultiPoint",
    "MULTILINESTRING": "MultiLineString",
    "POLYGON": "Polygon",
}


def layer_schema(schema: OutputSchema, geom_type: str, has_z: bool) -> Dict[str, Any]:
    """Fiona collection schema: translated columns become 'str'."""
    props = {}
    for f in schema.fields:
        props[f.name] = "str" if f.codelist is not None else _FIONA_TYPES[f.kind]
    geometry = _FIONA_GEOMETRY[geom_type]
    return {"geometry": f"3D {geometry}" if has_z else geometry, "properties": props}


def _property(field: OutputField, value: Any) -> Any:
    if field.codelist is not None:
        return translate_code(value, field.codelist)
    if isinstance(value, datetime.date):
        return value.isoformat()
    return value


def _record(fields: Sequence[OutputField], values: Sequence[Any], geom) -> Dict[str, Any]:
    return {
        "geometry": mapping(geom),
        "properties": {f.name: _property(f, v) for f, v in zip(fields, values)},
    }


def write_gpkg(source, sink: IO[bytes], schema: OutputSchema, transformer,
               layer_name: str = DEFAULT_LAYER, workdir: Optional[str] = None) -> int:
    """
    Write one GeoPackage feature layer through Fiona (GDAL) and copy the file to `sink`.

    - layer geometry type and z flag come from the Shapefile header
    - CRS is EPSG:<output epsg> of the schema
    - GDAL maintains the core tables, the SRS rows and the layer extent
    """
    geom_type, has_z = geometry_kind(source.shape_type)
    epsg = schema.crs.output_epsg
    fiona_schema = layer_schema(schema, geom_type, has_z)

    count = 0
    with tempfile.TemporaryDirectory(dir=workdir) as tmp:
        path = os.path.join(tmp, "out.gpkg")
        with fiona.open(
            path, "w",
            driver="GPKG",
            layer=layer_name,
            schema=fiona_schema,
            crs=CRS.from_epsg(epsg),
            GEOMETRY_NAME=GEOMETRY_COLUMN,
        ) as dst:
            pending: List[Dict[str, Any]] = []
            for shape, values in source.iter_rows(schema.source_names):
                pending.append(_record(schema.fields, values, transformer.transform(shape)))
                if len(pending) >= _WRITE_BATCH:
                    dst.writerecords(pending)
                    count += len(pending)
                    pending.clear()
                    logger.debug("Wrote %d features to %s", count, layer_name)
            if pending:
                dst.writerecords(pending)
                count += len(pending)

        size = os.path.getsize(path)
        with open(path, "rb") as f:
            shutil.copyfileobj(f, sink)
    sink.flush()

    logger.info("GeoPackage written: layer %s, %d features, EPSG:%d (%d bytes)",
                layer_name, count, epsg, size)
    return count
