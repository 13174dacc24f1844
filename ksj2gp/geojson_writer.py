from __future__ import annotations

import datetime
import json
import logging
from typing import IO, Any, Dict, List

from shapely.geometry import mapping

from .builder import translate_code
from .schema import OutputSchema

logger = logging.getLogger(__name__)


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime.date):
        return value.isoformat()
    return value


def feature_properties(schema: OutputSchema, values: List[Any]) -> Dict[str, Any]:
    props: Dict[str, Any] = {}
    for f, v in zip(schema.fields, values):
        props[f.name] = translate_code(v, f.codelist) if f.codelist is not None else _json_value(v)
    return props


def write_geojson(source, sink: IO[bytes], schema: OutputSchema, transformer) -> int:
    """
    Write every row as one pretty-printed FeatureCollection.

    The whole collection is held in memory before it is serialized.
    """
    features = []
    for shape, values in source.iter_rows(schema.source_names):
        features.append({
            "type": "Feature",
            "geometry": mapping(transformer.transform(shape)),
            "properties": feature_properties(schema, values),
        })

    doc = {"type": "FeatureCollection", "features": features}
    sink.write(json.dumps(doc, indent=2, ensure_ascii=False).encode("utf-8"))
    sink.flush()
    logger.info("GeoJSON written: %d features", len(features))
    return len(features)
