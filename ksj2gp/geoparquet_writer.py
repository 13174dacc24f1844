from __future__ import annotations

import json
import logging
from typing import List, Optional, Set, Tuple

import numpy as np
import pyarrow as pa
import pyarrow.parquet as pq
import shapely

from .schema import OutputSchema

logger = logging.getLogger(__name__)

COVERING_COLUMN = "bbox"
_BBOX_KEYS = ("xmin", "ymin", "xmax", "ymax")
_BBOX_TYPE = pa.struct([(k, pa.float64()) for k in _BBOX_KEYS])

_GEOM_TYPE_NAMES = {
    0: "Point",
    1: "LineString",
    3: "Polygon",
    4: "MultiPoint",
    5: "MultiLineString",
    6: "MultiPolygon",
    7: "GeometryCollection",
}


class GeoParquetWriter:
    """
    Streams record batches into one GeoParquet 1.1 file.

      - write_batch(): one row group per batch, plus a per-row bbox covering column
      - close(): attaches the 'geo' metadata (dataset bbox, geometry types) and
        finalizes the footer
    """

    def __init__(self, sink, schema: OutputSchema, compression: str = "zstd",
                 covering_col: str = COVERING_COLUMN):
        self.schema = schema
        self.covering_col = covering_col
        # geo metadata goes in at close, once bbox and geometry types are known
        self._arrow = pa.schema(list(schema.to_arrow()) + [pa.field(covering_col, _BBOX_TYPE)])
        self._writer = pq.ParquetWriter(sink, self._arrow, compression=compression)

        self._bbox = [np.inf, np.inf, -np.inf, -np.inf]
        self._types: Set[Tuple[int, bool]] = set()
        self.rows_written = 0
        self._closed = False

    # ---------------- writing ---------------- #
    def _covering(self, geoms: np.ndarray) -> pa.StructArray:
        bounds = shapely.bounds(geoms)
        missing = np.isnan(bounds[:, 0])
        if not missing.all():
            valid = bounds[~missing]
            lo = valid.min(axis=0)
            hi = valid.max(axis=0)
            self._bbox = [
                min(self._bbox[0], float(lo[0])), min(self._bbox[1], float(lo[1])),
                max(self._bbox[2], float(hi[2])), max(self._bbox[3], float(hi[3])),
            ]
        children = [pa.array(bounds[:, i], type=pa.float64()) for i in range(4)]
        return pa.StructArray.from_arrays(children, names=list(_BBOX_KEYS),
                                          mask=pa.array(missing, type=pa.bool_()))

    def write_batch(self, batch: pa.RecordBatch) -> None:
        if self._closed:
            raise RuntimeError("GeoParquetWriter already closed")
        geoms = shapely.from_wkb(batch.column(self.schema.geom_col).to_numpy(zero_copy_only=False))

        type_ids = shapely.get_type_id(geoms)
        has_z = shapely.has_z(geoms)
        self._types.update((t, z) for t, z in zip(type_ids.tolist(), has_z.tolist()) if t >= 0)

        out = pa.RecordBatch.from_arrays(list(batch.columns) + [self._covering(geoms)], schema=self._arrow)
        self._writer.write_batch(out)
        self.rows_written += out.num_rows
        logger.info("Wrote chunk of %d rows (%d total)", out.num_rows, self.rows_written)

    # ---------------- finalize ---------------- #
    def geometry_types(self) -> List[str]:
        return sorted(_GEOM_TYPE_NAMES[t] + (" Z" if z else "") for t, z in self._types)

    def bbox(self) -> Optional[List[float]]:
        if not np.isfinite(self._bbox).all():
            return None
        return list(self._bbox)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        geo = self.schema.geo_metadata(
            bbox=self.bbox(),
            geometry_types=self.geometry_types(),
            covering_col=self.covering_col,
        )
        self._writer.add_key_value_metadata({"geo": json.dumps(geo, ensure_ascii=False)})
        self._writer.close()
        logger.info("GeoParquet finalized: %d rows, bbox=%s, types=%s",
                    self.rows_written, geo["columns"][self.schema.geom_col].get("bbox"),
                    geo["columns"][self.schema.geom_col]["geometry_types"])

    def __enter__(self) -> "GeoParquetWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            # leave no half-written footer claiming to be valid metadata
            self._closed = True
            self._writer.close()


def write_geoparquet(source, sink, schema: OutputSchema, transformer, chunk_size: int = 2048,
                     compression: str = "zstd") -> int:
    with GeoParquetWriter(sink, schema, compression=compression) as writer:
        for batch in source.iter_batches(schema, transformer, chunk_size):
            writer.write_batch(batch)
    return writer.rows_written
