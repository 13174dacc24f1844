from __future__ import annotations

import logging
from typing import List, Tuple

import numpy as np
import shapefile
from shapely.geometry import MultiLineString, MultiPoint, Point, Polygon
from shapely.geometry.base import BaseGeometry

from .crs import JapanCrs, tokyo_to_wgs84
from .errors import UnsupportedGeometryType

logger = logging.getLogger(__name__)

# shape type -> (geometry name, has z)
_KINDS = {
    shapefile.POINT: ("POINT", False),
    shapefile.POINTZ: ("POINT", True),
    shapefile.MULTIPOINT: ("MULTIPOINT", False),
    shapefile.MULTIPOINTZ: ("MULTIPOINT", True),
    shapefile.POLYLINE: ("MULTILINESTRING", False),
    shapefile.POLYLINEZ: ("MULTILINESTRING", True),
    shapefile.POLYGON: ("POLYGON", False),
    shapefile.POLYGONZ: ("POLYGON", True),
}


def geometry_kind(shape_type: int) -> Tuple[str, bool]:
    try:
        return _KINDS[shape_type]
    except KeyError:
        name = shapefile.SHAPETYPE_LOOKUP.get(shape_type, str(shape_type))
        raise UnsupportedGeometryType(f"Unsupported shape type: {name}") from None


class CoordTransformer:
    """
    Shapefile shape -> shapely geometry in the output CRS.

    Tokyo Datum x/y go through the Bessel -> WGS84 transform, z is kept as is.
    JGD2000/JGD2011 coordinates are passed through unchanged.
    """

    def __init__(self, crs: JapanCrs):
        self.crs = crs
        self._transformer = tokyo_to_wgs84() if crs is JapanCrs.TOKYO else None

    def _coords(self, shape) -> np.ndarray:
        xy = np.asarray(shape.points, dtype=np.float64).reshape(-1, 2)
        if self._transformer is not None and len(xy):
            x, y = self._transformer.transform(xy[:, 0], xy[:, 1])
            xy = np.column_stack([x, y])
        return xy

    def transform(self, shape) -> BaseGeometry:
        kind, has_z = geometry_kind(shape.shapeType)
        coords = self._coords(shape)
        if has_z:
            coords = np.column_stack([coords, np.asarray(shape.z, dtype=np.float64)])

        if kind == "POINT":
            return Point(coords[0])
        if kind == "MULTIPOINT":
            return MultiPoint(coords)

        parts = _split_parts(shape, coords)
        if kind == "MULTILINESTRING":
            return MultiLineString(parts)
        # first ring is the exterior, the rest are holes; orientation is not checked
        return Polygon(parts[0], parts[1:])


def _split_parts(shape, coords: np.ndarray) -> List[np.ndarray]:
    bounds = list(shape.parts) + [len(coords)]
    return [coords[start:end] for start, end in zip(bounds[:-1], bounds[1:])]
