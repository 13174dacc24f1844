from __future__ import annotations

import logging
import re
from enum import Enum
from functools import lru_cache
from typing import Optional

import pyproj

from .errors import CrsUndetermined

logger = logging.getLogger(__name__)

WGS84_EPSG = 4326

# Bessel 1841 with the 3-parameter shift to WGS84 (EPSG:1231 / EPSG:15484 family)
PROJ4STRING_TOKYO = "+proj=longlat +ellps=bessel +towgs84=-146.414,507.337,680.507,0,0,0,0 +no_defs"
PROJ4STRING_WGS84 = "+proj=longlat +datum=WGS84 +no_defs"


class JapanCrs(Enum):
    TOKYO = "Tokyo"
    JGD2000 = "JGD2000"
    JGD2011 = "JGD2011"

    @property
    def epsg(self) -> int:
        return _EPSG[self]

    @property
    def srs_name(self) -> str:
        return self.value

    @property
    def output_epsg(self) -> int:
        """
        EPSG code of the coordinates we write.

        Tokyo Datum coordinates are reprojected to WGS84. JGD2000/JGD2011 are
        written unchanged (treated as WGS84-equivalent), so they keep their
        own code.
        """
        if self is JapanCrs.TOKYO:
            return WGS84_EPSG
        return self.epsg

    def output_projjson(self) -> dict:
        return projjson_for_epsg(self.output_epsg)


_EPSG = {
    JapanCrs.TOKYO: 4301,
    JapanCrs.JGD2000: 4612,
    JapanCrs.JGD2011: 6668,
}


# ------------------------- Reference blobs (built once) -------------------------

@lru_cache(maxsize=None)
def _crs_for_epsg(epsg: int) -> pyproj.CRS:
    logger.debug("Loading CRS definition for EPSG:%d", epsg)
    return pyproj.CRS.from_epsg(epsg)


def projjson_for_epsg(epsg: int) -> dict:
    return _crs_for_epsg(epsg).to_json_dict()


@lru_cache(maxsize=None)
def tokyo_to_wgs84() -> pyproj.Transformer:
    return pyproj.Transformer.from_crs(PROJ4STRING_TOKYO, PROJ4STRING_WGS84, always_xy=True)


# ------------------------- Detection -------------------------

# order matters: the first family whose marker appears wins
_PRJ_MARKERS = (
    (JapanCrs.JGD2011, ("GCS_JGD_2011", "JGD2011", "JGD_2011")),
    (JapanCrs.JGD2000, ("GCS_JGD_2000", "JGD2000", "JGD_2000")),
    (JapanCrs.TOKYO, ("GCS_Tokyo", "Tokyo")),
)

_META_DATUMS = {
    "JGD2011": JapanCrs.JGD2011,
    "JGD2000": JapanCrs.JGD2000,
    "TD": JapanCrs.TOKYO,
}
_META_COORD_SYSTEMS = ("(B,L)", "(B,L,h)")

_RE_REF_SYS = re.compile(
    r"<(?:\w+:)?referenceSystemIdentifier\b[^>]*>(.*?)</(?:\w+:)?referenceSystemIdentifier>",
    re.DOTALL,
)
_RE_CODE = re.compile(r"<(?:\w+:)?code\b[^>]*>(.*?)</(?:\w+:)?code>", re.DOTALL)


def crs_from_prj(wkt: str) -> Optional[JapanCrs]:
    """Classify ESRI WKT from a .prj file. Only geographic systems are accepted."""
    text = wkt.strip()
    if text.upper().startswith("PROJCS"):
        return None
    for crs, markers in _PRJ_MARKERS:
        if any(m in text for m in markers):
            return crs
    return None


def crs_from_metadata_xml(xml: str) -> Optional[JapanCrs]:
    """
    Classify the `<referenceSystemIdentifier>` block of a KS-META xml file.

    The code reads "<datum> / <coordinate system>", e.g. "JGD2000 / (B,L)".
    """
    for block in _RE_REF_SYS.findall(xml):
        m = _RE_CODE.search(block)
        if not m:
            continue
        datum, sep, cs = m.group(1).partition("/")
        if not sep:
            continue
        crs = _META_DATUMS.get(datum.strip())
        if crs is not None and cs.replace(" ", "").strip() in _META_COORD_SYSTEMS:
            return crs
    return None


def resolve_crs(archive) -> JapanCrs:
    prj = archive.read_text(archive.prj_name)
    if prj is not None:
        crs = crs_from_prj(prj)
        if crs is not None:
            logger.info("CRS from %s: %s", archive.prj_name, crs.value)
            return crs
        logger.debug("Could not classify .prj content: %r", prj[:200])

    xml = archive.read_text(archive.meta_xml_name)
    if xml is not None:
        crs = crs_from_metadata_xml(xml)
        if crs is not None:
            logger.info("CRS from %s: %s", archive.meta_xml_name, crs.value)
            return crs

    raise CrsUndetermined(
        f"Failed to identify the CRS of {archive.shp_name} "
        f"(prj={archive.prj_name}, metadata={archive.meta_xml_name})"
    )
