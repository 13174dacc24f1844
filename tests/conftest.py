from __future__ import annotations

import datetime
import io
import zipfile
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest
import shapefile

PRJ_JGD2011 = (
    'GEOGCS["GCS_JGD_2011",DATUM["D_JGD_2011",SPHEROID["GRS_1980",6378137.0,298.257222101]],'
    'PRIMEM["Greenwich",0.0],UNIT["Degree",0.0174532925199433]]'
)
PRJ_JGD2000 = (
    'GEOGCS["GCS_JGD_2000",DATUM["D_JGD_2000",SPHEROID["GRS_1980",6378137.0,298.257222101]],'
    'PRIMEM["Greenwich",0.0],UNIT["Degree",0.0174532925199433]]'
)
PRJ_TOKYO = (
    'GEOGCS["GCS_Tokyo",DATUM["D_Tokyo",SPHEROID["Bessel_1841",6377397.155,299.1528128]],'
    'PRIMEM["Greenwich",0.0],UNIT["Degree",0.0174532925199433]]'
)

Draw = Union[Callable[[shapefile.Writer], None], Tuple[float, float]]


class Cp932ZipInfo(zipfile.ZipInfo):
    """Stores the entry name as CP932 bytes without the UTF-8 flag, like Japanese Windows zippers."""

    def _encodeFilenameFlags(self):
        return self.filename.encode("cp932"), self.flag_bits


def shapefile_bytes(
    shape_type: int,
    fields: Sequence[tuple],
    rows: Sequence[Tuple[Draw, Sequence]],
    encoding: str = "cp932",
) -> Tuple[bytes, bytes, bytes]:
    """
    Build .shp/.shx/.dbf in memory.

    Each row is (draw, values): draw is an (x, y) point or a callable adding
    one shape to the writer.
    """
    shp, shx, dbf = io.BytesIO(), io.BytesIO(), io.BytesIO()
    w = shapefile.Writer(shp=shp, shx=shx, dbf=dbf, shapeType=shape_type, encoding=encoding)
    for f in fields:
        w.field(*f)
    for draw, values in rows:
        if callable(draw):
            draw(w)
        else:
            w.point(*draw)
        w.record(*values)
    w.close()
    return shp.getvalue(), shx.getvalue(), dbf.getvalue()


def set_ldid(dbf: bytes, value: int) -> bytes:
    b = bytearray(dbf)
    b[28] = value
    return bytes(b)


def zip_bytes(entries: Dict[str, bytes], cp932_names: bool = False) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            info = Cp932ZipInfo(name) if cp932_names else zipfile.ZipInfo(name)
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, data)
    return buf.getvalue()


def shapefile_zip(
    base: str,
    shape_type: int,
    fields: Sequence[tuple],
    rows: Sequence[Tuple[Draw, Sequence]],
    prj: Optional[str] = PRJ_JGD2011,
    cpg: Optional[str] = None,
    extra: Optional[Dict[str, bytes]] = None,
    encoding: str = "cp932",
    ldid: Optional[int] = None,
    cp932_names: bool = False,
) -> bytes:
    shp, shx, dbf = shapefile_bytes(shape_type, fields, rows, encoding=encoding)
    if ldid is not None:
        dbf = set_ldid(dbf, ldid)
    entries = {f"{base}.shp": shp, f"{base}.shx": shx, f"{base}.dbf": dbf}
    if prj is not None:
        entries[f"{base}.prj"] = prj.encode("ascii")
    if cpg is not None:
        entries[f"{base}.cpg"] = cpg.encode("ascii")
    entries.update(extra or {})
    return zip_bytes(entries, cp932_names=cp932_names)


# ------------------------- Fixtures -------------------------

BUS_FIELDS = [
    ("P11_001", "C", 40),
    ("P11_002", "N", 2, 0),
]


def bus_rows(n: int) -> List[Tuple[Draw, Sequence]]:
    return [((139.0 + i * 0.01, 35.0 + i * 0.01), [f"停留所{i}", i % 6 + 1]) for i in range(n)]


@pytest.fixture
def bus_stop_zip() -> bytes:
    """5 bus stops, JGD2011, Shift-JIS attributes, bus class codes 1-5."""
    return shapefile_zip("P11-22_13/P11-22_13", shapefile.POINT, BUS_FIELDS, bus_rows(5))


@pytest.fixture
def bus_stop_zip_file(tmp_path, bus_stop_zip):
    path = tmp_path / "P11-22_13_SHP.zip"
    path.write_bytes(bus_stop_zip)
    return path


MIXED_FIELDS = [
    ("NAME", "C", 20),
    ("COUNT", "N", 6, 0),
    ("RATIO", "N", 10, 3),
    ("FLAG", "L", 1),
    ("SINCE", "D", 8),
]


@pytest.fixture
def mixed_rows():
    return [
        ((135.0, 34.0), ["a", 1, 0.5, True, datetime.date(2020, 4, 1)]),
        ((135.5, 34.5), ["b", None, None, False, None]),
        ((136.0, 35.0), ["c", 3, 1.25, None, datetime.date(1999, 12, 31)]),
    ]


@pytest.fixture
def mixed_zip(mixed_rows) -> bytes:
    return shapefile_zip("mixed", shapefile.POINT, MIXED_FIELDS, mixed_rows)
