import datetime
import io

import pytest
import shapefile

from ksj2gp.crs import JapanCrs
from ksj2gp.datasource import ShapefileSource
from ksj2gp.encoding import TextEncoding
from ksj2gp.errors import UnsupportedShapefileContent
from ksj2gp.schema import FieldKind, build_schema
from ksj2gp.transform import CoordTransformer
from ksj2gp.translate import TranslateOptions

from conftest import BUS_FIELDS, MIXED_FIELDS, bus_rows, shapefile_bytes

RAW = TranslateOptions(translate_colnames=False, translate_contents=False)


def _source(fields, rows, encoding=TextEncoding.SHIFT_JIS, patch_dbf=None):
    shp, shx, dbf = shapefile_bytes(shapefile.POINT, fields, rows, encoding=encoding.value)
    if patch_dbf:
        dbf = patch_dbf(dbf)
    return ShapefileSource(io.BytesIO(shp), io.BytesIO(shx), io.BytesIO(dbf), encoding)


def test_fields_skip_deletion_flag(mixed_rows):
    src = _source(MIXED_FIELDS, mixed_rows)
    assert [(f.name, f.kind) for f in src.fields()] == [
        ("NAME", FieldKind.TEXT),
        ("COUNT", FieldKind.INTEGER),
        ("RATIO", FieldKind.NUMERIC),
        ("FLAG", FieldKind.BOOLEAN),
        ("SINCE", FieldKind.DATE),
    ]
    assert src.shape_type == shapefile.POINT
    assert len(src) == 3


def test_rows_follow_requested_order(mixed_rows):
    src = _source(MIXED_FIELDS, mixed_rows)
    rows = [values for _, values in src.iter_rows(["SINCE", "NAME", "COUNT"])]
    assert rows == [
        [datetime.date(2020, 4, 1), "a", 1],
        [None, "b", None],
        [datetime.date(1999, 12, 31), "c", 3],
    ]


def test_values_keep_their_kinds(mixed_rows):
    src = _source(MIXED_FIELDS, mixed_rows)
    first = next(src.iter_rows(["NAME", "COUNT", "RATIO", "FLAG", "SINCE"]))[1]
    assert first == ["a", 1, 0.5, True, datetime.date(2020, 4, 1)]
    assert type(first[1]) is int


def test_shift_jis_text():
    src = _source(BUS_FIELDS, bus_rows(2))
    assert [v[0] for _, v in src.iter_rows(["P11_001"])] == ["停留所0", "停留所1"]


def test_unreadable_date_becomes_null(caplog):
    rows = [((0.0, 0.0), [datetime.date(2020, 1, 2)])]

    def garble(dbf):
        return dbf.replace(b"20200102", b"2020XX02")

    src = _source([("D", "D", 8)], rows, patch_dbf=garble)
    assert [v for _, v in src.iter_rows(["D"])] == [[None]]
    assert "Unreadable date" in caplog.text


@pytest.mark.parametrize("n, chunk, sizes", [
    (5, 2, [2, 2, 1]),
    (4, 2, [2, 2]),
    (3, 10, [3]),
    (0, 4, []),
])
def test_iter_batches_chunking(n, chunk, sizes):
    src = _source(BUS_FIELDS, bus_rows(n))
    schema = build_schema(src.fields(), JapanCrs.JGD2011, RAW)
    batches = list(src.iter_batches(schema, CoordTransformer(JapanCrs.JGD2011), chunk))
    assert [b.num_rows for b in batches] == sizes


def test_garbage_is_unsupported_content():
    with pytest.raises(UnsupportedShapefileContent):
        ShapefileSource(io.BytesIO(b"nope"), io.BytesIO(b"nope"), io.BytesIO(b"nope"), TextEncoding.UTF8)


def test_wrong_encoding_is_unsupported_content():
    # Shift-JIS bytes read as UTF-8
    shp, shx, dbf = shapefile_bytes(shapefile.POINT, BUS_FIELDS, bus_rows(1), encoding="cp932")
    src = ShapefileSource(io.BytesIO(shp), io.BytesIO(shx), io.BytesIO(dbf), TextEncoding.UTF8)
    with pytest.raises(UnsupportedShapefileContent):
        list(src.iter_rows(["P11_001"]))
