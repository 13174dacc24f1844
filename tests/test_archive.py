import io
import zipfile

import pytest
import shapefile

from ksj2gp.archive import ZippedShapefile, decode_entry_name, encode_entry_name, list_shp_files
from ksj2gp.errors import ArchiveEntryMissing, IoFailure

from conftest import BUS_FIELDS, bus_rows, shapefile_zip, zip_bytes


def test_list_shp_files_skips_macosx():
    data = shapefile_zip(
        "a/b", shapefile.POINT, BUS_FIELDS, bus_rows(1),
        extra={"__MACOSX/a/._b.shp": b"junk", "readme.txt": b"x"},
    )
    assert list_shp_files(io.BytesIO(data)) == ["a/b.shp"]


def test_cp932_entry_names_round_trip():
    name = "行政区域/行政区域.shp"
    data = shapefile_zip("行政区域/行政区域", shapefile.POINT, BUS_FIELDS, bus_rows(1), cp932_names=True)

    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(encode_entry_name(name))
        assert not info.flag_bits & 0x800
        assert decode_entry_name(info) == name

    assert list_shp_files(io.BytesIO(data)) == [name]
    with ZippedShapefile(io.BytesIO(data), name) as arc:
        assert arc.dbf_name == "行政区域/行政区域.dbf"
        assert arc.prj_name == "行政区域/行政区域.prj"


def test_utf8_flagged_names_are_kept():
    data = shapefile_zip("駅/駅", shapefile.POINT, BUS_FIELDS, bus_rows(1))
    assert list_shp_files(io.BytesIO(data)) == ["駅/駅.shp"]


def test_missing_dbf():
    shp_only = zip_bytes({"x.shp": b"", "x.shx": b""})
    with pytest.raises(ArchiveEntryMissing, match=r"x\.dbf"):
        ZippedShapefile(io.BytesIO(shp_only), "x.shp")


def test_target_must_be_shp(bus_stop_zip):
    with pytest.raises(ArchiveEntryMissing):
        ZippedShapefile(io.BytesIO(bus_stop_zip), "P11-22_13/P11-22_13.dbf")


def test_optional_entries(bus_stop_zip):
    with ZippedShapefile(io.BytesIO(bus_stop_zip), "P11-22_13/P11-22_13.shp") as arc:
        assert arc.prj_name == "P11-22_13/P11-22_13.prj"
        assert arc.cpg_name is None
        assert arc.meta_xml_name is None
        assert arc.read_text(arc.cpg_name) is None
        assert arc.filename == "P11-22_13.shp"


def test_meta_xml_is_found_anywhere_in_archive():
    data = shapefile_zip(
        "d/x", shapefile.POINT, BUS_FIELDS, bus_rows(1),
        extra={"KS-META-P11-22_13.xml": b"<a/>", "d/KS-META-zzz.xml": b"<b/>"},
    )
    with ZippedShapefile(io.BytesIO(data), "d/x.shp") as arc:
        assert arc.meta_xml_name == "KS-META-P11-22_13.xml"


def test_extract_truncates_reused_store(bus_stop_zip):
    with ZippedShapefile(io.BytesIO(bus_stop_zip), "P11-22_13/P11-22_13.shp") as arc:
        store = io.BytesIO(b"x" * 100_000)
        store.seek(500)
        arc.extract_shx(store)
        assert store.tell() == 0
        shx = store.read()
        assert len(shx) == 100 + 8 * 5

        arc.extract_shp(store)
        assert store.getvalue()[:4] == b"\x00\x00\x27\x0a"
        assert b"x" * 10 not in store.getvalue()


def test_extract_unknown_entry(bus_stop_zip):
    with ZippedShapefile(io.BytesIO(bus_stop_zip), "P11-22_13/P11-22_13.shp") as arc:
        with pytest.raises(ArchiveEntryMissing):
            arc.extract("nope.shp", io.BytesIO())


def test_not_a_zip():
    with pytest.raises(IoFailure):
        list_shp_files(io.BytesIO(b"definitely not a zip"))


def test_corrupt_member_is_io_failure(bus_stop_zip):
    # flip bytes inside the deflated payload of the first member
    broken = bytearray(bus_stop_zip)
    for i in range(56, 80):
        broken[i] ^= 0xFF
    with ZippedShapefile(io.BytesIO(bytes(broken)), "P11-22_13/P11-22_13.shp") as arc:
        with pytest.raises(IoFailure):
            arc.extract_shp(io.BytesIO())
