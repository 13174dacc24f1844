from __future__ import annotations

import logging
import os
import posixpath
import shutil
import zipfile
import zlib
from typing import IO, BinaryIO, Dict, List, Optional, Union

from .errors import ArchiveEntryMissing, IoFailure

logger = logging.getLogger(__name__)

ZipSource = Union[str, os.PathLike, BinaryIO]

# General purpose flag bit 11: the entry name is stored as UTF-8.
_UTF8_FLAG = 0x800
_COPY_BUFSIZE = 1024 * 1024
_META_XML_PREFIX = "KS-META"


# ------------------------- Entry names -------------------------

def decode_entry_name(info: zipfile.ZipInfo) -> str:
    """
    Return the human-readable name of a ZIP entry.

    zipfile decodes names without the UTF-8 flag as CP437, but KSJ archives
    are produced on Japanese Windows and store CP932 bytes there. Undo the
    CP437 decoding and decode the original bytes as CP932.
    """
    if info.flag_bits & _UTF8_FLAG:
        return info.filename
    try:
        return info.filename.encode("cp437").decode("cp932")
    except UnicodeError:
        return info.filename


def encode_entry_name(name: str) -> str:
    """Inverse of decode_entry_name for entries stored without the UTF-8 flag."""
    try:
        return name.encode("cp932").decode("cp437")
    except UnicodeError:
        return name


def _open_zip(zip_source: ZipSource) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(zip_source)
    except (zipfile.BadZipFile, OSError) as e:
        raise IoFailure(f"Failed to open ZIP archive: {e}") from e


def list_shp_files(zip_source: ZipSource) -> List[str]:
    """List every .shp entry of the archive, by its human-readable name."""
    with _open_zip(zip_source) as zf:
        names = [decode_entry_name(info) for info in zf.infolist()]
    return [
        n for n in names
        if n.lower().endswith(".shp") and not n.startswith("__MACOSX/")
    ]


# ------------------------- Zipped Shapefile -------------------------

class ZippedShapefile:
    """
    One Shapefile inside a KSJ ZIP archive.

      - resolves the sibling .shx/.dbf (required) and .prj/.cpg/KS-META xml
        (optional) entries of `target_shp`
      - extract(): copies an entry into a caller-owned seekable store, because
        ZIP members are forward-only streams and the Shapefile readers need
        random access to .shp and .shx at the same time
    """

    def __init__(self, zip_source: ZipSource, target_shp: str):
        if not target_shp.lower().endswith(".shp"):
            raise ArchiveEntryMissing(f"Not a Shapefile: {target_shp}")

        self._zip = _open_zip(zip_source)
        self._entries: Dict[str, zipfile.ZipInfo] = {}
        for info in self._zip.infolist():
            self._entries[decode_entry_name(info)] = info
            # also reachable by the raw (CP437-decoded) name zipfile reports
            self._entries.setdefault(info.filename, info)

        self.target_shp = target_shp
        self.base = target_shp[: -len(".shp")]

        try:
            self.shp_name = self._require("shp")
            self.shx_name = self._require("shx")
            self.dbf_name = self._require("dbf")
        except ArchiveEntryMissing:
            self._zip.close()
            raise
        self.prj_name = self._sibling("prj")
        self.cpg_name = self._sibling("cpg")
        self.meta_xml_name = self._find_meta_xml()

        logger.info(
            "Opened %s (prj=%s, cpg=%s, metadata=%s)",
            self.shp_name, self.prj_name, self.cpg_name, self.meta_xml_name,
        )

    # ---------------- lookup ---------------- #
    def _sibling(self, ext: str) -> Optional[str]:
        for cand in (f"{self.base}.{ext}", f"{self.base}.{ext.upper()}"):
            if cand in self._entries:
                return cand
        return None

    def _require(self, ext: str) -> str:
        name = self._sibling(ext)
        if name is None:
            raise ArchiveEntryMissing(f"{self.base}.{ext} doesn't exist in the ZIP file")
        return name

    def _find_meta_xml(self) -> Optional[str]:
        cands = sorted(
            name for name, info in self._entries.items()
            if name == decode_entry_name(info)
            and posixpath.basename(name).upper().startswith(_META_XML_PREFIX)
            and name.lower().endswith(".xml")
        )
        return cands[0] if cands else None

    def _info(self, entry_name: str) -> zipfile.ZipInfo:
        info = self._entries.get(entry_name)
        if info is None:
            raise ArchiveEntryMissing(f"{entry_name} doesn't exist in the ZIP file")
        return info

    def has_entry(self, entry_name: Optional[str]) -> bool:
        return entry_name is not None and entry_name in self._entries

    @property
    def filename(self) -> str:
        return posixpath.basename(self.shp_name)

    # ---------------- extraction ---------------- #
    def extract(self, entry_name: str, store: IO[bytes]) -> IO[bytes]:
        info = self._info(entry_name)
        try:
            # stores are reused across runs, drop whatever a previous run left
            store.seek(0)
            store.truncate(0)
            with self._zip.open(info) as src:
                shutil.copyfileobj(src, store, _COPY_BUFSIZE)
            store.flush()
            store.seek(0)
        except (OSError, EOFError, zipfile.BadZipFile, zlib.error) as e:
            raise IoFailure(f"Got an error while extracting {entry_name}: {e}") from e
        logger.debug("Extracted %s (%d bytes)", entry_name, info.file_size)
        return store

    def extract_shp(self, store: IO[bytes]) -> IO[bytes]:
        return self.extract(self.shp_name, store)

    def extract_shx(self, store: IO[bytes]) -> IO[bytes]:
        return self.extract(self.shx_name, store)

    def extract_dbf(self, store: IO[bytes]) -> IO[bytes]:
        return self.extract(self.dbf_name, store)

    def read_bytes(self, entry_name: str, limit: Optional[int] = None) -> bytes:
        info = self._info(entry_name)
        try:
            with self._zip.open(info) as src:
                return src.read() if limit is None else src.read(limit)
        except (OSError, EOFError, zipfile.BadZipFile, zlib.error) as e:
            raise IoFailure(f"Got an error while reading {entry_name}: {e}") from e

    def read_text(self, entry_name: Optional[str], encoding: str = "utf-8") -> Optional[str]:
        """Read a small optional entry as text; None when it is absent."""
        if not self.has_entry(entry_name):
            return None
        return self.read_bytes(entry_name).decode(encoding, errors="replace")

    # ---------------- lifecycle ---------------- #
    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "ZippedShapefile":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
