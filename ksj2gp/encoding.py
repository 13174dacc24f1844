from __future__ import annotations

import logging
import posixpath
from enum import Enum

from .errors import UnknownEncodingDeclaration

logger = logging.getLogger(__name__)

# dBASE header: byte 29 (offset 28) is the language driver id.
LDID_OFFSET = 28
# 0x13 = Japanese, code page 932
LDID_SHIFT_JIS = 0x13


class TextEncoding(Enum):
    """Values are Python codec names."""
    UTF8 = "utf-8"
    SHIFT_JIS = "cp932"


_CPG_DECLARATIONS = {
    "UTF-8": TextEncoding.UTF8,
    "CP932": TextEncoding.SHIFT_JIS,
}


def encoding_from_ldid(header: bytes) -> TextEncoding | None:
    if len(header) > LDID_OFFSET and header[LDID_OFFSET] == LDID_SHIFT_JIS:
        return TextEncoding.SHIFT_JIS
    return None


def encoding_from_cpg(cpg: str) -> TextEncoding:
    decl = cpg.strip()
    try:
        return _CPG_DECLARATIONS[decl]
    except KeyError:
        raise UnknownEncodingDeclaration(
            f"Unknown encoding is found in .cpg file: {decl!r}"
        ) from None


def encoding_from_filename(path: str) -> TextEncoding | None:
    # currently there's no reliable way to tell; "utf-8", "UTF8", "utf_8" anywhere
    # in the entry path (e.g. a "..._UTF-8/" folder) is a strong hint though
    name = posixpath.splitext(path)[0].lower().replace("-", "").replace("_", "")
    if "utf8" in name:
        return TextEncoding.UTF8
    return None


def resolve_encoding(archive) -> TextEncoding:
    """
    Decide the text encoding of the .dbf attribute table.

    Checked in this order, first hit wins:
      1. language driver id in the .dbf header (0x13 => Shift-JIS family)
      2. .cpg declaration ("UTF-8" or "CP932"; anything else is an error)
      3. "utf8" in the entry path of the .shp
      4. Shift-JIS family
    """
    enc = encoding_from_ldid(archive.read_bytes(archive.dbf_name, limit=LDID_OFFSET + 1))
    if enc is not None:
        logger.info("Encoding from .dbf language driver id: %s", enc.value)
        return enc

    cpg = archive.read_text(archive.cpg_name, encoding="ascii")
    if cpg is not None:
        enc = encoding_from_cpg(cpg)
        logger.info("Encoding from %s: %s", archive.cpg_name, enc.value)
        return enc

    enc = encoding_from_filename(archive.shp_name)
    if enc is not None:
        logger.info("Encoding guessed from filename: %s", enc.value)
        return enc

    logger.info("No encoding hint found, falling back to %s", TextEncoding.SHIFT_JIS.value)
    return TextEncoding.SHIFT_JIS
