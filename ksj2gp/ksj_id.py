from __future__ import annotations

import posixpath
import re
from typing import Tuple

from .errors import UnknownKsjId

_RE_KSJ_ID = re.compile(
    r"([A-Z][0-9]{2}[a-z]?[0-9]?(?:-[a-z12])?(?:-[cu])?|m1000|m500)-([0-9]{2})"
)

# mesh datasets don't follow the usual "<id>-<yy>" pattern
_MESH_PREFIXES = (
    ("1km_mesh_suikei_2018", "mesh1000h30", 2018),
    ("1km_mesh_2024", "mesh1000r6", 2024),
    ("500m_mesh_suikei_2018", "mesh500h30", 2018),
    ("500m_mesh_2024", "mesh500r6", 2018),
    ("250m_mesh_2024", "mesh250r6", 2018),
)

_ID_ALIASES = {
    "m1000": "mesh1000",
    "m500": "mesh500",
    "A18s-a": "A18s_a",
    "A19s-a": "A19s",
    "G04-a": "G04a",
    "G04-c": "G04c",
    "G04-d": "G04d",
}


def expand_year(yy: int) -> int:
    # two-digit years: 40-99 are the 1900s, the rest the 2000s
    return 1900 + yy if yy >= 40 else 2000 + yy


def extract_ksj_id(filename: str) -> Tuple[str, int]:
    """Guess the KSJ dataset id and year from a ZIP filename, e.g. "A09-06_02_GML.zip" -> ("A09", 2006)."""
    name = posixpath.basename(filename.replace("\\", "/"))

    for prefix, ksj_id, year in _MESH_PREFIXES:
        if name.startswith(prefix):
            return ksj_id, year

    m = _RE_KSJ_ID.search(name)
    if m is None:
        raise UnknownKsjId(f"Failed to detect KSJ id from filename: {filename}")

    id_raw, yy = m.group(1), int(m.group(2))
    return _ID_ALIASES.get(id_raw, id_raw), expand_year(yy)
