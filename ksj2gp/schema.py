from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import pyarrow as pa

from .crs import JapanCrs
from .errors import UnknownColumnTranslation, UnsupportedFieldType
from .translate import Codelist, TranslateOptions, Translator, lookup_codelist, translate_colname

logger = logging.getLogger(__name__)

GEOMETRY_COLUMN = "geometry"


class FieldKind(Enum):
    NUMERIC = "numeric"
    INTEGER = "integer"
    TEXT = "text"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"


@dataclass(frozen=True)
class FieldDescriptor:
    """One attribute column as declared in the .dbf header."""
    name: str
    kind: FieldKind
    size: int = 0
    decimal: int = 0

    @classmethod
    def from_dbf(cls, name: str, type_char: str, size: int = 0, decimal: int = 0) -> "FieldDescriptor":
        t = type_char.upper()
        if t in ("N", "F"):
            # the reader yields ints for numbers declared without decimals
            kind = FieldKind.NUMERIC if decimal > 0 else FieldKind.INTEGER
        elif t == "I":
            kind = FieldKind.INTEGER
        elif t in ("C", "M"):
            kind = FieldKind.TEXT
        elif t == "L":
            kind = FieldKind.BOOLEAN
        elif t == "D":
            kind = FieldKind.DATE
        elif t in ("T", "@"):
            kind = FieldKind.DATETIME
        else:
            raise UnsupportedFieldType(f"Unsupported dBASE field type {type_char!r} for {name}")
        return cls(name, kind, int(size), int(decimal))


_ARROW_TYPES: Dict[FieldKind, pa.DataType] = {
    FieldKind.NUMERIC: pa.float64(),
    FieldKind.INTEGER: pa.int64(),
    FieldKind.TEXT: pa.string(),
    FieldKind.BOOLEAN: pa.bool_(),
    FieldKind.DATE: pa.date32(),
}


@dataclass(frozen=True)
class OutputField:
    source_name: str
    name: str
    kind: FieldKind
    arrow_type: pa.DataType
    # set when coded values are rendered as labels; arrow_type is then string
    codelist: Optional[Codelist] = None

    @property
    def translated(self) -> bool:
        return self.codelist is not None


@dataclass
class OutputSchema:
    """
    Ordered attribute columns plus one trailing WKB geometry column.

    Built once per run and shared read-only by every chunk.
    """
    fields: List[OutputField]
    crs: JapanCrs
    geom_col: str = GEOMETRY_COLUMN
    _arrow: Optional[pa.Schema] = field(default=None, repr=False)

    def __len__(self) -> int:
        return len(self.fields) + 1

    @property
    def source_names(self) -> List[str]:
        # row values are looked up by this list, never by record iteration order
        return [f.source_name for f in self.fields]

    @property
    def output_names(self) -> List[str]:
        return [f.name for f in self.fields] + [self.geom_col]

    def geo_metadata(self, bbox: Optional[Sequence[float]] = None,
                     geometry_types: Optional[Sequence[str]] = None,
                     covering_col: Optional[str] = None) -> dict:
        """GeoParquet 1.1 'geo' metadata for this schema."""
        col: dict = {
            "encoding": "WKB",
            "geometry_types": sorted(geometry_types or []),
            "crs": self.crs.output_projjson(),
        }
        if bbox is not None:
            col["bbox"] = [float(v) for v in bbox]
        if covering_col:
            col["covering"] = {
                "bbox": {k: [covering_col, k] for k in ("xmin", "ymin", "xmax", "ymax")}
            }
        return {
            "version": "1.1.0",
            "primary_column": self.geom_col,
            "columns": {self.geom_col: col},
        }

    def to_arrow(self) -> pa.Schema:
        if self._arrow is None:
            geom_meta = {
                "ARROW:extension:name": "geoarrow.wkb",
                "ARROW:extension:metadata": json.dumps({"crs": self.crs.output_projjson()}),
            }
            arrow_fields = [pa.field(f.name, f.arrow_type, nullable=True) for f in self.fields]
            arrow_fields.append(pa.field(self.geom_col, pa.binary(), nullable=True, metadata=geom_meta))
            self._arrow = pa.schema(
                arrow_fields,
                metadata={b"geo": json.dumps(self.geo_metadata(), ensure_ascii=False).encode("utf-8")},
            )
        return self._arrow


def build_schema(
    fields: Sequence[FieldDescriptor],
    crs: JapanCrs,
    options: TranslateOptions,
    translator: Optional[Translator] = None,
) -> OutputSchema:
    out: List[OutputField] = []
    seen: Dict[str, str] = {}

    for fd in fields:
        if fd.kind is FieldKind.DATETIME:
            # TODO: map to timestamp[ms] once the reader exposes dBASE datetimes
            raise UnsupportedFieldType(f"DateTime fields are not supported yet: {fd.name}")

        name = translate_colname(fd.name, options, translator)
        if name in seen:
            raise UnknownColumnTranslation(
                f"Columns {seen[name]} and {fd.name} both translate to {name!r}"
            )
        seen[name] = fd.name

        codelist = lookup_codelist(fd.name, options, translator)
        arrow_type = pa.string() if codelist is not None else _ARROW_TYPES[fd.kind]
        logger.debug("field %s (%s) -> %s: %s%s", fd.name, fd.kind.value, name, arrow_type,
                     " [codelist]" if codelist is not None else "")
        out.append(OutputField(fd.name, name, fd.kind, arrow_type, codelist))

    schema = OutputSchema(out, crs)
    logger.info("Schema: %d attribute columns + %s (%s)", len(out), schema.geom_col, crs.value)
    return schema
