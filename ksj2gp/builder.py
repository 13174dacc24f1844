from __future__ import annotations

import datetime
import logging
from typing import Any, List, Optional, Sequence

import numpy as np
import pyarrow as pa
import shapely
from shapely.geometry.base import BaseGeometry

from .errors import SchemaMismatchError
from .schema import FieldKind, OutputField, OutputSchema
from .translate import Codelist

logger = logging.getLogger(__name__)


def translate_code(value: Any, codelist: Codelist) -> Optional[str]:
    """
    Render a coded value as its label.

    Numbers are keyed without decimals ("3", never "3.0"), booleans as "1"/"0"
    and dates as ISO text. Codes missing from the list come back as the key.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        key = "1" if value else "0"
    elif isinstance(value, int):
        key = str(value)
    elif isinstance(value, float):
        key = f"{value:.0f}"
    elif isinstance(value, datetime.date):
        key = value.isoformat()
    elif isinstance(value, str):
        key = value
    else:
        raise SchemaMismatchError(f"Cannot translate a {type(value).__name__} value: {value!r}")
    return codelist.get(key, key)


# ------------------------- Accumulators -------------------------

class _Accumulator:
    arrow_type: pa.DataType

    def __init__(self, name: str):
        self.name = name
        self._values: List[Any] = []

    def __len__(self) -> int:
        return len(self._values)

    def _accepts(self, value: Any) -> bool:
        raise NotImplementedError

    def _convert(self, value: Any) -> Any:
        return value

    def push(self, value: Any) -> None:
        if value is None:
            self._values.append(None)
            return
        if not self._accepts(value):
            raise SchemaMismatchError(
                f"{type(self).__name__} for {self.name} got {type(value).__name__}: {value!r}"
            )
        self._values.append(self._convert(value))

    def finish(self) -> pa.Array:
        return pa.array(self._values, type=self.arrow_type)


class Float64Accumulator(_Accumulator):
    arrow_type = pa.float64()

    def _accepts(self, value):
        return isinstance(value, (int, float)) and not isinstance(value, bool)

    def _convert(self, value):
        return float(value)


class Int64Accumulator(_Accumulator):
    arrow_type = pa.int64()

    def _accepts(self, value):
        return isinstance(value, int) and not isinstance(value, bool)


class BooleanAccumulator(_Accumulator):
    arrow_type = pa.bool_()

    def _accepts(self, value):
        return isinstance(value, bool)


class DateAccumulator(_Accumulator):
    arrow_type = pa.date32()

    def _accepts(self, value):
        return isinstance(value, datetime.date) and not isinstance(value, datetime.datetime)


class StringAccumulator(_Accumulator):
    arrow_type = pa.string()

    def _accepts(self, value):
        return isinstance(value, str)


class TranslatedCodeAccumulator(_Accumulator):
    arrow_type = pa.string()

    def __init__(self, name: str, codelist: Codelist):
        super().__init__(name)
        self.codelist = codelist

    def _accepts(self, value):
        return isinstance(value, (bool, int, float, str, datetime.date))

    def _convert(self, value):
        return translate_code(value, self.codelist)


class GeometryAccumulator(_Accumulator):
    """Collects shapely geometries, emitted as ISO WKB."""
    arrow_type = pa.binary()

    def _accepts(self, value):
        return isinstance(value, BaseGeometry)

    def finish(self) -> pa.Array:
        geoms = np.array(self._values, dtype=object)
        wkb = shapely.to_wkb(geoms, flavor="iso") if len(geoms) else []
        return pa.array(list(wkb), type=self.arrow_type)


_BY_KIND = {
    FieldKind.NUMERIC: Float64Accumulator,
    FieldKind.INTEGER: Int64Accumulator,
    FieldKind.BOOLEAN: BooleanAccumulator,
    FieldKind.DATE: DateAccumulator,
    FieldKind.TEXT: StringAccumulator,
}


def make_accumulator(field: OutputField) -> _Accumulator:
    if field.codelist is not None:
        return TranslatedCodeAccumulator(field.name, field.codelist)
    try:
        cls = _BY_KIND[field.kind]
    except KeyError:
        raise SchemaMismatchError(f"No accumulator for {field.kind} ({field.name})") from None
    return cls(field.name)


# ------------------------- Chunk builder -------------------------

class ChunkBuilder:
    """
    Builds one Arrow record batch from up to `capacity` rows.

      - push_row(values, geometry): values in schema order, one per attribute
      - finish(): every column has exactly as many entries as rows pushed

    Single use: create a new builder per chunk.
    """

    def __init__(self, schema: OutputSchema, capacity: int):
        self.schema = schema
        self.capacity = capacity
        self._columns = [make_accumulator(f) for f in schema.fields]
        self._geometry = GeometryAccumulator(schema.geom_col)
        self._rows = 0
        self._finished = False

    def __len__(self) -> int:
        return self._rows

    @property
    def full(self) -> bool:
        return self._rows >= self.capacity

    def push_row(self, values: Sequence[Any], geometry: Optional[BaseGeometry]) -> None:
        if self._finished:
            raise RuntimeError("ChunkBuilder already finished")
        if self.full:
            raise RuntimeError(f"ChunkBuilder is full ({self.capacity} rows)")
        if len(values) != len(self._columns):
            raise SchemaMismatchError(
                f"Expected {len(self._columns)} attribute values, got {len(values)}"
            )
        for acc, v in zip(self._columns, values):
            acc.push(v)
        self._geometry.push(geometry)
        self._rows += 1

    def finish(self) -> pa.RecordBatch:
        if self._finished:
            raise RuntimeError("ChunkBuilder already finished")
        self._finished = True
        arrays = [acc.finish() for acc in self._columns]
        arrays.append(self._geometry.finish())
        batch = pa.RecordBatch.from_arrays(arrays, schema=self.schema.to_arrow())
        logger.debug("Built chunk with %d rows", batch.num_rows)
        return batch
