from __future__ import annotations

import logging
import struct
from typing import IO, Any, Iterator, List, Sequence, Tuple

import pyarrow as pa
import shapefile

from .builder import ChunkBuilder
from .encoding import TextEncoding
from .errors import UnsupportedShapefileContent
from .schema import FieldDescriptor, FieldKind, OutputSchema
from .transform import CoordTransformer

logger = logging.getLogger(__name__)

_READER_ERRORS = (shapefile.ShapefileException, struct.error, ValueError, EOFError)


class ShapefileSource:
    """
    Attribute rows and shapes of one extracted Shapefile.

    The three stores must be seekable and positioned anywhere; the reader
    seeks on its own. They stay owned by the caller.
    """

    def __init__(self, shp: IO[bytes], shx: IO[bytes], dbf: IO[bytes], encoding: TextEncoding):
        self.encoding = encoding
        try:
            self._reader = shapefile.Reader(shp=shp, shx=shx, dbf=dbf, encoding=encoding.value)
        except _READER_ERRORS as e:
            raise UnsupportedShapefileContent(f"Failed to open Shapefile: {e}") from e

        self._fields = self._read_fields()
        self._date_fields = {f.name for f in self._fields if f.kind is FieldKind.DATE}
        logger.info(
            "ShapefileSource opened: %s, %d records, %d fields (%s)",
            shapefile.SHAPETYPE_LOOKUP.get(self.shape_type, self.shape_type),
            len(self), len(self._fields), encoding.value,
        )

    def _read_fields(self) -> List[FieldDescriptor]:
        out = []
        for name, type_char, size, decimal in self._reader.fields:
            if name == "DeletionFlag":
                continue
            out.append(FieldDescriptor.from_dbf(name, type_char, size, decimal))
        return out

    def __len__(self) -> int:
        return self._reader.numRecords

    @property
    def shape_type(self) -> int:
        return self._reader.shapeType

    def fields(self) -> List[FieldDescriptor]:
        return list(self._fields)

    # ---------------- rows ---------------- #
    def _normalize(self, name: str, value: Any) -> Any:
        # unparseable dates come back from the reader as their raw text
        if name in self._date_fields and isinstance(value, str):
            if value.strip():
                logger.warning("Unreadable date %r in %s, storing null", value, name)
            return None
        return value

    def iter_rows(self, field_names: Sequence[str]) -> Iterator[Tuple[Any, List[Any]]]:
        """Yield (shape, values) with values in the order of `field_names`."""
        names = list(field_names)
        try:
            for sr in self._reader.iterShapeRecords():
                rec = sr.record
                yield sr.shape, [self._normalize(n, rec[n]) for n in names]
        except (UnicodeDecodeError, *_READER_ERRORS) as e:
            raise UnsupportedShapefileContent(f"Failed to read Shapefile records: {e}") from e

    def iter_batches(
        self, schema: OutputSchema, transformer: CoordTransformer, chunk_size: int
    ) -> Iterator[pa.RecordBatch]:
        builder = ChunkBuilder(schema, chunk_size)
        for shape, values in self.iter_rows(schema.source_names):
            builder.push_row(values, transformer.transform(shape))
            if builder.full:
                yield builder.finish()
                builder = ChunkBuilder(schema, chunk_size)
        if len(builder):
            yield builder.finish()

    def close(self) -> None:
        self._reader.close()

    def __enter__(self) -> "ShapefileSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
