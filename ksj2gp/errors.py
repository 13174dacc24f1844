from __future__ import annotations


class KsjError(Exception):
    """Base class for every user-facing conversion failure."""


class ArchiveEntryMissing(KsjError):
    pass


class UnsupportedShapefileContent(KsjError):
    """The .shp/.shx/.dbf readers rejected the extracted data."""


class CrsUndetermined(KsjError):
    pass


class UnknownEncodingDeclaration(KsjError):
    pass


class UnknownColumnTranslation(KsjError):
    pass


class UnsupportedGeometryType(KsjError):
    pass


class UnsupportedFieldType(KsjError):
    pass


class IoFailure(KsjError):
    pass


class OutputFormatUnsupported(KsjError):
    pass


class UnknownKsjId(KsjError):
    """The archive filename does not follow any known KSJ naming pattern."""


class SchemaMismatchError(AssertionError):
    """
    A row value does not match the accumulator chosen for its column.

    The schema builder pairs every column with exactly one accumulator kind,
    so hitting this means schema and row supply are out of sync (a bug), not
    bad input data. Deliberately not a KsjError: nothing should catch it.
    """
