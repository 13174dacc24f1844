from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from .errors import IoFailure, UnknownColumnTranslation

logger = logging.getLogger(__name__)

Codelist = Mapping[str, str]


@dataclass(frozen=True)
class TranslateOptions:
    ksj_id: str = ""
    year: int = 0
    # entry name of the selected .shp; some datasets need it to pick a column layout
    target_shp: str = ""
    translate_colnames: bool = True
    translate_contents: bool = True
    ignore_translation_errors: bool = False


# ------------------------- Table loading -------------------------

def _load_json(path: Union[Path, Any]) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise IoFailure(f"Failed to load translation table {path}: {e}") from e


@lru_cache(maxsize=None)
def _bundled_translator() -> "Translator":
    data = resources.files("ksj2gp") / "data"
    colnames = _load_json(data / "colnames.json")
    codelists = _load_json(data / "codelists.json")
    t = Translator.from_tables(colnames, codelists)
    logger.debug("Loaded bundled translation tables: %d columns, %d codelists",
                 len(t.columns), len(t.codelists))
    return t


# ------------------------- L01 layouts -------------------------
#
# L01 (地価公示) changes its column layout over the years: up to 2013 there is
# a fixed set of columns, later releases append one "moving value" column per
# year since 1983. The first (year - 1983 + 1) of those are survey prices
# (調査価格), the rest attribute moves (属性移動).
#
#   (first year, last year, sequence key, number of fixed columns)
_L01_LAYOUTS = (
    (None, 2013, "L01_1983", None),
    (2014, 2017, "L01_2014", 47),
    (2018, 2021, "L01_2018", 55),
    (2022, 2023, "L01_2022", 60),
    (2024, None, "L01_2024", 61),
)
_L01_FIRST_YEAR = 1983

_A42_SPECIAL_SUFFIX = "Spacial_Preservation_Area_of_Historic_Landscape.shp"
_A42_NORMAL_SUFFIX = "Preservation_Area_of_Historic_Landscape.shp"


def _parse_idx(column_id: str) -> int:
    try:
        return int(column_id[4:7])
    except ValueError:
        raise UnknownColumnTranslation(f"Failed to parse {column_id} as a column index") from None


def _year_in(year: int, since: Optional[int], until: Optional[int]) -> bool:
    return (since is None or year >= since) and (until is None or year <= until)


# ------------------------- Translator -------------------------

class Translator:
    """
    Column-id -> name and code -> label lookups for KSJ datasets.

    Tables are plain data:
      columns:   {column_id: {"name": str, "codelist": str | [rule, ...]}}
                 (a bare string is shorthand for {"name": ...})
      codelists: {codelist_name: {code: label}}
      sequences: {key: [name, ...]} positional layouts (L01, A42)

    A codelist rule is {"codelist": name} plus any of "since_year",
    "until_year", "entry_contains", "ksj_id"; the first matching rule wins.
    """

    def __init__(
        self,
        columns: Mapping[str, Any],
        codelists: Mapping[str, Codelist],
        sequences: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self.columns = {
            k: ({"name": v} if isinstance(v, str) else dict(v)) for k, v in columns.items()
        }
        self.codelists = dict(codelists)
        self.sequences = dict(sequences or {})

    @classmethod
    def default(cls) -> "Translator":
        return _bundled_translator()

    @classmethod
    def from_tables(cls, colnames: Mapping[str, Any], codelists: Mapping[str, Codelist]) -> "Translator":
        return cls(colnames.get("columns", {}), codelists, colnames.get("sequences", {}))

    @classmethod
    def from_directory(cls, path: Union[str, Path]) -> "Translator":
        path = Path(path)
        return cls.from_tables(_load_json(path / "colnames.json"), _load_json(path / "codelists.json"))

    # ---------------- column names ---------------- #
    def translate_colname(self, column_id: str, ksj_id: str, year: int, entry_name: str) -> str:
        if ksj_id == "A42":
            return self._translate_a42(column_id, entry_name)
        if ksj_id == "L01":
            return self._translate_l01(column_id, year)

        entry = self.columns.get(column_id)
        if entry is None or not entry.get("name"):
            raise UnknownColumnTranslation(f"Unknown column name translation: {column_id}")
        return entry["name"]

    def _sequence_item(self, key: str, idx: int, column_id: str) -> str:
        seq = self.sequences.get(key)
        if seq is None:
            raise UnknownColumnTranslation(
                f"No column layout {key} to translate {column_id}; "
                "the bundled tables ship none, pass a translation data directory with 'sequences'"
            )
        if not 0 <= idx < len(seq):
            raise UnknownColumnTranslation(f"{column_id} is out of range of the {key} layout")
        return seq[idx]

    def _translate_a42(self, column_id: str, entry_name: str) -> str:
        idx = _parse_idx(column_id)
        if entry_name.endswith(_A42_SPECIAL_SUFFIX):
            return self._sequence_item("A42_SPECIAL", idx, column_id)
        if entry_name.endswith(_A42_NORMAL_SUFFIX):
            return self._sequence_item("A42_NORMAL", idx, column_id)
        raise UnknownColumnTranslation(f"Unknown A42 shapefile: {entry_name}")

    def _translate_l01(self, column_id: str, year: int) -> str:
        idx = _parse_idx(column_id)
        if idx == 0:
            raise UnknownColumnTranslation(f"L01 columns start at 001: {column_id}")

        for since, until, key, n_fixed in _L01_LAYOUTS:
            if _year_in(year, since, until):
                break

        if n_fixed is None or idx <= n_fixed:
            return self._sequence_item(key, idx - 1, column_id)

        y = (idx - n_fixed - 1) + _L01_FIRST_YEAR
        if y <= year:
            return f"調査価格_{y}年"
        # the first (year - 1983) moving columns are survey prices, shift past them
        return f"属性移動_{y - (year - _L01_FIRST_YEAR)}年"

    # ---------------- codelists ---------------- #
    def lookup_codelist(self, column_id: str, ksj_id: str, year: int, entry_name: str) -> Optional[Codelist]:
        entry = self.columns.get(column_id)
        if entry is None:
            return None
        ref = entry.get("codelist")
        if ref is None:
            return None
        if isinstance(ref, str):
            name = ref
        else:
            name = self._match_rule(ref, ksj_id, year, entry_name)
            if name is None:
                return None

        codelist = self.codelists.get(name)
        if codelist is None:
            logger.debug("Column %s refers to missing codelist %s", column_id, name)
        return codelist

    @staticmethod
    def _match_rule(rules: Sequence[Mapping[str, Any]], ksj_id: str, year: int, entry_name: str) -> Optional[str]:
        for rule in rules:
            if "ksj_id" in rule and rule["ksj_id"] != ksj_id:
                continue
            if not _year_in(year, rule.get("since_year"), rule.get("until_year")):
                continue
            if "entry_contains" in rule and rule["entry_contains"] not in entry_name:
                continue
            return rule["codelist"]
        return None


# ------------------------- Option-aware helpers -------------------------

def translate_colname(column_id: str, options: TranslateOptions, translator: Optional[Translator] = None) -> str:
    if not options.translate_colnames:
        return column_id
    translator = translator or Translator.default()
    try:
        return translator.translate_colname(column_id, options.ksj_id, options.year, options.target_shp)
    except UnknownColumnTranslation as e:
        if options.ignore_translation_errors:
            logger.warning("%s; keeping the raw column name", e)
            return column_id
        raise


def lookup_codelist(column_id: str, options: TranslateOptions, translator: Optional[Translator] = None) -> Optional[Codelist]:
    if not options.translate_contents:
        return None
    translator = translator or Translator.default()
    return translator.lookup_codelist(column_id, options.ksj_id, options.year, options.target_shp)
