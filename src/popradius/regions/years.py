"""
Population years a query can select.

The catalog is fixed when the dataset is loaded: each year gets a column
position in the region store's population matrix, and a compute request names
its year by label, normalized key, or field name. Anything else is rejected
instead of silently summing zeros.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from popradius.errors import InvalidQueryError


def normalize_year_key(value: Any) -> str:
    # "1900-1910" and "1900_1910" name the same year.
    return str(value).strip().replace("-", "_")


@dataclass(frozen=True)
class PopulationYear:
    label: str
    field: str
    index: int
    reference: int | None = None

    @property
    def key(self) -> str:
        return normalize_year_key(self.label)


class YearCatalog:
    def __init__(self, years: Iterable[PopulationYear]) -> None:
        self._years = list(years)
        if not self._years:
            raise ValueError("At least one population year is required")
        self._by_alias: dict[str, PopulationYear] = {}
        for y in self._years:
            for alias in (y.label, y.key, y.field):
                self._by_alias[str(alias).strip()] = y

    @classmethod
    def from_settings(cls, year_rows: list[dict[str, Any]]) -> "YearCatalog":
        years = []
        for i, row in enumerate(year_rows):
            label = str(row["label"]).strip()
            field = str(row.get("field") or f"pop_{normalize_year_key(label)}")
            ref = row.get("reference")
            years.append(PopulationYear(label=label, field=field, index=i, reference=int(ref) if ref is not None else None))
        return cls(years)

    def __iter__(self):
        return iter(self._years)

    def __len__(self) -> int:
        return len(self._years)

    def restricted_to(self, fields: set[str]) -> "YearCatalog":
        """Keep only the years whose field exists in the dataset, renumbering accessor indices."""
        kept = [y for y in self._years if y.field in fields]
        return YearCatalog(
            PopulationYear(label=y.label, field=y.field, index=i, reference=y.reference) for i, y in enumerate(kept)
        )

    def resolve(self, selector: Any) -> PopulationYear:
        if selector is None or isinstance(selector, bool):
            raise InvalidQueryError(f"Unknown population year: {selector!r}")
        s = str(selector).strip()
        year = self._by_alias.get(s) or self._by_alias.get(normalize_year_key(s))
        if year is None:
            known = ", ".join(y.label for y in self._years)
            raise InvalidQueryError(f"Unknown population year: {selector!r} (available: {known})")
        return year
