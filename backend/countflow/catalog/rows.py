# Overview: Typed rows and filter for the read-only catalog/inventory source.

"""
Catalog rows are validated at the boundary: the rest of the workflow only
ever sees CatalogProductRow / LocationInventoryRow instances, never raw
driver mappings.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from ..errors import ValidationError
from .errors import CatalogRowError


def clean_codes(values: Iterable[Any] | None) -> tuple[str, ...]:
    """Strip, drop blanks and de-duplicate while keeping first-seen order."""
    if not values:
        return ()
    if isinstance(values, str):
        values = [values]
    elif not isinstance(values, (list, tuple, set, frozenset)):
        raise ValidationError(f"Expected a list of codes, got {type(values).__name__}")
    seen: dict[str, None] = {}
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            seen.setdefault(text, None)
    return tuple(seen)


def _optional_text(mapping: Mapping[str, Any], key: str) -> str | None:
    value = mapping.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required_text(mapping: Mapping[str, Any], key: str) -> str:
    text = _optional_text(mapping, key)
    if not text:
        raise CatalogRowError(f"Missing required field: {key}")
    return text


def _required_int(mapping: Mapping[str, Any], key: str) -> int:
    """Accept ints and integral Decimal/float values; reject everything else."""
    value = mapping.get(key)
    if value is None:
        raise CatalogRowError(f"Missing required field: {key}")
    if isinstance(value, bool):
        raise CatalogRowError(f"{key} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, (Decimal, float)):
        if value != value or value in (float("inf"), float("-inf")):
            raise CatalogRowError(f"{key} must be an integer, got {value!r}")
        if value != int(value):
            raise CatalogRowError(f"{key} must be an integer, got {value!r}")
        return int(value)
    raise CatalogRowError(f"{key} must be an integer, got {type(value).__name__}")


@dataclass(frozen=True)
class CatalogFilter:
    """
    Filter for the product catalog.

    Either explicit item codes, or division/category/group code sets
    (combined with AND). Never both, never neither.
    """
    specific_codes: tuple[str, ...] = ()
    divisions: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    groups: tuple[str, ...] = ()

    @classmethod
    def from_lists(
        cls,
        specific_codes: Iterable[Any] | None = None,
        divisions: Iterable[Any] | None = None,
        categories: Iterable[Any] | None = None,
        groups: Iterable[Any] | None = None,
    ) -> "CatalogFilter":
        return cls(
            specific_codes=clean_codes(specific_codes),
            divisions=clean_codes(divisions),
            categories=clean_codes(categories),
            groups=clean_codes(groups),
        )

    @property
    def has_classification(self) -> bool:
        return bool(self.divisions or self.categories or self.groups)

    @property
    def is_explicit(self) -> bool:
        return bool(self.specific_codes)

    def validate(self) -> None:
        if not self.is_explicit and not self.has_classification:
            raise ValidationError("Filter must name item codes or at least one division, category or group")
        if self.is_explicit and self.has_classification:
            raise ValidationError("Filter may use explicit item codes or classification sets, not both")

    def to_dict(self) -> dict:
        return {key: list(value) for key, value in asdict(self).items()}


@dataclass(frozen=True)
class CatalogProductRow:
    """Master product attributes from the catalog view."""
    code: str
    description: str | None = None
    description2: str | None = None
    division_code: str | None = None
    division_name: str | None = None
    category_code: str | None = None
    category_name: str | None = None
    group_code: str | None = None
    group_name: str | None = None
    subgroup_code: str | None = None
    subgroup_name: str | None = None
    brand_code: str | None = None
    brand_name: str | None = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "CatalogProductRow":
        return cls(
            code=_required_text(mapping, "code"),
            description=_optional_text(mapping, "description"),
            description2=_optional_text(mapping, "description2"),
            division_code=_optional_text(mapping, "division_code"),
            division_name=_optional_text(mapping, "division_name"),
            category_code=_optional_text(mapping, "category_code"),
            category_name=_optional_text(mapping, "category_name"),
            group_code=_optional_text(mapping, "group_code"),
            group_name=_optional_text(mapping, "group_name"),
            subgroup_code=_optional_text(mapping, "subgroup_code"),
            subgroup_name=_optional_text(mapping, "subgroup_name"),
            brand_code=_optional_text(mapping, "brand_code"),
            brand_name=_optional_text(mapping, "brand_name"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LocationInventoryRow:
    """System quantity and unit cost of one item at one location."""
    item_code: str
    system_inventory: int
    unit_cost_cents: int
    description: str | None = None
    description2: str | None = None
    division_code: str | None = None
    category_code: str | None = None
    group_code: str | None = None
    unit_measure_code: str | None = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "LocationInventoryRow":
        unit_cost_cents = _required_int(mapping, "unit_cost_cents")
        if unit_cost_cents < 0:
            raise CatalogRowError(f"unit_cost_cents cannot be negative, got {unit_cost_cents}")
        return cls(
            item_code=_required_text(mapping, "item_code"),
            system_inventory=_required_int(mapping, "system_inventory"),
            unit_cost_cents=unit_cost_cents,
            description=_optional_text(mapping, "description"),
            description2=_optional_text(mapping, "description2"),
            division_code=_optional_text(mapping, "division_code"),
            category_code=_optional_text(mapping, "category_code"),
            group_code=_optional_text(mapping, "group_code"),
            unit_measure_code=_optional_text(mapping, "unit_measure_code"),
        )

    def to_dict(self) -> dict:
        return asdict(self)
