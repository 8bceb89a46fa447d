"""Catalog models for the estimator.

A catalog is the per-business list of purchasable/billable items. Source
catalogs are heterogeneous, so each item carries a typed set of the
attributes the planner reasons about plus a residual open map for
vendor-specific facts.
"""

import math
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field


AttributeValue = Union[bool, int, float, str]


class ItemType(str, Enum):
    """Kind of catalog item."""

    EQUIPMENT = "equipment"
    PART = "part"
    SERVICE = "service"
    LABOR = "labor"
    CONSUMABLE = "consumable"


# Accepted source keys for each typed attribute, in lookup priority order.
# The first key is also the canonical key used when flattening back out.
ATTRIBUTE_ALIASES: Dict[str, List[str]] = {
    "brand": ["brand", "manufacturer", "oemBrand"],
    "tonnage": ["tonnage", "capacity_tons"],
    "seer2": ["seer2", "seer_2", "seer_rating", "seer"],
    "system_type": ["systemType", "system_type", "system"],
    "phase": ["phase", "power_phase"],
    "vendor_contact": ["vendorContact", "vendor_contact", "supplier_contact", "distributor_contact"],
    "vendor_quote_required": ["vendorQuoteRequired", "vendor_quote_required", "quote_required"],
    "source_category": ["sourceCategory", "source_category"],
    "source_subcategory": ["sourceSubcategory", "source_subcategory"],
}

_NUMERIC_ATTRIBUTES = {"tonnage", "seer2"}
_TRUTHY = {"true", "yes", "1", "y"}


def find_attribute_key(attributes: Mapping[str, Any], keys: List[str]) -> Optional[str]:
    """Return the key in ``attributes`` matching one of ``keys``.

    Exact matches win over case-insensitive ones.
    """
    for key in keys:
        if key in attributes:
            return key
    by_lower = {str(k).lower(): k for k in attributes}
    for key in keys:
        match = by_lower.get(key.lower())
        if match is not None:
            return match
    return None


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value) if isinstance(value, (int, float)) else float(str(value).strip())
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


class CatalogAttributes(BaseModel):
    """Typed catalog attributes with a residual open map."""

    brand: Optional[str] = Field(default=None, description="Manufacturer / brand")
    tonnage: Optional[float] = Field(default=None, ge=0, description="Nominal capacity in tons")
    seer2: Optional[float] = Field(default=None, ge=0, description="SEER2 efficiency rating")
    system_type: Optional[str] = Field(default=None, description="Raw system type text")
    phase: Optional[str] = Field(default=None, description="Raw power phase text")
    vendor_contact: Optional[str] = Field(default=None, description="Distributor / vendor contact")
    vendor_quote_required: Optional[bool] = Field(
        default=None, description="Pricing must be confirmed with the vendor"
    )
    source_category: Optional[str] = Field(default=None, description="Category from the source price list")
    source_subcategory: Optional[str] = Field(default=None, description="Subcategory from the source price list")
    extra: Dict[str, AttributeValue] = Field(
        default_factory=dict, description="Unrecognized vendor-specific facts"
    )

    class Config:
        frozen = True

    @classmethod
    def from_mapping(cls, attributes: Optional[Mapping[str, AttributeValue]]) -> "CatalogAttributes":
        """Split an already-normalized attribute map into typed fields + extra."""
        remaining: Dict[str, AttributeValue] = dict(attributes or {})
        typed: Dict[str, Any] = {}
        for field_name, keys in ATTRIBUTE_ALIASES.items():
            key = find_attribute_key(remaining, keys)
            if key is None:
                continue
            value = remaining[key]
            if field_name in _NUMERIC_ATTRIBUTES:
                number = _to_number(value)
                if number is None or number < 0:
                    # Unparseable numbers stay available as raw facts
                    continue
                typed[field_name] = number
            elif field_name == "vendor_quote_required":
                typed[field_name] = value if isinstance(value, bool) else str(value).strip().lower() in _TRUTHY
            else:
                typed[field_name] = str(value)
            del remaining[key]
        return cls(**typed, extra=remaining)

    def to_dict(self) -> Dict[str, AttributeValue]:
        """Flatten back to a single attribute mapping using canonical keys."""
        flat: Dict[str, AttributeValue] = dict(self.extra)
        for field_name, keys in ATTRIBUTE_ALIASES.items():
            value = getattr(self, field_name)
            if value is not None:
                flat[keys[0]] = value
        return flat


class CatalogItem(BaseModel):
    """A purchasable or billable catalog item.

    Immutable once part of a catalog snapshot.
    """

    sku: str = Field(..., min_length=1, max_length=120, description="Unique catalog key")
    name: str = Field(..., description="Display name")
    item_type: ItemType = Field(default=ItemType.PART, alias="itemType", description="Kind of item")
    unit_cost: float = Field(default=0.0, ge=0, alias="unitCost", description="Cost per unit")
    default_labor_hours: float = Field(
        default=0.0, ge=0, alias="defaultLaborHours", description="Install labor hours per unit"
    )
    taxable: bool = Field(default=True, description="Whether sales tax applies")
    features: List[str] = Field(default_factory=list, description="Short selling points")
    notes: str = Field(default="", description="Free-text notes")
    attributes: CatalogAttributes = Field(
        default_factory=CatalogAttributes, description="Typed attributes + residual facts"
    )

    class Config:
        populate_by_name = True
        use_enum_values = True
        frozen = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the external camelCase catalog shape."""
        data = self.model_dump(by_alias=True, exclude={"attributes"})
        data["attributes"] = self.attributes.to_dict()
        return data
