"""Domain normalization for estimator input.

Coerces untrusted values (API bodies, stored JSON, spreadsheet rows) into
validated catalog items and estimator configs. Every setter-style helper
takes the raw value and the field name it came from, and raises
``ValidationError`` naming that field on bad input.

Attribute maps are the exception: unknown-shaped values are dropped rather
than rejected, since source catalogs are messy.
"""

import math
from typing import Any, Dict, List, Mapping, Optional, Union

from config.errors import ValidationError
from models.catalog import CatalogAttributes, CatalogItem, ItemType
from models.estimator_config import EstimatorConfig

ALLOWED_ITEM_TYPES = [item_type.value for item_type in ItemType]

TRUTHY_STRINGS = {"true", "yes", "1", "y"}

_MISSING = (None, "")


# =============================================================================
# SCALAR HELPERS
# =============================================================================


def as_trimmed_string(
    value: Any,
    field_name: str,
    max_length: int = 500,
    allow_empty: bool = False,
    default: str = "",
) -> str:
    """Trim and cap a string.

    Args:
        value: Raw value.
        field_name: Name used in error messages.
        max_length: Characters kept after trimming.
        allow_empty: Accept blank strings.
        default: Returned when value is None.

    Returns:
        Normalized string.

    Raises:
        ValidationError: If value is not a string or is blank when not allowed.
    """
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)
    trimmed = value.strip()
    if not allow_empty and not trimmed:
        raise ValidationError(f"{field_name} cannot be empty", field=field_name)
    return trimmed[:max_length]


def _parse_number(value: Any) -> Optional[float]:
    """Parse a finite float, or None when the value is not numeric."""
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        numeric = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    return numeric if math.isfinite(numeric) else None


def as_non_negative_number(value: Any, field_name: str, default: float = 0.0) -> float:
    """Coerce to a number >= 0; None/"" return ``default``."""
    if value in _MISSING:
        return default
    numeric = _parse_number(value)
    if numeric is None or numeric < 0:
        raise ValidationError(f"{field_name} must be a non-negative number", field=field_name)
    return numeric


def as_positive_number(value: Any, field_name: str, default: float = 1.0) -> float:
    """Coerce to a number > 0; None/"" return ``default``."""
    if value in _MISSING:
        return default
    numeric = _parse_number(value)
    if numeric is None or numeric <= 0:
        raise ValidationError(f"{field_name} must be greater than zero", field=field_name)
    return numeric


def as_boolean(value: Any, default: bool = False) -> bool:
    """Lenient boolean. Never raises.

    Literal booleans pass through; anything else is true only when its
    lower-cased text is one of "true", "yes", "1", "y".
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY_STRINGS


def normalize_rate(
    value: Any,
    field_name: str,
    default: float = 0.0,
    max_value: float = 0.95,
) -> float:
    """Normalize a rate to a fraction.

    Values above 1 and up to 100 are read as percentages. A result above
    ``max_value`` is an error, not a clamp.
    """
    if value in _MISSING:
        return default
    numeric = _parse_number(value)
    if numeric is None or numeric < 0:
        raise ValidationError(f"{field_name} must be a non-negative number", field=field_name)
    normalized = numeric / 100 if 1 < numeric <= 100 else numeric
    if normalized > max_value:
        raise ValidationError(f"{field_name} must be <= {max_value}", field=field_name)
    return normalized


# =============================================================================
# COLLECTION HELPERS
# =============================================================================


def normalize_attributes(attributes: Any) -> Dict[str, Union[str, float, int, bool]]:
    """Keep only string, finite number and boolean attribute values.

    Strings are trimmed and capped at 200 characters; blank strings, blank
    keys and other value shapes are silently dropped.

    Raises:
        ValidationError: If attributes is present but not a mapping.
    """
    if attributes is None:
        return {}
    if not isinstance(attributes, Mapping):
        raise ValidationError("catalog item attributes must be an object", field="attributes")

    normalized: Dict[str, Union[str, float, int, bool]] = {}
    for raw_key, value in attributes.items():
        key = str(raw_key).strip()
        if not key:
            continue
        if isinstance(value, bool):
            normalized[key] = value
        elif isinstance(value, str):
            trimmed = value.strip()
            if trimmed:
                normalized[key] = trimmed[:200]
        elif isinstance(value, (int, float)) and _parse_number(value) is not None:
            normalized[key] = value
    return normalized


def normalize_features(features: Any) -> List[str]:
    """Trimmed, non-empty feature strings capped at 200 characters."""
    if not isinstance(features, (list, tuple)):
        return []
    return [f.strip()[:200] for f in features if isinstance(f, str) and f.strip()]


# =============================================================================
# CONFIG
# =============================================================================


def get_default_estimator_config() -> EstimatorConfig:
    """Default pricing policy for a new business profile."""
    return EstimatorConfig()


def _lookup(source: Mapping[str, Any], alias: str, name: str):
    """Return (present, value) for a camelCase or snake_case key."""
    if alias in source:
        return True, source[alias]
    if name in source:
        return True, source[name]
    return False, None


def normalize_estimator_config(
    patch: Any = None,
    base: Union[EstimatorConfig, Mapping[str, Any], None] = None,
) -> EstimatorConfig:
    """Merge a partial config over ``base``.

    Only keys present in ``patch`` are touched; everything else keeps the
    base value (last write wins per field).

    Args:
        patch: Partial config mapping (camelCase or snake_case keys).
        base: Previous config; defaults to the default config.

    Returns:
        A new EstimatorConfig.

    Raises:
        ValidationError: On any invalid field.
    """
    if isinstance(base, EstimatorConfig):
        base_config = base
    elif isinstance(base, Mapping):
        base_config = normalize_estimator_config(base)
    else:
        base_config = get_default_estimator_config()

    if isinstance(patch, EstimatorConfig):
        source: Mapping[str, Any] = patch.to_dict()
    elif isinstance(patch, Mapping):
        source = patch
    else:
        source = {}

    updates: Dict[str, Any] = {}

    present, value = _lookup(source, "businessName", "business_name")
    if present:
        updates["business_name"] = as_trimmed_string(
            value, "businessName", max_length=200, default=base_config.business_name
        )

    present, value = _lookup(source, "currency", "currency")
    if present:
        updates["currency"] = as_trimmed_string(
            value, "currency", max_length=3, default=base_config.currency
        ).upper()

    present, value = _lookup(source, "laborRatePerHour", "labor_rate_per_hour")
    if present:
        updates["labor_rate_per_hour"] = as_non_negative_number(value, "laborRatePerHour")

    rate_fields = [
        ("laborBurdenRate", "labor_burden_rate", 2.0),
        ("overheadRate", "overhead_rate", 2.0),
        ("contingencyRate", "contingency_rate", 1.0),
        ("targetGrossMargin", "target_gross_margin", 0.95),
        ("minimumGrossMargin", "minimum_gross_margin", 0.95),
        ("defaultTaxRate", "default_tax_rate", 1.0),
    ]
    for alias, name, ceiling in rate_fields:
        present, value = _lookup(source, alias, name)
        if present:
            updates[name] = normalize_rate(value, alias, max_value=ceiling)

    present, value = _lookup(source, "enforceMinimumGrossMargin", "enforce_minimum_gross_margin")
    if present:
        updates["enforce_minimum_gross_margin"] = as_boolean(value)

    present, value = _lookup(source, "defaultPermitFee", "default_permit_fee")
    if present:
        updates["default_permit_fee"] = as_non_negative_number(value, "defaultPermitFee")

    present, value = _lookup(source, "defaultTripCharge", "default_trip_charge")
    if present:
        updates["default_trip_charge"] = as_non_negative_number(value, "defaultTripCharge")

    present, value = _lookup(source, "estimateExpirationDays", "estimate_expiration_days")
    if present:
        days = as_positive_number(value, "estimateExpirationDays", default=base_config.estimate_expiration_days)
        if days < 1:
            raise ValidationError("estimateExpirationDays must be at least 1", field="estimateExpirationDays")
        updates["estimate_expiration_days"] = int(math.floor(days))

    present, value = _lookup(source, "paymentTerms", "payment_terms")
    if present:
        updates["payment_terms"] = as_trimmed_string(
            value, "paymentTerms", max_length=500, default=base_config.payment_terms
        )

    return base_config.model_copy(update=updates)


# =============================================================================
# CATALOG
# =============================================================================


def normalize_catalog_item(item: Any) -> CatalogItem:
    """Validate one catalog row.

    Args:
        item: Raw mapping (camelCase or snake_case keys) or a CatalogItem.

    Returns:
        Immutable CatalogItem.

    Raises:
        ValidationError: On a missing sku/name, unknown itemType or bad number.
    """
    if isinstance(item, CatalogItem):
        return item
    if not isinstance(item, Mapping):
        raise ValidationError("catalog item must be an object")

    def pick(alias: str, name: str) -> Any:
        return _lookup(item, alias, name)[1]

    sku = as_trimmed_string(item.get("sku"), "catalog item sku", max_length=120)
    if not sku:
        raise ValidationError("catalog item sku cannot be empty", field="catalog item sku")
    name = as_trimmed_string(item.get("name"), "catalog item name", max_length=240)
    if not name:
        raise ValidationError("catalog item name cannot be empty", field="catalog item name")

    raw_type = pick("itemType", "item_type")
    item_type = as_trimmed_string(
        "part" if raw_type is None else raw_type, "catalog item itemType", max_length=40
    ).lower()
    if item_type not in ALLOWED_ITEM_TYPES:
        raise ValidationError(
            f"catalog item itemType must be one of: {', '.join(ALLOWED_ITEM_TYPES)}",
            field="catalog item itemType",
        )

    unit_cost = as_non_negative_number(pick("unitCost", "unit_cost"), "catalog item unitCost")
    labor_hours = as_non_negative_number(
        pick("defaultLaborHours", "default_labor_hours"), "catalog item defaultLaborHours"
    )
    notes = item.get("notes")
    notes = as_trimmed_string(notes, "catalog item notes", allow_empty=True) if notes else ""

    return CatalogItem(
        sku=sku,
        name=name,
        item_type=item_type,
        unit_cost=unit_cost,
        default_labor_hours=labor_hours,
        taxable=as_boolean(item.get("taxable"), default=True),
        features=normalize_features(item.get("features")),
        notes=notes,
        attributes=CatalogAttributes.from_mapping(normalize_attributes(item.get("attributes"))),
    )


def normalize_catalog(items: Any) -> List[CatalogItem]:
    """Normalize a catalog snapshot, preserving order.

    Raises:
        ValidationError: If items is not a list or any item is invalid.
    """
    if items is None:
        return []
    if not isinstance(items, (list, tuple)):
        raise ValidationError("catalog must be a list", field="catalog")
    return [normalize_catalog_item(item) for item in items]
