"""
Unit Tests for the Domain Normalizer.

Tests coercion of untrusted input into catalog items and estimator
configs, and that every rejection names the offending field.
"""

import math

import pytest

from config.errors import ValidationError
from models.catalog import CatalogItem
from models.estimator_config import DEFAULT_PAYMENT_TERMS
from validators.domain_normalizer import (
    as_boolean,
    as_non_negative_number,
    as_positive_number,
    as_trimmed_string,
    get_default_estimator_config,
    normalize_attributes,
    normalize_catalog,
    normalize_catalog_item,
    normalize_estimator_config,
    normalize_features,
    normalize_rate,
)


class TestScalars:
    """Scalar helpers."""

    def test_trimmed_string(self):
        assert as_trimmed_string("  hello  ", "name") == "hello"
        assert as_trimmed_string(None, "name", default="x") == "x"
        assert as_trimmed_string("abcdef", "name", max_length=3) == "abc"
        assert as_trimmed_string("   ", "name", allow_empty=True) == ""

    def test_trimmed_string_rejects(self):
        with pytest.raises(ValidationError) as exc_info:
            as_trimmed_string("  ", "businessName")
        assert exc_info.value.field == "businessName"
        with pytest.raises(ValidationError):
            as_trimmed_string(42, "businessName")

    def test_numbers(self):
        assert as_non_negative_number("12.5", "unitCost") == 12.5
        assert as_non_negative_number(None, "unitCost", default=3) == 3
        assert as_non_negative_number("", "unitCost") == 0
        assert as_positive_number(None, "quantity") == 1

    @pytest.mark.parametrize("value", [-1, "abc", math.inf, float("nan"), True, [1]])
    def test_non_negative_rejects(self, value):
        with pytest.raises(ValidationError):
            as_non_negative_number(value, "unitCost")

    def test_positive_rejects_zero(self):
        with pytest.raises(ValidationError, match="quantity must be greater than zero"):
            as_positive_number(0, "quantity")

    @pytest.mark.parametrize(
        "value,expected",
        [(True, True), (False, False), ("yes", True), ("Y", True), (" TRUE ", True), (1, True), ("no", False), (0, False)],
    )
    def test_boolean(self, value, expected):
        assert as_boolean(value) is expected

    def test_boolean_default(self):
        assert as_boolean(None, default=True) is True

    def test_rate_percent_and_fraction(self):
        assert normalize_rate(0.4, "targetGrossMargin") == 0.4
        assert normalize_rate("35", "targetGrossMargin") == 0.35
        assert normalize_rate(1, "defaultTaxRate", max_value=1) == 1
        assert normalize_rate(None, "targetGrossMargin", default=0.4) == 0.4

    def test_rate_above_ceiling_is_error(self):
        """Rates over the ceiling are rejected, never clamped."""
        with pytest.raises(ValidationError, match="targetGrossMargin must be <= 0.95"):
            normalize_rate(96, "targetGrossMargin")
        with pytest.raises(ValidationError):
            normalize_rate(101, "overheadRate", max_value=2)

    def test_rate_negative(self):
        with pytest.raises(ValidationError):
            normalize_rate(-0.1, "overheadRate")

    def test_oversized_integers_rejected(self):
        """Integers too large for a float are validation errors, not overflows."""
        with pytest.raises(ValidationError) as exc_info:
            as_non_negative_number(10**400, "unitCost")
        assert exc_info.value.field == "unitCost"
        with pytest.raises(ValidationError):
            as_positive_number(10**400, "quantity")
        with pytest.raises(ValidationError):
            normalize_rate(10**400, "overheadRate")


class TestCollections:
    """Attribute and feature maps."""

    def test_attributes_keep_scalars_only(self):
        attributes = normalize_attributes({
            "brand": "  AC Pro ",
            "tonnage": 4,
            "inStock": False,
            "blank": "   ",
            "nested": {"a": 1},
            "listed": [1, 2],
            "bad": math.nan,
            "  ": "no key",
        })
        assert attributes == {"brand": "AC Pro", "tonnage": 4, "inStock": False}

    def test_attributes_drop_oversized_integers(self):
        assert normalize_attributes({"tonnage": 10**400, "seer2": 16}) == {"seer2": 16}

    def test_attributes_truncate(self):
        assert len(normalize_attributes({"note": "x" * 300})["note"]) == 200

    def test_attributes_must_be_mapping(self):
        with pytest.raises(ValidationError):
            normalize_attributes(["brand"])
        assert normalize_attributes(None) == {}

    def test_features(self):
        assert normalize_features([" 16 SEER2 ", "", 7, "Quiet"]) == ["16 SEER2", "Quiet"]
        assert normalize_features("16 SEER2") == []


class TestEstimatorConfig:
    """Config normalization and merging."""

    def test_defaults(self):
        config = get_default_estimator_config()
        assert config.business_name == "HVAC Business"
        assert config.currency == "USD"
        assert config.labor_rate_per_hour == 125
        assert config.target_gross_margin == 0.4
        assert config.minimum_gross_margin == 0.3
        assert config.enforce_minimum_gross_margin is True
        assert config.default_tax_rate == 0.09
        assert config.estimate_expiration_days == 30
        assert config.payment_terms == DEFAULT_PAYMENT_TERMS

    def test_partial_patch_merges_over_base(self):
        """Only keys present in the patch change."""
        base = normalize_estimator_config({"laborRatePerHour": 95, "overheadRate": 0.18})
        merged = normalize_estimator_config({"targetGrossMargin": 45}, base=base)
        assert merged.labor_rate_per_hour == 95
        assert merged.overhead_rate == 0.18
        assert merged.target_gross_margin == 0.45

    def test_snake_case_keys(self):
        config = normalize_estimator_config({"labor_rate_per_hour": "110", "currency": "cad"})
        assert config.labor_rate_per_hour == 110
        assert config.currency == "CAD"

    def test_rate_ceilings(self):
        """Whole numbers up to 100 are percentages; anything larger must fit the ceiling."""
        config = normalize_estimator_config({"laborBurdenRate": 35, "overheadRate": 1})
        assert config.labor_burden_rate == 0.35
        assert config.overhead_rate == 1
        with pytest.raises(ValidationError) as exc_info:
            normalize_estimator_config({"contingencyRate": 150})
        assert exc_info.value.field == "contingencyRate"

    def test_enforce_uses_lenient_boolean(self):
        assert normalize_estimator_config({"enforceMinimumGrossMargin": "no"}).enforce_minimum_gross_margin is False

    def test_expiration_days_floored(self):
        assert normalize_estimator_config({"estimateExpirationDays": "14.7"}).estimate_expiration_days == 14
        with pytest.raises(ValidationError):
            normalize_estimator_config({"estimateExpirationDays": 0.5})

    def test_config_round_trips_through_dict(self):
        config = normalize_estimator_config({"businessName": "Cool Air LLC", "defaultPermitFee": 85})
        assert normalize_estimator_config(config.to_dict()) == config


class TestCatalogItem:
    """Catalog row normalization."""

    def test_full_item(self):
        item = normalize_catalog_item({
            "sku": " ACPRO-HP-4T ",
            "name": "AC Pro 4 Ton Heat Pump",
            "itemType": "Equipment",
            "unitCost": "4200",
            "defaultLaborHours": 7,
            "features": ["18 SEER2"],
            "attributes": {"brand": "AC Pro", "tonnage": "4", "Phase": "single", "warrantyYears": 10},
        })
        assert item.sku == "ACPRO-HP-4T"
        assert item.item_type == "equipment"
        assert item.unit_cost == 4200
        assert item.taxable is True
        assert item.attributes.brand == "AC Pro"
        assert item.attributes.tonnage == 4
        assert item.attributes.phase == "single"
        assert item.attributes.extra == {"warrantyYears": 10}

    def test_defaults(self):
        item = normalize_catalog_item({"sku": "FILTER", "name": "Filter"})
        assert item.item_type == "part"
        assert item.unit_cost == 0
        assert item.default_labor_hours == 0
        assert item.features == []
        assert item.notes == ""

    def test_unparseable_numeric_attribute_stays_raw(self):
        item = normalize_catalog_item({"sku": "X", "name": "X", "attributes": {"tonnage": "four"}})
        assert item.attributes.tonnage is None
        assert item.attributes.extra == {"tonnage": "four"}

    def test_non_finite_numeric_attributes_stay_raw(self):
        """NaN and infinity text never becomes a typed number."""
        item = normalize_catalog_item({
            "sku": "X",
            "name": "AC Pro 4 Ton Heat Pump",
            "itemType": "equipment",
            "attributes": {"tonnage": "NaN", "seer2": "inf"},
        })
        assert item.attributes.tonnage is None
        assert item.attributes.seer2 is None
        assert item.attributes.extra == {"tonnage": "NaN", "seer2": "inf"}

    def test_oversized_numbers_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_catalog_item({"sku": "X", "name": "X", "unitCost": 10**400})
        assert exc_info.value.field == "catalog item unitCost"
        item = normalize_catalog_item({"sku": "X", "name": "X", "attributes": {"tonnage": 10**400}})
        assert item.attributes.tonnage is None

    @pytest.mark.parametrize(
        "raw,field",
        [
            ({"name": "No sku"}, "catalog item sku"),
            ({"sku": "A", "name": "  "}, "catalog item name"),
            ({"sku": "A", "name": "A", "itemType": "widget"}, "catalog item itemType"),
            ({"sku": "A", "name": "A", "unitCost": -5}, "catalog item unitCost"),
        ],
    )
    def test_rejects(self, raw, field):
        with pytest.raises(ValidationError) as exc_info:
            normalize_catalog_item(raw)
        assert exc_info.value.field == field

    def test_to_dict_round_trip(self):
        raw = {
            "sku": "A",
            "name": "A",
            "itemType": "service",
            "taxable": False,
            "attributes": {"sourceCategory": "Changeout Adders", "vendorQuoteRequired": True},
        }
        item = normalize_catalog_item(raw)
        assert normalize_catalog_item(item.to_dict()) == item

    def test_models_pass_through(self):
        item = normalize_catalog_item({"sku": "A", "name": "A"})
        assert normalize_catalog_item(item) is item
        assert isinstance(normalize_catalog([item])[0], CatalogItem)

    def test_catalog_must_be_list(self):
        with pytest.raises(ValidationError):
            normalize_catalog({"sku": "A"})
        assert normalize_catalog(None) == []
