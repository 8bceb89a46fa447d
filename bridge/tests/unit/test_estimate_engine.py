"""
Unit Tests for the Estimate Engine.

Tests cover:
- Reference heat pump scenario totals
- Discounts, the discount cap and proportional tax
- Minimum margin guardrail: alert, auto-raise, veto and override
- Tagged EstimateResult from evaluate_estimate
- Input validation (unknown SKU, empty request, bad adjustments)
"""

import pytest

from config.errors import ErrorCode, ValidationError
from models.estimate import Estimate
from services.estimate_engine import (
    ALERT_AUTO_RAISED,
    ALERT_BELOW_MINIMUM,
    ALERT_BELOW_TARGET,
    build_estimate,
    compute_estimate,
    evaluate_estimate,
    round_money,
    round_rate,
)
from tests.fixtures.mock_catalog_data import REFERENCE_CATALOG, REFERENCE_CONFIG, reference_request


# =============================================================================
# Reference Scenario
# =============================================================================


class TestReferenceScenario:
    """Single 3 ton heat pump with permit and trip charge."""

    def test_totals(self, reference_estimate):
        """Totals match the hand-computed reference values."""
        totals = reference_estimate.totals
        assert len(reference_estimate.line_items) == 1
        assert totals.direct_cost_with_overhead == 1662
        assert totals.recommended_subtotal == 3324
        assert totals.discount_total == 0
        assert totals.subtotal_after_discount == 3324
        assert totals.tax_total == 232.68
        assert totals.grand_total == 3556.68
        assert totals.achieved_gross_margin == 0.5
        assert reference_estimate.alerts == []

    def test_line_costs(self, reference_estimate):
        """Per-line cost breakdown excludes job-level permit and trip costs."""
        line = reference_estimate.line_items[0]
        assert line.code == "HP-3T-16"
        assert line.item_type == "equipment"
        assert line.labor_hours == 2
        assert line.costs.material_cost == 1000
        assert line.costs.labor_cost == 200
        assert line.costs.labor_burden_cost == 60
        assert line.costs.overhead_cost == 252
        assert line.costs.total_cost == 1512
        assert line.costs.target_sell_price == 3024
        assert line.features == ["16 SEER2"]

    def test_additional_costs_and_assumptions(self, reference_estimate):
        """Config defaults for permit/trip and the policy snapshot are recorded."""
        assert reference_estimate.additional_costs.permit_fee == 100
        assert reference_estimate.additional_costs.trip_charge == 50
        assert reference_estimate.assumptions.target_gross_margin == 0.5
        assert reference_estimate.assumptions.minimum_gross_margin == 0.3
        assert reference_estimate.assumptions.payment_terms == "Due on completion"

    def test_identity_and_timestamps(self, reference_estimate):
        """Id, generation and expiry timestamps are consistent."""
        assert reference_estimate.estimate_id.startswith("est_")
        assert reference_estimate.generated_at == "2025-03-01T15:30:00.123Z"
        assert reference_estimate.expires_at == "2025-03-31T15:30:00.123Z"
        assert reference_estimate.crm_payload.estimate_id == reference_estimate.estimate_id
        assert reference_estimate.crm_payload.customer_name == "Test Customer"
        assert reference_estimate.crm_payload.total == 3556.68

    def test_external_contract_keys(self, reference_estimate):
        """to_dict exposes camelCase nested keys."""
        data = reference_estimate.to_dict()
        assert data["totals"]["grandTotal"] == 3556.68
        assert data["line_items"][0]["costs"]["targetSellPrice"] == 3024
        assert data["guardrails"]["autoRaiseToMinimumGrossMargin"] is False
        assert data["crm_payload"]["estimateId"] == data["estimate_id"]

    def test_idempotent_totals(self, fixed_now):
        """The same request prices identically apart from the id."""
        first = build_estimate(reference_request(), now=fixed_now)
        second = build_estimate(reference_request(), now=fixed_now)
        assert first.totals == second.totals
        assert first.line_items == second.line_items
        assert first.estimate_id != second.estimate_id

    def test_estimate_is_frozen(self, reference_estimate):
        """Returned estimates cannot be mutated."""
        with pytest.raises(Exception):
            reference_estimate.alerts = ["changed"]

    def test_margin_equals_target_without_discount(self):
        """A single line with no discount lands exactly on target margin."""
        config = dict(REFERENCE_CONFIG, targetGrossMargin=0.37, defaultPermitFee=0, defaultTripCharge=0)
        estimate = compute_estimate(config, REFERENCE_CATALOG, [{"sku": "HP-3T-16", "quantity": 3}])
        assert estimate.totals.achieved_gross_margin == 0.37


# =============================================================================
# Discounts and Tax
# =============================================================================


class TestDiscountsAndTax:
    """Discount aggregation, cap, and proportional tax."""

    def test_percent_and_amount_discount(self):
        """10% + 100 off drops margin below target and alerts once."""
        estimate = build_estimate(
            reference_request(adjustments={"discountPercent": 0.1, "discountAmount": 100})
        )
        totals = estimate.totals
        assert totals.discount_total == 432.4
        assert totals.discount_from_percent == 332.4
        assert totals.discount_from_amount == 100
        assert totals.subtotal_after_discount == 2891.6
        assert totals.achieved_gross_margin == 0.4252
        assert estimate.alerts == [ALERT_BELOW_TARGET]

    def test_percent_given_as_whole_number(self):
        """discountPercent=10 is read as 10%."""
        estimate = build_estimate(reference_request(adjustments={"discountPercent": 10}))
        assert estimate.totals.discount_total == 332.4

    def test_discount_capped_at_subtotal(self):
        """A fixed discount larger than the subtotal is capped."""
        config = dict(REFERENCE_CONFIG, enforceMinimumGrossMargin=False)
        estimate = build_estimate(
            reference_request(config=config, adjustments={"discountAmount": 10000})
        )
        assert estimate.totals.discount_total == estimate.totals.recommended_subtotal
        assert estimate.totals.subtotal_after_discount == 0
        assert estimate.totals.achieved_gross_margin == 0
        assert estimate.totals.grand_total == 0

    def test_non_taxable_manual_item(self):
        """Only non-taxable lines means no tax at all."""
        estimate = build_estimate({
            "config": {
                "laborRatePerHour": 80,
                "laborBurdenRate": 0.2,
                "overheadRate": 0.15,
                "targetGrossMargin": 0.45,
                "defaultTaxRate": 0.1,
            },
            "catalog": [],
            "manual_items": [
                {
                    "code": "MANUAL-LABOR",
                    "name": "Duct sealing labor",
                    "itemType": "labor",
                    "quantity": 1,
                    "unitCost": 0,
                    "laborHoursPerUnit": 3,
                    "taxable": False,
                }
            ],
        })
        assert len(estimate.line_items) == 1
        assert estimate.line_items[0].item_type == "labor"
        assert estimate.totals.taxable_subtotal == 0
        assert estimate.totals.tax_total == 0

    def test_tax_follows_taxable_share(self):
        """Tax applies to the taxable share of target-sell value."""
        config = dict(REFERENCE_CONFIG, defaultPermitFee=0, defaultTripCharge=0)
        estimate = compute_estimate(
            config,
            REFERENCE_CATALOG,
            [{"sku": "HP-3T-16"}],
            [{"name": "Haul away", "unitCost": 1260, "taxable": False}],
        )
        # Both lines carry 1512 total cost, so half the subtotal is taxable
        assert estimate.totals.taxable_subtotal == round(estimate.totals.subtotal_after_discount / 2, 2)
        assert estimate.totals.tax_total == round(estimate.totals.taxable_subtotal * 0.07, 2)

    def test_tax_rate_override(self):
        """adjustments.taxRate replaces the config default."""
        estimate = build_estimate(reference_request(adjustments={"taxRate": 0}))
        assert estimate.totals.tax_rate == 0
        assert estimate.totals.grand_total == 3324

    def test_grand_total_is_rounded_sum(self):
        """grandTotal equals subtotal + tax at cent precision."""
        estimate = build_estimate(reference_request(adjustments={"discountPercent": 0.07, "discountAmount": 13.33}))
        totals = estimate.totals
        assert totals.grand_total == round(totals.subtotal_after_discount + totals.tax_total, 2)
        assert totals.discount_total <= totals.recommended_subtotal


# =============================================================================
# Guardrail
# =============================================================================


class TestMarginGuardrail:
    """Minimum gross margin enforcement."""

    def test_veto_raises_with_details(self):
        """Below minimum with enforcement on raises a guardrail error."""
        with pytest.raises(ValidationError) as exc_info:
            build_estimate(reference_request(adjustments={"discountPercent": 0.5}))

        error = exc_info.value
        assert error.code == ErrorCode.MARGIN_GUARDRAIL_VIOLATION
        assert error.details["minimumAllowedSubtotal"] == 2374.29
        assert error.details["minimumGrossMarginTarget"] == 0.3
        assert error.details["targetGrossMargin"] == 0.5
        assert error.details["achievedGrossMargin"] < 0.3

    def test_evaluate_returns_violation(self):
        """evaluate_estimate reports the veto as a value."""
        request = reference_request()
        result = evaluate_estimate(
            request["config"],
            request["catalog"],
            request["selections"],
            adjustments={"discountPercent": 0.5},
        )
        assert not result.ok
        assert result.estimate is None
        assert result.violation.minimum_allowed_subtotal == 2374.29
        with pytest.raises(ValidationError):
            result.unwrap()

    def test_evaluate_returns_estimate(self):
        """A passing estimate comes back as ok."""
        request = reference_request()
        result = evaluate_estimate(request["config"], request["catalog"], request["selections"])
        assert result.ok
        assert isinstance(result.unwrap(), Estimate)

    def test_override_allows_low_margin(self):
        """allowMarginOverride=True keeps the estimate and flags it."""
        estimate = build_estimate(
            reference_request(adjustments={"discountPercent": 0.5, "allowMarginOverride": True})
        )
        assert estimate.guardrails.below_minimum_gross_margin is True
        assert estimate.guardrails.allow_margin_override is True
        assert estimate.alerts == [ALERT_BELOW_TARGET, ALERT_BELOW_MINIMUM]

    def test_override_requires_literal_true(self):
        """Truthy strings do not enable the override."""
        with pytest.raises(ValidationError):
            build_estimate(
                reference_request(adjustments={"discountPercent": 0.5, "allowMarginOverride": "true"})
            )

    def test_enforcement_disabled_in_config(self):
        """Without enforcement a low margin is only an alert."""
        config = dict(REFERENCE_CONFIG, enforceMinimumGrossMargin=False)
        estimate = build_estimate(reference_request(config=config, adjustments={"discountPercent": 0.5}))
        assert estimate.guardrails.below_minimum_gross_margin is True
        assert ALERT_BELOW_MINIMUM in estimate.alerts

    def test_auto_raise_to_minimum(self):
        """Auto-raise lifts the subtotal to the minimum and shrinks the discount."""
        estimate = build_estimate(
            reference_request(adjustments={"discountPercent": 0.5, "autoRaiseToMinimumGrossMargin": True})
        )
        totals = estimate.totals
        assert totals.subtotal_after_discount == 2374.29
        assert totals.minimum_allowed_subtotal == 2374.29
        assert totals.discount_total == 949.71
        assert totals.achieved_gross_margin == 0.3
        assert estimate.guardrails.adjusted_to_minimum_gross_margin is True
        assert estimate.guardrails.below_minimum_gross_margin is False
        assert estimate.alerts == [ALERT_BELOW_TARGET, ALERT_AUTO_RAISED]

    def test_auto_raise_shrinks_percent_part_first(self):
        """With mixed discounts the fixed amount survives the auto-raise."""
        estimate = build_estimate(
            reference_request(
                adjustments={
                    "discountPercent": 0.5,
                    "discountAmount": 100,
                    "autoRaiseToMinimumGrossMargin": True,
                }
            )
        )
        totals = estimate.totals
        assert totals.discount_total == 949.71
        assert totals.discount_from_amount == 100
        assert totals.discount_from_percent == 849.71

    def test_auto_raise_not_needed(self):
        """Auto-raise does nothing when the margin is already fine."""
        estimate = build_estimate(reference_request(adjustments={"autoRaiseToMinimumGrossMargin": True}))
        assert estimate.guardrails.adjusted_to_minimum_gross_margin is False
        assert estimate.guardrails.auto_raise_to_minimum_gross_margin is True
        assert estimate.totals.subtotal_after_discount == 3324


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    """Malformed requests fail fast."""

    def test_unknown_sku(self):
        """Selections must reference the catalog."""
        with pytest.raises(ValidationError, match="Unknown SKU in selections\\[0\\]: MISSING"):
            build_estimate(reference_request(selections=[{"sku": "MISSING"}]))

    def test_empty_request(self):
        """At least one line is required."""
        with pytest.raises(ValidationError, match="At least one selection or manual item is required"):
            build_estimate(reference_request(selections=[]))

    def test_bad_quantity(self):
        """Quantities must be positive."""
        with pytest.raises(ValidationError) as exc_info:
            build_estimate(reference_request(selections=[{"sku": "HP-3T-16", "quantity": 0}]))
        assert exc_info.value.field == "selections[0].quantity"

    def test_discount_percent_above_one_hundred(self):
        """Discount percentages above 100% are rejected, not clamped."""
        with pytest.raises(ValidationError):
            build_estimate(reference_request(adjustments={"discountPercent": 150}))

    def test_manual_item_defaults(self):
        """Manual items default their code and item type."""
        estimate = build_estimate(
            reference_request(selections=[], manualItems=[{"name": "Startup check", "laborHoursPerUnit": 1}])
        )
        line = estimate.line_items[0]
        assert line.code == "manual-1"
        assert line.item_type == "service"
        assert line.taxable is True

    def test_selection_overrides(self):
        """Unit cost and labor hour overrides replace catalog values."""
        estimate = build_estimate(
            reference_request(
                selections=[
                    {"sku": "HP-3T-16", "unitCostOverride": 900, "laborHoursPerUnitOverride": 0, "notes": "Promo"}
                ]
            )
        )
        line = estimate.line_items[0]
        assert line.unit_cost == 900
        assert line.costs.labor_cost == 0
        assert line.notes == "Promo"


# =============================================================================
# Rounding
# =============================================================================


class TestRounding:
    """Money rounds to cents and rates to 4 places, halves away from zero."""

    def test_exact_halves_round_up(self):
        assert round_money(10.125) == 10.13
        assert round_money(0.005) == 0.01
        assert round_rate(0.03125) == 0.0313

    def test_binary_values_below_half_round_down(self):
        """1.005 is stored as 1.00499..., so it rounds down."""
        assert round_money(1.005) == 1.0
        assert round_money(3556.68) == 3556.68

    def test_line_costs_round_half_up(self):
        """A half-cent unit cost is recorded a cent up."""
        config = dict(
            REFERENCE_CONFIG,
            laborBurdenRate=0,
            overheadRate=0,
            defaultPermitFee=0,
            defaultTripCharge=0,
        )
        catalog = [{"sku": "CAP-45", "name": "45/5 MFD capacitor", "itemType": "part", "unitCost": 10.125}]
        estimate = compute_estimate(config, catalog, [{"sku": "CAP-45", "quantity": 1}])

        line = estimate.line_items[0]
        assert line.unit_cost == 10.13
        assert line.costs.material_cost == 10.13
        assert line.costs.target_sell_price == 20.25
