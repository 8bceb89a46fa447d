"""
Estimate Engine for the HVAC estimator.

Turns catalog selections and manual line items into a fully costed,
margin-validated estimate.

Pricing model:
- Per line: material + labor + labor burden = direct cost; overhead and
  contingency are fractions of direct cost
- Sell price is derived from cost at the target margin:
  price = cost / (1 - margin), so margin = (price - cost) / price
- Discounts apply to the aggregate subtotal, so taxability is carried to the
  discounted subtotal as a ratio of taxable target-sell value
- A minimum-margin guardrail either raises the subtotal (on request),
  records an alert, or vetoes the estimate when enforcement is on

The engine is pure apart from the generated estimate id and timestamps.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import uuid4

import structlog
from pydantic import BaseModel

from config.errors import ErrorCode, ValidationError
from models.catalog import CatalogItem
from models.estimate import (
    AdditionalCosts,
    CrmSummary,
    Estimate,
    EstimateAssumptions,
    EstimateGuardrails,
    EstimateTotals,
    LineItem,
    LineItemCosts,
)
from models.estimator_config import EstimatorConfig
from validators.domain_normalizer import (
    as_non_negative_number,
    as_positive_number,
    as_trimmed_string,
    as_boolean,
    normalize_catalog,
    normalize_estimator_config,
    normalize_features,
    normalize_rate,
)

logger = structlog.get_logger(__name__)

# Subtotals within a cent of the guardrail are not "below" it
GUARDRAIL_TOLERANCE = 0.01

GUARDRAIL_MESSAGE = (
    "Estimate subtotal is below minimum gross margin guardrail. "
    "Set allowMarginOverride=true or adjust pricing."
)

ALERT_BELOW_TARGET = "Estimated gross margin is below target after discounts."
ALERT_BELOW_MINIMUM = "Estimated gross margin is below configured minimum guardrail."
ALERT_AUTO_RAISED = "Subtotal was automatically raised to satisfy minimum gross margin guardrail."

CatalogInput = Union[Sequence[Union[CatalogItem, Mapping[str, Any]]], Mapping[str, Any], None]
ConfigInput = Union[EstimatorConfig, Mapping[str, Any], None]


CENTS = Decimal("0.01")
RATE_PLACES = Decimal("0.0001")


def _round_half_up(value: float, places: Decimal) -> float:
    # Exact binary value, so 10.125 -> 10.13 but 1.005 (1.00499...) -> 1.0
    if not math.isfinite(value):
        return value
    return float(Decimal(value).quantize(places, rounding=ROUND_HALF_UP))


def round_money(value: float) -> float:
    """Round a currency amount to cents, halves away from zero."""
    return _round_half_up(value, CENTS)


def round_rate(value: float) -> float:
    """Round a rate or quantity to 4 decimal places, halves away from zero."""
    return _round_half_up(value, RATE_PLACES)


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class GuardrailViolation:
    """Minimum-margin veto with the numbers needed to explain it."""

    minimum_allowed_subtotal: float
    achieved_gross_margin: float
    minimum_gross_margin_target: float
    target_gross_margin: float
    message: str = GUARDRAIL_MESSAGE

    def details(self) -> Dict[str, float]:
        return {
            "minimumAllowedSubtotal": self.minimum_allowed_subtotal,
            "achievedGrossMargin": self.achieved_gross_margin,
            "minimumGrossMarginTarget": self.minimum_gross_margin_target,
            "targetGrossMargin": self.target_gross_margin,
        }

    def to_error(self) -> ValidationError:
        return ValidationError(
            self.message,
            details=self.details(),
            code=ErrorCode.MARGIN_GUARDRAIL_VIOLATION,
        )


@dataclass(frozen=True)
class EstimateResult:
    """Either a priced estimate or a guardrail violation."""

    estimate: Optional[Estimate] = None
    violation: Optional[GuardrailViolation] = None

    @property
    def ok(self) -> bool:
        return self.violation is None

    def unwrap(self) -> Estimate:
        """Return the estimate or raise the violation as a ValidationError."""
        if self.violation is not None:
            raise self.violation.to_error()
        return self.estimate


@dataclass
class _PricedLine:
    line: LineItem
    total_cost: float
    target_sell: float


# =============================================================================
# Input Helpers
# =============================================================================


def _as_mapping(value: Any, label: str) -> Mapping[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if isinstance(value, Mapping):
        return value
    raise ValidationError(f"{label} must be an object", field=label)


def _as_list(value: Any, label: str) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ValidationError(f"{label} must be a list", field=label)


def _passthrough(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _resolve_catalog(catalog: CatalogInput) -> Dict[str, CatalogItem]:
    items = list(catalog.values()) if isinstance(catalog, Mapping) else catalog
    return {item.sku: item for item in normalize_catalog(items)}


def _resolve_config(config: ConfigInput) -> EstimatorConfig:
    if isinstance(config, EstimatorConfig):
        return config
    return normalize_estimator_config(config)


def _split_discount(percent_part: float, amount_part: float, total: float) -> Tuple[float, float]:
    """Shrink a (percent, fixed) discount pair down to ``total``.

    The percent-based portion absorbs any reduction first, then the fixed
    amount.
    """
    excess = max(0.0, percent_part + amount_part - total)
    percent_applied = max(0.0, percent_part - excess)
    excess -= percent_part - percent_applied
    amount_applied = max(0.0, amount_part - excess)
    return percent_applied, amount_applied


# =============================================================================
# Line Pricing
# =============================================================================


def _price_line(
    *,
    code: str,
    name: str,
    item_type: str,
    quantity: float,
    unit_cost: float,
    labor_hours_per_unit: float,
    taxable: bool,
    notes: str,
    features: List[str],
    config: EstimatorConfig,
    target_margin: float,
) -> _PricedLine:
    material_cost = unit_cost * quantity
    labor_hours = labor_hours_per_unit * quantity
    labor_cost = labor_hours * config.labor_rate_per_hour
    labor_burden_cost = labor_cost * config.labor_burden_rate
    direct_cost = material_cost + labor_cost + labor_burden_cost
    overhead_cost = direct_cost * config.overhead_rate
    contingency_cost = direct_cost * config.contingency_rate
    total_cost = direct_cost + overhead_cost + contingency_cost
    target_sell = total_cost / (1 - target_margin)

    line = LineItem(
        code=code,
        name=name,
        item_type=item_type,
        quantity=round_rate(quantity),
        unit_cost=round_money(unit_cost),
        labor_hours_per_unit=round_rate(labor_hours_per_unit),
        labor_hours=round_rate(labor_hours),
        taxable=taxable,
        notes=notes,
        features=list(features),
        costs=LineItemCosts(
            material_cost=round_money(material_cost),
            labor_cost=round_money(labor_cost),
            labor_burden_cost=round_money(labor_burden_cost),
            overhead_cost=round_money(overhead_cost),
            contingency_cost=round_money(contingency_cost),
            total_cost=round_money(total_cost),
            target_sell_price=round_money(target_sell),
        ),
    )
    return _PricedLine(line=line, total_cost=total_cost, target_sell=target_sell)


def _price_selection(
    selection: Any,
    index: int,
    catalog_by_sku: Dict[str, CatalogItem],
    config: EstimatorConfig,
    target_margin: float,
) -> _PricedLine:
    label = f"selections[{index}]"
    source = _as_mapping(selection, label)
    sku = as_trimmed_string(source.get("sku"), f"{label}.sku", max_length=120, allow_empty=True)
    catalog_item = catalog_by_sku.get(sku)
    if catalog_item is None:
        raise ValidationError(f"Unknown SKU in {label}: {sku}", field=f"{label}.sku")

    return _price_line(
        code=sku,
        name=catalog_item.name,
        item_type=catalog_item.item_type,
        quantity=as_positive_number(source.get("quantity"), f"{label}.quantity", default=1.0),
        unit_cost=as_non_negative_number(
            source.get("unitCostOverride"), f"{label}.unitCostOverride", default=catalog_item.unit_cost
        ),
        labor_hours_per_unit=as_non_negative_number(
            source.get("laborHoursPerUnitOverride"),
            f"{label}.laborHoursPerUnitOverride",
            default=catalog_item.default_labor_hours,
        ),
        taxable=catalog_item.taxable,
        notes=as_trimmed_string(
            source.get("notes") or None, f"{label}.notes", default=catalog_item.notes, allow_empty=True
        ),
        features=catalog_item.features,
        config=config,
        target_margin=target_margin,
    )


def _price_manual_item(
    item: Any,
    index: int,
    config: EstimatorConfig,
    target_margin: float,
) -> _PricedLine:
    label = f"manual_items[{index}]"
    source = _as_mapping(item, label)
    code = as_trimmed_string(source.get("code") or None, f"{label}.code", max_length=120, allow_empty=True)
    item_type = as_trimmed_string(
        source.get("itemType") or None, f"{label}.itemType", max_length=40, allow_empty=True
    )

    return _price_line(
        code=code or f"manual-{index + 1}",
        name=as_trimmed_string(source.get("name"), f"{label}.name", max_length=240, allow_empty=True),
        item_type=(item_type or "service").lower(),
        quantity=as_positive_number(source.get("quantity"), f"{label}.quantity", default=1.0),
        unit_cost=as_non_negative_number(source.get("unitCost"), f"{label}.unitCost"),
        labor_hours_per_unit=as_non_negative_number(
            source.get("laborHoursPerUnit"), f"{label}.laborHoursPerUnit"
        ),
        taxable=as_boolean(source.get("taxable"), default=True),
        notes=as_trimmed_string(source.get("notes"), f"{label}.notes", allow_empty=True),
        features=normalize_features(source.get("features")),
        config=config,
        target_margin=target_margin,
    )


# =============================================================================
# Public API
# =============================================================================


def evaluate_estimate(
    config: ConfigInput,
    catalog: CatalogInput,
    selections: Optional[Sequence[Any]] = None,
    manual_items: Optional[Sequence[Any]] = None,
    customer: Optional[Mapping[str, Any]] = None,
    project: Optional[Mapping[str, Any]] = None,
    adjustments: Optional[Mapping[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
) -> EstimateResult:
    """Price an estimate, reporting a margin veto as a value.

    Args:
        config: EstimatorConfig or partial config mapping (merged over defaults).
        catalog: Catalog snapshot (list of items or mapping keyed by sku).
        selections: Catalog selections ({sku, quantity, unitCostOverride,
            laborHoursPerUnitOverride, notes}).
        manual_items: Ad-hoc lines ({code, name, itemType, quantity, unitCost,
            laborHoursPerUnit, taxable, notes, features}).
        customer: Pass-through customer blob.
        project: Pass-through project blob.
        adjustments: Discounts, overrides and guardrail switches.
        now: Clock override for generated timestamps.

    Returns:
        EstimateResult with either the estimate or a GuardrailViolation.

    Raises:
        ValidationError: On malformed input or an unknown SKU.
    """
    resolved_config = _resolve_config(config)
    catalog_by_sku = _resolve_catalog(catalog)
    selection_list = _as_list(selections, "selections")
    manual_list = _as_list(manual_items, "manual_items")
    if not selection_list and not manual_list:
        raise ValidationError("At least one selection or manual item is required")

    adj = _as_mapping(adjustments, "adjustments") if adjustments is not None else {}

    target_margin = normalize_rate(
        adj.get("targetGrossMarginOverride"),
        "targetGrossMargin",
        default=resolved_config.target_gross_margin,
        max_value=0.95,
    )
    minimum_margin = normalize_rate(
        adj.get("minimumGrossMarginOverride"),
        "minimumGrossMargin",
        default=resolved_config.minimum_gross_margin,
        max_value=0.95,
    )
    tax_rate = normalize_rate(
        adj.get("taxRate"), "taxRate", default=resolved_config.default_tax_rate, max_value=1.0
    )
    discount_percent = normalize_rate(adj.get("discountPercent"), "discountPercent", default=0.0, max_value=1.0)
    discount_amount = as_non_negative_number(adj.get("discountAmount"), "discountAmount", default=0.0)
    permit_fee = as_non_negative_number(
        adj.get("permitFee"), "permitFee", default=resolved_config.default_permit_fee
    )
    trip_charge = as_non_negative_number(
        adj.get("tripCharge"), "tripCharge", default=resolved_config.default_trip_charge
    )
    auto_raise = adj.get("autoRaiseToMinimumGrossMargin") is True
    allow_override = adj.get("allowMarginOverride") is True

    priced: List[_PricedLine] = []
    for index, selection in enumerate(selection_list):
        priced.append(_price_selection(selection, index, catalog_by_sku, resolved_config, target_margin))
    for index, item in enumerate(manual_list):
        priced.append(_price_manual_item(item, index, resolved_config, target_margin))

    # Aggregate cost and recommended price
    total_cost = sum(p.total_cost for p in priced) + permit_fee + trip_charge
    recommended_subtotal = total_cost / (1 - target_margin)

    # Discounts never exceed the subtotal
    percent_part = recommended_subtotal * discount_percent
    discount_total = min(recommended_subtotal, percent_part + discount_amount)
    percent_part, amount_part = _split_discount(percent_part, discount_amount, discount_total)
    subtotal_after_discount = recommended_subtotal - discount_total

    # Guardrail
    minimum_allowed_subtotal = total_cost / (1 - minimum_margin)
    adjusted_to_minimum = False
    if subtotal_after_discount < minimum_allowed_subtotal and auto_raise:
        subtotal_after_discount = minimum_allowed_subtotal
        discount_total = max(0.0, recommended_subtotal - subtotal_after_discount)
        percent_part, amount_part = _split_discount(percent_part, amount_part, discount_total)
        adjusted_to_minimum = True
    below_minimum = subtotal_after_discount < minimum_allowed_subtotal - GUARDRAIL_TOLERANCE

    gross_profit = subtotal_after_discount - total_cost
    achieved_margin = 0.0 if subtotal_after_discount <= 0 else gross_profit / subtotal_after_discount

    if below_minimum and resolved_config.enforce_minimum_gross_margin and not allow_override:
        violation = GuardrailViolation(
            minimum_allowed_subtotal=round_money(minimum_allowed_subtotal),
            achieved_gross_margin=round_rate(achieved_margin),
            minimum_gross_margin_target=round_rate(minimum_margin),
            target_gross_margin=round_rate(target_margin),
        )
        logger.warning("margin_guardrail_violation", **violation.details())
        return EstimateResult(violation=violation)

    # Tax follows the taxable share of target-sell value
    sell_total = sum(p.target_sell for p in priced)
    taxable_sell = sum(p.target_sell for p in priced if p.line.taxable)
    taxable_ratio = taxable_sell / sell_total if sell_total > 0 else 1.0
    taxable_subtotal = subtotal_after_discount * taxable_ratio
    tax_total = taxable_subtotal * tax_rate
    grand_total = round_money(round_money(subtotal_after_discount) + round_money(tax_total))

    alerts: List[str] = []
    if round_rate(achieved_margin) < round_rate(target_margin):
        alerts.append(ALERT_BELOW_TARGET)
    if below_minimum:
        alerts.append(ALERT_BELOW_MINIMUM)
    if adjusted_to_minimum:
        alerts.append(ALERT_AUTO_RAISED)

    generated = now or datetime.now(timezone.utc)
    expires = generated + timedelta(days=resolved_config.estimate_expiration_days)
    estimate_id = f"est_{uuid4()}"
    customer_blob = _passthrough(customer)

    estimate = Estimate(
        estimate_id=estimate_id,
        generated_at=_iso(generated),
        expires_at=_iso(expires),
        currency=resolved_config.currency,
        customer=customer_blob,
        project=_passthrough(project),
        assumptions=EstimateAssumptions(
            labor_rate_per_hour=round_money(resolved_config.labor_rate_per_hour),
            labor_burden_rate=round_rate(resolved_config.labor_burden_rate),
            overhead_rate=round_rate(resolved_config.overhead_rate),
            contingency_rate=round_rate(resolved_config.contingency_rate),
            target_gross_margin=round_rate(target_margin),
            minimum_gross_margin=round_rate(minimum_margin),
            enforce_minimum_gross_margin=resolved_config.enforce_minimum_gross_margin,
            default_tax_rate=round_rate(tax_rate),
            payment_terms=resolved_config.payment_terms,
        ),
        line_items=[p.line for p in priced],
        additional_costs=AdditionalCosts(
            permit_fee=round_money(permit_fee),
            trip_charge=round_money(trip_charge),
        ),
        totals=EstimateTotals(
            direct_cost_with_overhead=round_money(total_cost),
            recommended_subtotal=round_money(recommended_subtotal),
            discount_total=round_money(discount_total),
            discount_from_percent=round_money(percent_part),
            discount_from_amount=round_money(amount_part),
            subtotal_after_discount=round_money(subtotal_after_discount),
            minimum_allowed_subtotal=round_money(minimum_allowed_subtotal),
            taxable_subtotal=round_money(taxable_subtotal),
            tax_rate=round_rate(tax_rate),
            tax_total=round_money(tax_total),
            grand_total=grand_total,
            gross_profit=round_money(gross_profit),
            achieved_gross_margin=round_rate(achieved_margin),
            minimum_gross_margin_target=round_rate(minimum_margin),
        ),
        alerts=alerts,
        guardrails=EstimateGuardrails(
            auto_raise_to_minimum_gross_margin=auto_raise,
            adjusted_to_minimum_gross_margin=adjusted_to_minimum,
            below_minimum_gross_margin=below_minimum,
            allow_margin_override=allow_override,
        ),
        crm_payload=CrmSummary(
            estimate_id=estimate_id,
            customer_name=str(customer_blob.get("name") or ""),
            subtotal=round_money(subtotal_after_discount),
            tax=round_money(tax_total),
            total=grand_total,
            expires_at=_iso(expires),
        ),
    )

    logger.info(
        "estimate_computed",
        estimate_id=estimate_id,
        line_count=len(priced),
        grand_total=grand_total,
        achieved_gross_margin=estimate.totals.achieved_gross_margin,
        alerts=len(alerts),
    )
    return EstimateResult(estimate=estimate)


def compute_estimate(
    config: ConfigInput,
    catalog: CatalogInput,
    selections: Optional[Sequence[Any]] = None,
    manual_items: Optional[Sequence[Any]] = None,
    customer: Optional[Mapping[str, Any]] = None,
    project: Optional[Mapping[str, Any]] = None,
    adjustments: Optional[Mapping[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
) -> Estimate:
    """Price an estimate; a margin veto raises.

    Same arguments as :func:`evaluate_estimate`.

    Raises:
        ValidationError: On malformed input, an unknown SKU, or a guardrail
            violation (code MARGIN_GUARDRAIL_VIOLATION, numeric details).
    """
    return evaluate_estimate(
        config,
        catalog,
        selections,
        manual_items,
        customer,
        project,
        adjustments,
        now=now,
    ).unwrap()


def build_estimate(request: Mapping[str, Any], *, now: Optional[datetime] = None) -> Estimate:
    """Price a dict-shaped estimate request.

    Keys: config, catalog, selections, manual_items, customer, project,
    adjustments.
    """
    source = _as_mapping(request, "request")
    manual_items = source.get("manual_items")
    if manual_items is None:
        manual_items = source.get("manualItems")
    return compute_estimate(
        source.get("config"),
        source.get("catalog"),
        source.get("selections"),
        manual_items,
        source.get("customer"),
        source.get("project"),
        source.get("adjustments"),
        now=now,
    )


def _iso(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a Z suffix."""
    value = value.astimezone(timezone.utc) if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
