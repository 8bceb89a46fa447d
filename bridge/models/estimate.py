"""Estimate models for the estimator.

Pydantic models for the priced estimate returned by the estimate engine.
Field aliases are the external contract read by the HTML renderer and the
Housecall mapper; renaming an alias is a breaking change.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field


# =============================================================================
# LINE ITEMS
# =============================================================================


class ManualItem(BaseModel):
    """A line item that does not come from a catalog selection.

    Used for complexity adders and ad-hoc labor/service rows.
    """

    code: str = Field(..., description="Line code")
    name: str = Field(..., description="Display name")
    item_type: str = Field(default="service", alias="itemType")
    quantity: float = Field(default=1.0, gt=0)
    unit_cost: float = Field(default=0.0, ge=0, alias="unitCost")
    labor_hours_per_unit: float = Field(default=0.0, ge=0, alias="laborHoursPerUnit")
    taxable: bool = Field(default=True)
    notes: str = Field(default="")
    features: List[str] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        frozen = True

    def to_dict(self) -> Dict[str, Any]:
        """Dict with camelCase keys, accepted as an engine manual item."""
        return self.model_dump(by_alias=True)


class LineItemCosts(BaseModel):
    """Cost breakdown for one priced line."""

    material_cost: float = Field(..., alias="materialCost")
    labor_cost: float = Field(..., alias="laborCost")
    labor_burden_cost: float = Field(..., alias="laborBurdenCost")
    overhead_cost: float = Field(..., alias="overheadCost")
    contingency_cost: float = Field(..., alias="contingencyCost")
    total_cost: float = Field(..., alias="totalCost")
    target_sell_price: float = Field(..., alias="targetSellPrice")

    class Config:
        populate_by_name = True
        frozen = True


class LineItem(BaseModel):
    """One priced estimate row. Money in cents, rates to 4 decimals."""

    code: str
    name: str
    item_type: str = Field(..., alias="itemType")
    quantity: float
    unit_cost: float = Field(..., alias="unitCost")
    labor_hours_per_unit: float = Field(..., alias="laborHoursPerUnit")
    labor_hours: float = Field(..., alias="laborHours")
    taxable: bool
    notes: str = ""
    features: List[str] = Field(default_factory=list)
    costs: LineItemCosts

    class Config:
        populate_by_name = True
        frozen = True


# =============================================================================
# AGGREGATES
# =============================================================================


class EstimateAssumptions(BaseModel):
    """Snapshot of the pricing policy actually used."""

    labor_rate_per_hour: float = Field(..., alias="laborRatePerHour")
    labor_burden_rate: float = Field(..., alias="laborBurdenRate")
    overhead_rate: float = Field(..., alias="overheadRate")
    contingency_rate: float = Field(..., alias="contingencyRate")
    target_gross_margin: float = Field(..., alias="targetGrossMargin")
    minimum_gross_margin: float = Field(..., alias="minimumGrossMargin")
    enforce_minimum_gross_margin: bool = Field(..., alias="enforceMinimumGrossMargin")
    default_tax_rate: float = Field(..., alias="defaultTaxRate")
    payment_terms: str = Field(..., alias="paymentTerms")

    class Config:
        populate_by_name = True
        frozen = True


class AdditionalCosts(BaseModel):
    """Fixed job-level costs added on top of the line costs."""

    permit_fee: float = Field(..., alias="permitFee")
    trip_charge: float = Field(..., alias="tripCharge")

    class Config:
        populate_by_name = True
        frozen = True


class EstimateTotals(BaseModel):
    """Aggregate totals.

    grandTotal = subtotalAfterDiscount + taxTotal.
    """

    direct_cost_with_overhead: float = Field(..., alias="directCostWithOverhead")
    recommended_subtotal: float = Field(..., alias="recommendedSubtotal")
    discount_total: float = Field(..., alias="discountTotal")
    discount_from_percent: float = Field(..., alias="discountFromPercent")
    discount_from_amount: float = Field(..., alias="discountFromAmount")
    subtotal_after_discount: float = Field(..., alias="subtotalAfterDiscount")
    minimum_allowed_subtotal: float = Field(..., alias="minimumAllowedSubtotal")
    taxable_subtotal: float = Field(..., alias="taxableSubtotal")
    tax_rate: float = Field(..., alias="taxRate")
    tax_total: float = Field(..., alias="taxTotal")
    grand_total: float = Field(..., alias="grandTotal")
    gross_profit: float = Field(..., alias="grossProfit")
    achieved_gross_margin: float = Field(..., alias="achievedGrossMargin")
    minimum_gross_margin_target: float = Field(..., alias="minimumGrossMarginTarget")

    class Config:
        populate_by_name = True
        frozen = True


class EstimateGuardrails(BaseModel):
    """Margin guardrail bookkeeping."""

    auto_raise_to_minimum_gross_margin: bool = Field(..., alias="autoRaiseToMinimumGrossMargin")
    adjusted_to_minimum_gross_margin: bool = Field(..., alias="adjustedToMinimumGrossMargin")
    below_minimum_gross_margin: bool = Field(..., alias="belowMinimumGrossMargin")
    allow_margin_override: bool = Field(..., alias="allowMarginOverride")

    class Config:
        populate_by_name = True
        frozen = True


class CrmSummary(BaseModel):
    """Compact summary for CRM notes."""

    estimate_id: str = Field(..., alias="estimateId")
    customer_name: str = Field(default="", alias="customerName")
    subtotal: float
    tax: float
    total: float
    expires_at: str = Field(..., alias="expiresAt")

    class Config:
        populate_by_name = True
        frozen = True


class Estimate(BaseModel):
    """Fully priced, margin-validated estimate. Immutable once returned."""

    estimate_id: str = Field(..., description="Generated identifier (est_<uuid>)")
    generated_at: str = Field(..., description="ISO-8601 UTC timestamp")
    expires_at: str = Field(..., description="generated_at + estimateExpirationDays")
    currency: str = Field(default="USD")
    customer: Dict[str, Any] = Field(default_factory=dict)
    project: Dict[str, Any] = Field(default_factory=dict)
    assumptions: EstimateAssumptions
    line_items: List[LineItem] = Field(default_factory=list)
    additional_costs: AdditionalCosts
    totals: EstimateTotals
    alerts: List[str] = Field(default_factory=list)
    guardrails: EstimateGuardrails
    crm_payload: CrmSummary

    class Config:
        populate_by_name = True
        frozen = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the external JSON contract.

        Returns:
            Dict with snake_case top-level keys and camelCase nested keys.
        """
        return self.model_dump(by_alias=True)
