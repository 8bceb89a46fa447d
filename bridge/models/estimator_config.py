"""Estimator configuration model.

Per-business pricing policy. Values are normalized by
``validators.domain_normalizer.normalize_estimator_config``; rates are
stored as fractions (0.35, not 35).
"""

from typing import Any, Dict

from pydantic import BaseModel, Field


DEFAULT_PAYMENT_TERMS = "50% deposit due at scheduling, balance due at completion."


class EstimatorConfig(BaseModel):
    """Pricing policy for one business profile."""

    business_name: str = Field(default="HVAC Business", alias="businessName")
    currency: str = Field(default="USD", min_length=1, max_length=3)
    labor_rate_per_hour: float = Field(default=125.0, ge=0, alias="laborRatePerHour")
    labor_burden_rate: float = Field(default=0.0, ge=0, le=2, alias="laborBurdenRate")
    overhead_rate: float = Field(default=0.0, ge=0, le=2, alias="overheadRate")
    contingency_rate: float = Field(default=0.0, ge=0, le=1, alias="contingencyRate")
    target_gross_margin: float = Field(default=0.4, ge=0, le=0.95, alias="targetGrossMargin")
    minimum_gross_margin: float = Field(default=0.3, ge=0, le=0.95, alias="minimumGrossMargin")
    enforce_minimum_gross_margin: bool = Field(default=True, alias="enforceMinimumGrossMargin")
    default_tax_rate: float = Field(default=0.09, ge=0, le=1, alias="defaultTaxRate")
    default_permit_fee: float = Field(default=0.0, ge=0, alias="defaultPermitFee")
    default_trip_charge: float = Field(default=0.0, ge=0, alias="defaultTripCharge")
    estimate_expiration_days: int = Field(default=30, ge=1, alias="estimateExpirationDays")
    payment_terms: str = Field(default=DEFAULT_PAYMENT_TERMS, alias="paymentTerms")

    class Config:
        populate_by_name = True
        frozen = True

    def to_dict(self) -> Dict[str, Any]:
        """Dict with camelCase keys."""
        return self.model_dump(by_alias=True)
