"""Changeout plan models.

Output of the changeout planner. Plans are recomputed per request and
never persisted.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.estimate import Estimate, ManualItem


class ChangeoutLane(str, Enum):
    """Next workflow step for a changeout intake."""

    NEEDS_QUESTIONS = "needs_questions"
    MANUAL_REVIEW = "manual_review"
    AWAITING_VENDOR_QUOTE = "awaiting_vendor_quote"
    AUTO_READY = "auto_ready"
    NEEDS_SELECTION = "needs_selection"


class AdderSource(str, Enum):
    """Where a complexity adder came from."""

    CATALOG = "catalog"
    FALLBACK = "fallback"


class RiskFlag(BaseModel):
    """An installation or scope risk found in the intake."""

    code: str
    label: str

    class Config:
        frozen = True


class AdderResolution(BaseModel):
    """Provenance of one resolved complexity adder."""

    risk: str = Field(..., description="Risk flag code")
    source: AdderSource
    sku: str = ""
    name: str = ""

    class Config:
        use_enum_values = True
        frozen = True


class EquipmentOption(BaseModel):
    """Summary of a catalog equipment item as a changeout candidate."""

    sku: str
    name: str
    item_type: str = Field(default="equipment", alias="itemType")
    brand: str = ""
    tonnage: Optional[float] = None
    seer2: Optional[float] = None
    system_type: str = Field(default="", alias="systemType")
    system_type_canonical: str = Field(default="", alias="systemTypeCanonical")
    phase: str = ""
    vendor_contact: str = Field(default="", alias="vendorContact")
    vendor_quote_required: bool = Field(default=False, alias="vendorQuoteRequired")
    unit_cost: float = Field(default=0.0, alias="unitCost")
    default_labor_hours: float = Field(default=0.0, alias="defaultLaborHours")
    features: List[str] = Field(default_factory=list)
    notes: str = ""

    class Config:
        populate_by_name = True
        frozen = True


class VendorQuoteChecklist(BaseModel):
    """What to ask the distributor before pricing."""

    contacts: List[str] = Field(default_factory=list)
    checklist: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class ProfitTargets(BaseModel):
    """Margin policy snapshot surfaced to the front end."""

    target_gross_margin: float = Field(..., alias="targetGrossMargin")
    minimum_gross_margin: float = Field(..., alias="minimumGrossMargin")
    enforce_minimum_gross_margin: bool = Field(..., alias="enforceMinimumGrossMargin")

    class Config:
        populate_by_name = True
        frozen = True


class ChangeoutPlan(BaseModel):
    """Classifier output for a changeout intake.

    ``draft_estimate_request`` and ``estimate_preview`` are only set when the
    lane is ``auto_ready``.
    """

    lane: ChangeoutLane
    confidence_score: float = Field(..., ge=0.05, le=0.97)
    risk_flags: List[RiskFlag] = Field(default_factory=list)
    missing_fields: List[str] = Field(default_factory=list)
    follow_up_questions: List[str] = Field(default_factory=list)
    recommended_options: List[EquipmentOption] = Field(default_factory=list)
    complexity_adders: List[ManualItem] = Field(default_factory=list)
    complexity_adders_resolution: List[AdderResolution] = Field(default_factory=list)
    vendor_quote: VendorQuoteChecklist = Field(default_factory=VendorQuoteChecklist)
    profit_targets: ProfitTargets
    draft_estimate_request: Optional[Dict[str, Any]] = None
    estimate_preview: Optional[Estimate] = None
    next_step: str = ""

    class Config:
        populate_by_name = True
        use_enum_values = True
        frozen = True

    def has_risk(self, code: str) -> bool:
        """Check whether a risk flag code is present."""
        return any(flag.code == code for flag in self.risk_flags)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the external JSON contract."""
        return self.model_dump(by_alias=True)
