"""
Changeout rule tables.

Data-driven lookup tables and scoring functions used by the changeout
planner: risk adders with their keywords and fallback line items,
canonicalization of free-text phase/system type, canned follow-up
questions, and lane next-step text. Extend the tables rather than the
planner's control flow.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from models.catalog import CatalogItem
from models.changeout import ChangeoutLane
from models.estimate import ManualItem

DEFAULT_PRIMARY_BRANDS = ["AC Pro", "Day & Night"]

# Risk codes that send a job to an estimator instead of auto-pricing
MANUAL_REVIEW_RISKS = {
    "commercial_job",
    "three_phase_power",
    "crane_required",
    "curb_adapter_required",
}

TONNAGE_TOLERANCE = 0.01


# =============================================================================
# Risk Adders
# =============================================================================


@dataclass(frozen=True)
class RiskAdderRule:
    """An install condition, the catalog keywords for its adder, and a fallback."""

    condition_key: str
    code: str
    label: str
    keywords: Tuple[str, ...]
    fallback: ManualItem


RISK_ADDER_RULES: List[RiskAdderRule] = [
    RiskAdderRule(
        condition_key="tightAttic",
        code="tight_attic",
        label="Tight attic access",
        keywords=("tight attic", "attic access", "crawl access", "restricted attic"),
        fallback=ManualItem(
            code="ADDER-TIGHT-ATTIC",
            name="Tight attic access labor adder",
            item_type="labor",
            labor_hours_per_unit=3.5,
            taxable=False,
        ),
    ),
    RiskAdderRule(
        condition_key="craneRequired",
        code="crane_required",
        label="Crane or lift required",
        keywords=("crane", "lift", "rigging"),
        fallback=ManualItem(
            code="ADDER-CRANE",
            name="Crane / lift coordination adder",
            item_type="service",
            labor_hours_per_unit=4,
            taxable=False,
        ),
    ),
    RiskAdderRule(
        condition_key="curbAdapterRequired",
        code="curb_adapter_required",
        label="Curb adapter required",
        keywords=("curb adapter", "adapter curb", "roof curb"),
        fallback=ManualItem(
            code="ADDER-CURB-ADAPTER",
            name="Curb adapter fabrication/install adder",
            item_type="service",
            labor_hours_per_unit=2.5,
            taxable=False,
        ),
    ),
    RiskAdderRule(
        condition_key="downflowMobileHomeCoil",
        code="mobile_home_downflow",
        label="Downflow mobile-home coil configuration",
        keywords=("mobile home", "downflow", "manufactured home"),
        fallback=ManualItem(
            code="ADDER-MOBILE-DOWNFLOW",
            name="Downflow mobile-home adaptation adder",
            item_type="labor",
            labor_hours_per_unit=2,
            taxable=False,
        ),
    ),
    RiskAdderRule(
        condition_key="lineSetReplacementRequired",
        code="line_set_replacement",
        label="Line set replacement required",
        keywords=("line set", "lineset", "line-set"),
        fallback=ManualItem(
            code="ADDER-LINESET",
            name="Line-set replacement labor adder",
            item_type="labor",
            labor_hours_per_unit=2.5,
            taxable=False,
        ),
    ),
    RiskAdderRule(
        condition_key="electricalUpgrade",
        code="electrical_upgrade",
        label="Electrical upgrade likely",
        keywords=("electrical", "breaker", "disconnect", "wire", "conductor"),
        fallback=ManualItem(
            code="ADDER-ELECTRICAL",
            name="Electrical scope review adder",
            item_type="service",
            labor_hours_per_unit=1.5,
            taxable=False,
        ),
    ),
]

COMMERCIAL_RISK = ("commercial_job", "Commercial job scope")
THREE_PHASE_RISK = ("three_phase_power", "3-phase equipment / power")

# (substring, points) bonuses applied once at least one keyword hits
ADDER_KEYWORD_POINTS = 3
ADDER_CATEGORY_BONUSES: List[Tuple[str, int]] = [("adder", 3), ("install", 2)]
ADDER_SUBCATEGORY_BONUSES: List[Tuple[str, int]] = [("adder", 2)]
ADDER_LABOR_BONUS = 1


def score_adder_candidate(item: CatalogItem, keywords: Sequence[str]) -> int:
    """Score a catalog item as the adder for a risk. Zero means ineligible."""
    category = (item.attributes.source_category or "").strip().lower()
    subcategory = (item.attributes.source_subcategory or "").strip().lower()
    blob = f"{item.name.strip().lower()} {category} {subcategory}"

    hits = sum(1 for keyword in keywords if keyword.strip().lower() in blob)
    if hits == 0:
        return 0

    score = hits * ADDER_KEYWORD_POINTS
    score += sum(points for text, points in ADDER_CATEGORY_BONUSES if text in category)
    score += sum(points for text, points in ADDER_SUBCATEGORY_BONUSES if text in subcategory)
    if item.item_type == "labor":
        score += ADDER_LABOR_BONUS
    return score


def find_catalog_adder(catalog: Sequence[CatalogItem], rule: RiskAdderRule) -> Optional[CatalogItem]:
    """Best-scoring non-equipment item for a risk; the first wins on ties."""
    best: Optional[CatalogItem] = None
    best_score = 0
    for item in catalog:
        if item.item_type == "equipment":
            continue
        score = score_adder_candidate(item, rule.keywords)
        if score > best_score:
            best, best_score = item, score
    return best


def catalog_item_to_adder(item: CatalogItem) -> ManualItem:
    """Convert a matched catalog item into a one-unit manual line."""
    return ManualItem(
        code=item.sku,
        name=item.name,
        item_type="service" if item.item_type == "equipment" else item.item_type,
        quantity=1,
        unit_cost=item.unit_cost,
        labor_hours_per_unit=item.default_labor_hours,
        taxable=item.taxable,
    )


# =============================================================================
# Canonicalization
# =============================================================================


# Ordered (predicate, canonical) rules over the normalized system-type text
SYSTEM_TYPE_RULES: List[Tuple[Any, str]] = [
    (lambda t: "mini split" in t or "ductless" in t, "mini_split"),
    (lambda t: "package" in t, "package_unit"),
    (lambda t: "heat pump" in t or t == "hp", "split_heat_pump"),
    (lambda t: "gas" in t and "split" in t, "split_ac_furnace"),
    (lambda t: "air conditioner" in t or "split ac" in t or t == "ac", "split_ac"),
]

# Ordered (name substring(s), display system type) used when attributes lack one
NAME_SYSTEM_TYPE_HINTS: List[Tuple[Tuple[str, ...], str]] = [
    (("heat pump",), "Heat Pump"),
    (("mini split", "mini-split"), "Mini Split"),
    (("package",), "Package Unit"),
    (("air conditioner",), "Air Conditioner"),
]

# Ordered (name substring, brand) used when attributes lack a brand
NAME_BRAND_HINTS: List[Tuple[str, str]] = [
    ("ac pro", "AC Pro"),
    ("day & night", "Day & Night"),
]

_TONNAGE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(ton|t)\b", re.IGNORECASE)


def normalize_text(value: Any) -> str:
    """Stringify and trim; None becomes ""."""
    if value is None:
        return ""
    return str(value).strip()


def normalize_lower(value: Any) -> str:
    return normalize_text(value).lower()


def normalize_number(value: Any) -> Optional[float]:
    """Finite float or None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def normalize_list(value: Any) -> List[str]:
    """A list of non-empty strings from a scalar or a list."""
    if isinstance(value, (list, tuple)):
        return [text for text in (normalize_text(v) for v in value) if text]
    single = normalize_text(value)
    return [single] if single else []


def canonical_phase(value: Any) -> str:
    """'three', 'single', or the lower-cased text."""
    text = normalize_lower(value)
    if not text:
        return ""
    if text == "3" or "three" in text:
        return "three"
    if text == "1" or "single" in text:
        return "single"
    return text


def canonical_system_type(value: Any) -> str:
    """Map free-text system type onto a canonical snake_case name."""
    text = re.sub(r"\s+", " ", re.sub(r"[_-]+", " ", normalize_lower(value))).strip()
    if not text:
        return ""
    for predicate, canonical in SYSTEM_TYPE_RULES:
        if predicate(text):
            return canonical
    return text.replace(" ", "_")


def parse_tonnage(text: str) -> Optional[float]:
    """Pull "<n> ton" out of a product name."""
    match = _TONNAGE_PATTERN.search(normalize_text(text))
    return float(match.group(1)) if match else None


def infer_brand(name: str) -> str:
    lowered = name.lower()
    for needle, brand in NAME_BRAND_HINTS:
        if needle in lowered:
            return brand
    return ""


def infer_system_type(name: str) -> str:
    lowered = name.lower()
    for needles, system_type in NAME_SYSTEM_TYPE_HINTS:
        if any(needle in lowered for needle in needles):
            return system_type
    return ""


# =============================================================================
# Option Ranking
# =============================================================================


OPTION_SCORE_BRAND = 4
OPTION_SCORE_TONNAGE = 3
OPTION_SCORE_SYSTEM_TYPE = 3
OPTION_SCORE_PHASE = 2
OPTION_SCORE_NO_VENDOR_QUOTE = 1


def tonnage_matches(requested: Optional[float], offered: Optional[float]) -> bool:
    return requested is not None and offered is not None and abs(offered - requested) < TONNAGE_TOLERANCE


# =============================================================================
# Questions & Next Steps
# =============================================================================


MISSING_FIELD_QUESTIONS: Dict[str, str] = {
    "tonnage": "What tonnage should we quote (e.g. 3.0, 4.0, 5.0)?",
    "systemType": "Is this split heat pump, split AC furnace, package unit, or mini-split?",
    "phase": "Is this single-phase or three-phase power?",
}

# Ordered (risk code, question)
RISK_QUESTIONS: List[Tuple[str, str]] = [
    ("crane_required", "Please confirm crane size window and staging restrictions."),
    ("curb_adapter_required", "Please capture curb dimensions so we can confirm adapter requirements."),
    (
        "commercial_job",
        "For commercial scope, confirm controls sequence and final equipment availability before final pricing.",
    ),
]

VENDOR_PRICING_QUESTION = "Need current distributor pricing and stock check for {brands}."

VENDOR_CHECKLIST_BRAND_LINE = "Confirm {brand} equipment availability + net cost."
VENDOR_CHECKLIST_FIXED_LINES = [
    "Confirm lead time and warranty registration requirements.",
    "Confirm any model substitutions currently in stock.",
]

NEXT_STEP_BY_LANE: Dict[str, str] = {
    ChangeoutLane.AUTO_READY.value: "Review estimate preview and send/export.",
    ChangeoutLane.NEEDS_SELECTION.value: "Choose one recommended equipment option and re-run plan.",
    ChangeoutLane.NEEDS_QUESTIONS.value: "Answer follow-up questions to complete scope before pricing.",
    ChangeoutLane.AWAITING_VENDOR_QUOTE.value: (
        "Collect distributor pricing/stock info, then re-run plan with selected SKU."
    ),
    ChangeoutLane.MANUAL_REVIEW.value: "Route to estimator review due to complexity/commercial constraints.",
}


# =============================================================================
# Confidence
# =============================================================================


# Heuristic weights for the UI confidence signal; not a calibrated probability.
CONFIDENCE_BASE = 0.35
CONFIDENCE_COMPLETENESS = 0.2
CONFIDENCE_MISSING_FIELD_DECAY = 0.08
CONFIDENCE_HAS_OPTIONS = 0.12
CONFIDENCE_SELECTED = 0.2
CONFIDENCE_MANUAL_REVIEW = -0.2
CONFIDENCE_BY_LANE: Dict[str, float] = {
    ChangeoutLane.AWAITING_VENDOR_QUOTE.value: -0.12,
    ChangeoutLane.AUTO_READY.value: 0.1,
}
CONFIDENCE_FLOOR = 0.05
CONFIDENCE_CEILING = 0.97


def compute_confidence(
    lane: ChangeoutLane,
    missing_count: int,
    has_options: bool,
    has_selection: bool,
    needs_manual_review: bool,
) -> float:
    """Heuristic confidence in [0.05, 0.97]."""
    lane_value = lane.value if isinstance(lane, ChangeoutLane) else str(lane)
    score = CONFIDENCE_BASE
    score += max(0.0, CONFIDENCE_COMPLETENESS - missing_count * CONFIDENCE_MISSING_FIELD_DECAY)
    if has_options:
        score += CONFIDENCE_HAS_OPTIONS
    if has_selection:
        score += CONFIDENCE_SELECTED
    if needs_manual_review:
        score += CONFIDENCE_MANUAL_REVIEW
    score += CONFIDENCE_BY_LANE.get(lane_value, 0.0)
    return min(CONFIDENCE_CEILING, max(CONFIDENCE_FLOOR, round(score, 2)))
