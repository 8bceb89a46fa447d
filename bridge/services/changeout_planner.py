"""
Changeout Planner.

Rule-based classifier for residential/light-commercial HVAC changeout
intakes. Given a business profile (config + catalog) and an intake, it
decides which workflow lane the job belongs in, ranks equipment options,
resolves complexity adders and, when everything is known, prices a
preview estimate through the estimate engine.

The planner is deterministic; all tunable behavior lives in
``services.changeout_rules``.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from config.settings import settings
from models.catalog import CatalogItem
from models.changeout import (
    AdderResolution,
    AdderSource,
    ChangeoutLane,
    ChangeoutPlan,
    EquipmentOption,
    ProfitTargets,
    RiskFlag,
    VendorQuoteChecklist,
)
from models.estimate import ManualItem
from services.changeout_rules import (
    COMMERCIAL_RISK,
    DEFAULT_PRIMARY_BRANDS,
    MANUAL_REVIEW_RISKS,
    MISSING_FIELD_QUESTIONS,
    NEXT_STEP_BY_LANE,
    OPTION_SCORE_BRAND,
    OPTION_SCORE_NO_VENDOR_QUOTE,
    OPTION_SCORE_PHASE,
    OPTION_SCORE_SYSTEM_TYPE,
    OPTION_SCORE_TONNAGE,
    RISK_ADDER_RULES,
    RISK_QUESTIONS,
    THREE_PHASE_RISK,
    TONNAGE_TOLERANCE,
    VENDOR_CHECKLIST_BRAND_LINE,
    VENDOR_CHECKLIST_FIXED_LINES,
    VENDOR_PRICING_QUESTION,
    canonical_phase,
    canonical_system_type,
    catalog_item_to_adder,
    compute_confidence,
    find_catalog_adder,
    infer_brand,
    infer_system_type,
    normalize_list,
    normalize_lower,
    normalize_number,
    normalize_text,
    parse_tonnage,
    tonnage_matches,
)
from services.estimate_engine import build_estimate
from validators.domain_normalizer import as_boolean, normalize_catalog, normalize_estimator_config

logger = structlog.get_logger(__name__)

MAX_OPTION_LIMIT = 20


class _Request:
    """Canonical view of the requested equipment."""

    def __init__(self, intake: Mapping[str, Any]):
        self.tonnage = normalize_number(intake.get("tonnage"))
        self.system_type = canonical_system_type(intake.get("systemType"))
        self.phase = canonical_phase(intake.get("phase") or "single")


# =============================================================================
# Helpers
# =============================================================================


def _dedupe(values: Sequence[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _normalize_limit(limit: Any) -> int:
    if limit in (None, "", 0):
        limit = settings.changeout_default_limit
    try:
        parsed = int(float(str(limit).strip()))
    except (TypeError, ValueError, OverflowError):
        parsed = 0
    if parsed == 0:
        parsed = settings.changeout_default_limit
    return max(1, min(MAX_OPTION_LIMIT, parsed))


def _candidate_brands(intake: Mapping[str, Any]) -> Tuple[List[str], List[str]]:
    """Return (requested brands, candidate brands)."""
    requested = _dedupe(
        normalize_list(intake.get("requestedBrand"))
        + normalize_list(intake.get("requestedBrands"))
        + normalize_list(intake.get("alternateBrands"))
    )
    if requested:
        return requested, requested
    return requested, normalize_list(intake.get("primaryBrands")) + DEFAULT_PRIMARY_BRANDS


def summarize_option(item: CatalogItem) -> EquipmentOption:
    """Summarize an equipment item, inferring missing facts from its name."""
    attrs = item.attributes
    system_type = normalize_text(attrs.system_type) or infer_system_type(item.name)
    tonnage = attrs.tonnage if attrs.tonnage is not None else parse_tonnage(item.name)
    return EquipmentOption(
        sku=item.sku,
        name=item.name,
        item_type=item.item_type,
        brand=normalize_text(attrs.brand) or infer_brand(item.name),
        tonnage=tonnage,
        seer2=attrs.seer2,
        system_type=system_type,
        system_type_canonical=canonical_system_type(system_type),
        phase=canonical_phase(attrs.phase),
        vendor_contact=normalize_text(attrs.vendor_contact),
        vendor_quote_required=bool(attrs.vendor_quote_required),
        unit_cost=item.unit_cost,
        default_labor_hours=item.default_labor_hours,
        features=list(item.features),
        notes=item.notes,
    )


def _is_compatible(option: EquipmentOption, request: _Request, brands: Sequence[str]) -> bool:
    """An option is excluded only when a known fact contradicts the request."""
    if brands and option.brand:
        wanted = {brand.lower() for brand in brands}
        if option.brand.lower() not in wanted:
            return False
    if (
        request.tonnage is not None
        and option.tonnage is not None
        and abs(option.tonnage - request.tonnage) > TONNAGE_TOLERANCE
    ):
        return False
    if request.system_type and option.system_type_canonical and option.system_type_canonical != request.system_type:
        return False
    if request.phase and option.phase and option.phase != request.phase:
        return False
    return True


def score_option(option: EquipmentOption, request: _Request, brands: Sequence[str]) -> int:
    """Ranking score for a compatible option."""
    score = 0
    if brands and option.brand.lower() in {brand.lower() for brand in brands}:
        score += OPTION_SCORE_BRAND
    if tonnage_matches(request.tonnage, option.tonnage):
        score += OPTION_SCORE_TONNAGE
    if request.system_type and option.system_type_canonical == request.system_type:
        score += OPTION_SCORE_SYSTEM_TYPE
    if request.phase and option.phase == request.phase:
        score += OPTION_SCORE_PHASE
    if not option.vendor_quote_required:
        score += OPTION_SCORE_NO_VENDOR_QUOTE
    return score


def _risk_flags(intake: Mapping[str, Any], conditions: Mapping[str, Any]) -> List[RiskFlag]:
    flags: List[RiskFlag] = []
    if normalize_lower(intake.get("propertyType")) == "commercial":
        flags.append(RiskFlag(code=COMMERCIAL_RISK[0], label=COMMERCIAL_RISK[1]))
    if canonical_phase(intake.get("phase")) == "three":
        flags.append(RiskFlag(code=THREE_PHASE_RISK[0], label=THREE_PHASE_RISK[1]))
    for rule in RISK_ADDER_RULES:
        if as_boolean(conditions.get(rule.condition_key)):
            flags.append(RiskFlag(code=rule.code, label=rule.label))
    return flags


def _complexity_adders(
    conditions: Mapping[str, Any],
    catalog: Sequence[CatalogItem],
) -> Tuple[List[ManualItem], List[AdderResolution]]:
    adders: List[ManualItem] = []
    resolution: List[AdderResolution] = []
    for rule in RISK_ADDER_RULES:
        if not as_boolean(conditions.get(rule.condition_key)):
            continue
        match = find_catalog_adder(catalog, rule)
        if match is not None:
            adders.append(catalog_item_to_adder(match))
            resolution.append(
                AdderResolution(risk=rule.code, source=AdderSource.CATALOG, sku=match.sku, name=match.name)
            )
        else:
            adders.append(rule.fallback)
            resolution.append(
                AdderResolution(
                    risk=rule.code,
                    source=AdderSource.FALLBACK,
                    sku=rule.fallback.code,
                    name=rule.fallback.name,
                )
            )
    return adders, resolution


def _choose_lane(
    intake: Mapping[str, Any],
    missing_fields: Sequence[str],
    needs_manual_review: bool,
    selected: Optional[EquipmentOption],
    recommended: Sequence[EquipmentOption],
) -> ChangeoutLane:
    if missing_fields:
        return ChangeoutLane.NEEDS_QUESTIONS
    if needs_manual_review:
        return ChangeoutLane.MANUAL_REVIEW
    if selected is not None:
        pricing_known = intake.get("pricingKnown") is not False
        if not pricing_known or selected.vendor_quote_required:
            return ChangeoutLane.AWAITING_VENDOR_QUOTE
        return ChangeoutLane.AUTO_READY
    if recommended:
        return ChangeoutLane.NEEDS_SELECTION
    return ChangeoutLane.AWAITING_VENDOR_QUOTE


def _follow_up_questions(
    missing_fields: Sequence[str],
    flags: Sequence[RiskFlag],
    lane: ChangeoutLane,
    brands: Sequence[str],
) -> List[str]:
    questions = [MISSING_FIELD_QUESTIONS[field] for field in missing_fields if field in MISSING_FIELD_QUESTIONS]
    codes = {flag.code for flag in flags}
    questions.extend(question for code, question in RISK_QUESTIONS if code in codes)
    if lane == ChangeoutLane.AWAITING_VENDOR_QUOTE and brands:
        questions.append(VENDOR_PRICING_QUESTION.format(brands=", ".join(brands)))
    return _dedupe(questions)


def _vendor_checklist(brands: Sequence[str], recommended: Sequence[EquipmentOption]) -> VendorQuoteChecklist:
    contacts = _dedupe([option.vendor_contact for option in recommended if option.vendor_contact])
    checklist = [VENDOR_CHECKLIST_BRAND_LINE.format(brand=brand) for brand in brands]
    checklist.extend(VENDOR_CHECKLIST_FIXED_LINES)
    return VendorQuoteChecklist(contacts=contacts, checklist=checklist)


def _format_tons(value: Optional[float]) -> str:
    if not value:
        return ""
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def _draft_request(
    selected: EquipmentOption,
    request: _Request,
    adders: Sequence[ManualItem],
    intake: Mapping[str, Any],
    customer: Mapping[str, Any],
    project: Mapping[str, Any],
) -> Dict[str, Any]:
    summary = normalize_text(project.get("summary"))
    if not summary:
        tons = _format_tons(selected.tonnage) or _format_tons(request.tonnage)
        summary = " ".join(f"{tons} Ton {selected.brand} {selected.system_type}".split())
    return {
        "selections": [{"sku": selected.sku, "quantity": 1}],
        "manual_items": [adder.to_dict() for adder in adders],
        "customer": dict(customer),
        "project": {**project, "summary": summary},
        "adjustments": {
            "permitFee": normalize_number(intake.get("permitFee")),
            "tripCharge": normalize_number(intake.get("tripCharge")),
        },
    }


# =============================================================================
# Public API
# =============================================================================


def build_changeout_plan(
    profile: Optional[Mapping[str, Any]],
    intake: Optional[Mapping[str, Any]],
    customer: Optional[Mapping[str, Any]] = None,
    project: Optional[Mapping[str, Any]] = None,
    limit: Any = None,
) -> ChangeoutPlan:
    """
    Classify a changeout intake and, when possible, price a preview.

    Args:
        profile: Business profile with ``config`` and ``catalog``
        intake: Changeout intake (brands, tonnage, system type, phase,
            property type, selected SKU, install conditions, fees)
        customer: Pass-through customer blob for the preview
        project: Pass-through project blob for the preview
        limit: Maximum recommended options, clamped to [1, 20]

    Returns:
        ChangeoutPlan

    Raises:
        ValidationError: On an invalid profile, or when pricing the
            preview fails (including a margin guardrail veto)
    """
    profile = profile or {}
    intake = intake or {}
    customer = customer or {}
    project = project or {}

    config = normalize_estimator_config(profile.get("config"))
    catalog = normalize_catalog(profile.get("catalog"))
    conditions = intake.get("installConditions") or {}
    option_limit = _normalize_limit(limit)

    requested_brands, brands = _candidate_brands(intake)
    request = _Request(intake)
    selected_sku = normalize_text(intake.get("selectedEquipmentSku") or intake.get("selected_equipment_sku"))

    equipment = [summarize_option(item) for item in catalog if item.item_type == "equipment"]
    compatible = [option for option in equipment if _is_compatible(option, request, brands)]
    # sorted() is stable, so equal scores keep catalog order
    recommended = sorted(compatible, key=lambda option: score_option(option, request, brands), reverse=True)
    recommended = recommended[:option_limit]

    selected = None
    if selected_sku:
        selected = next((option for option in recommended if option.sku == selected_sku), None) or next(
            (option for option in equipment if option.sku == selected_sku), None
        )

    missing_fields = []
    if request.tonnage is None:
        missing_fields.append("tonnage")
    if not request.system_type:
        missing_fields.append("systemType")
    if not request.phase:
        missing_fields.append("phase")

    flags = _risk_flags(intake, conditions)
    needs_manual_review = any(flag.code in MANUAL_REVIEW_RISKS for flag in flags)
    adders, resolution = _complexity_adders(conditions, catalog)
    lane = _choose_lane(intake, missing_fields, needs_manual_review, selected, recommended)

    draft = None
    preview = None
    if lane == ChangeoutLane.AUTO_READY and selected is not None:
        draft = _draft_request(selected, request, adders, intake, customer, project)
        preview = build_estimate({"config": config, "catalog": catalog, **draft})

    plan = ChangeoutPlan(
        lane=lane,
        confidence_score=compute_confidence(
            lane,
            len(missing_fields),
            bool(recommended),
            selected is not None,
            needs_manual_review,
        ),
        risk_flags=flags,
        missing_fields=missing_fields,
        follow_up_questions=_follow_up_questions(missing_fields, flags, lane, brands),
        recommended_options=recommended,
        complexity_adders=adders,
        complexity_adders_resolution=resolution,
        vendor_quote=_vendor_checklist(brands, recommended),
        profit_targets=ProfitTargets(
            target_gross_margin=config.target_gross_margin,
            minimum_gross_margin=config.minimum_gross_margin,
            enforce_minimum_gross_margin=config.enforce_minimum_gross_margin,
        ),
        draft_estimate_request=draft,
        estimate_preview=preview,
        next_step=NEXT_STEP_BY_LANE[lane.value],
    )

    logger.info(
        "changeout_plan_built",
        lane=lane.value,
        confidence=plan.confidence_score,
        requested_brands=requested_brands,
        recommended=len(recommended),
        risks=[flag.code for flag in flags],
    )
    return plan
