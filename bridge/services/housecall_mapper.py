"""
Housecall Pro mapper.

Turns a priced estimate (its external JSON shape) into Housecall Pro
estimate payloads and export requests. Nothing here talks to the network;
callers send the returned ``{method, path, payload}`` with their own client.
"""

import re
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import quote

import structlog

from config.errors import ValidationError
from config.settings import settings
from models.estimate import Estimate
from services.estimate_engine import round_money as round_cents

logger = structlog.get_logger(__name__)

PAYLOAD_SOURCE = "hvac-estimator-bridge"

DEFAULT_OPTION_NAME = "HVAC Estimate"
DEFAULT_MESSAGE = "HVAC estimate from pricing agent"

# Export mode -> default HTTP method
EXPORT_MODES: Dict[str, str] = {
    "create_estimate": "POST",
    "add_to_job": "POST",
    "update_estimate": "PATCH",
    "add_option_note": "POST",
}

_TEMPLATE_KEY = re.compile(r"\{([a-zA-Z0-9_]+)\}")

EstimateInput = Union[Estimate, Mapping[str, Any]]


# =============================================================================
# Helpers
# =============================================================================


def round_money(value: Any) -> float:
    return round_cents(float(value or 0))


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first(source: Mapping[str, Any], *keys: str) -> str:
    """First non-blank value among ``keys``."""
    for key in keys:
        value = _text(source.get(key))
        if value:
            return value
    return ""


def compact(value: Any) -> Any:
    """Drop None and blank-string entries from nested dicts."""
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if item is None or (isinstance(item, str) and not item.strip()):
                continue
            result[key] = compact(item)
        return result
    if isinstance(value, list):
        return [compact(item) for item in value]
    return value


def _as_estimate_dict(estimate: Any) -> Dict[str, Any]:
    if isinstance(estimate, Estimate):
        return estimate.to_dict()
    if isinstance(estimate, Mapping):
        return dict(estimate)
    raise ValidationError("estimate is required", field="estimate")


def _describe_line(line: Mapping[str, Any]) -> str:
    parts = []
    if line.get("code"):
        parts.append(f"Code: {line['code']}")
    if line.get("notes"):
        parts.append(str(line["notes"]))
    features = line.get("features") or []
    if features:
        parts.append(f"Features: {', '.join(features)}")
    return "\n".join(parts)


def to_housecall_line_item(line: Mapping[str, Any], index: int) -> Dict[str, Any]:
    """Map one estimate line to a Housecall line item priced at target sell."""
    quantity = float(line.get("quantity") or 1)
    quantity = quantity if quantity > 0 else 1.0
    costs = line.get("costs") or {}
    return compact({
        "name": line.get("name") or f"Line item {index + 1}",
        "description": _describe_line(line),
        "quantity": quantity,
        "unit_price": round_money(float(costs.get("targetSellPrice") or 0) / quantity),
        "taxable": line.get("taxable") is not False,
        "metadata": {
            "source_item_type": line.get("itemType") or "",
            "source_cost_total": round_money(costs.get("totalCost")),
            "source_labor_hours": float(line.get("laborHours") or 0),
        },
    })


def _customer_fields(customer: Mapping[str, Any]) -> Dict[str, Any]:
    first_name = _first(customer, "first_name", "firstName")
    last_name = _first(customer, "last_name", "lastName")
    full_name = _text(customer.get("name"))
    if (not first_name or not last_name) and full_name:
        parts = full_name.split()
        first_name = first_name or parts[0]
        last_name = last_name or " ".join(parts[1:])
    return compact({
        "id": _first(customer, "housecall_customer_id", "housecallCustomerId", "customer_id", "customerId"),
        "first_name": first_name,
        "last_name": last_name,
        "email": customer.get("email"),
        "phone_number": _first(customer, "phone", "phone_number"),
        "company": customer.get("company"),
        "address": customer.get("address"),
    })


def _housecall_context(project: Mapping[str, Any], options: Mapping[str, Any]) -> Dict[str, str]:
    """Housecall ids from options, falling back to the estimate's project."""
    return {
        "job_id": _first(options, "jobId", "job_id") or _first(project, "housecall_job_id", "housecallJobId"),
        "estimate_id": _first(options, "estimateId", "estimate_id")
        or _first(project, "housecall_estimate_id", "housecallEstimateId"),
        "estimate_option_id": _first(options, "estimateOptionId", "estimate_option_id")
        or _first(project, "housecall_estimate_option_id", "housecallEstimateOptionId"),
        "appointment_id": _first(options, "appointmentId", "appointment_id")
        or _first(project, "housecall_appointment_id", "housecallAppointmentId"),
    }


def _infer_mode(options: Mapping[str, Any], context: Mapping[str, str]) -> str:
    requested = _text(options.get("mode")).lower()
    if requested in EXPORT_MODES:
        return requested
    if context["estimate_option_id"] and context["estimate_id"]:
        return "add_option_note"
    if context["estimate_id"]:
        return "update_estimate"
    if context["job_id"]:
        return "add_to_job"
    return "create_estimate"


def resolve_path_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``{key}`` placeholders with URL-encoded values.

    Raises:
        ValidationError: If the template is blank or a key has no value.
    """
    raw = _text(template)
    if not raw:
        raise ValidationError("Housecall endpoint template is required", field="path_template")

    def substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        value = _text(values.get(key))
        if not value:
            raise ValidationError(
                f"Missing required value for endpoint template key: {key}", field=key
            )
        return quote(value, safe="")

    return _TEMPLATE_KEY.sub(substitute, raw)


def _path_template(mode: str, options: Mapping[str, Any]) -> str:
    templates = {
        "create_estimate": (("createEstimatePath", "create_estimate_path"), settings.housecall_create_estimate_path),
        "add_to_job": (("addToJobPath", "add_to_job_path"), settings.housecall_add_to_job_path),
        "update_estimate": (("updateEstimatePath", "update_estimate_path"), settings.housecall_update_estimate_path),
        "add_option_note": (
            ("addOptionNotePath", "add_option_note_path"),
            settings.housecall_add_option_note_path,
        ),
    }
    option_keys, configured = templates[mode]
    return _first(options, *option_keys) or configured


# =============================================================================
# Public API
# =============================================================================


def build_housecall_estimate_payload(
    estimate: EstimateInput,
    options: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build a Housecall Pro estimate payload with one option.

    Args:
        estimate: Estimate model or its ``to_dict()`` form
        options: optionName, note, customerId, jobId

    Returns:
        Compacted payload dict

    Raises:
        ValidationError: If the estimate has no line items
    """
    data = _as_estimate_dict(estimate)
    options = options or {}
    lines = data.get("line_items") or []
    if not lines:
        raise ValidationError("estimate.line_items must contain at least one item", field="line_items")

    project = data.get("project") or {}
    totals = data.get("totals") or {}
    customer = _customer_fields(data.get("customer") or {})
    customer_id = _text(options.get("customerId")) or customer.get("id", "")
    draft = {key: value for key, value in customer.items() if key != "id"}

    option_name = _text(options.get("optionName")) or _text(project.get("summary")) or DEFAULT_OPTION_NAME
    message = _text(project.get("summary")) or DEFAULT_MESSAGE
    discount = round_money(totals.get("discountTotal"))

    payload = {
        "customer_id": customer_id or None,
        "customer": draft if not customer_id and draft else None,
        "job_id": _text(options.get("jobId")) or _first(project, "housecall_job_id", "housecallJobId"),
        "name": option_name,
        "note": _text(options.get("note")) or _text(project.get("notes")),
        "message": message,
        "tax_rate": float(totals.get("taxRate") or 0),
        "options": [
            {
                "name": option_name,
                "message": message,
                "line_items": [to_housecall_line_item(line, index) for index, line in enumerate(lines)],
            }
        ],
        "metadata": {
            "source": PAYLOAD_SOURCE,
            "estimate_id": data.get("estimate_id"),
            "currency": data.get("currency") or "USD",
            "grand_total": round_money(totals.get("grandTotal")),
            "achieved_margin": float(totals.get("achievedGrossMargin") or 0),
        },
    }
    if discount > 0:
        payload["discount"] = {"amount": discount, "type": "fixed"}
    return compact(payload)


def build_housecall_export_request(
    estimate: EstimateInput,
    options: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build a Housecall Pro export request for an estimate.

    The mode is taken from ``options["mode"]`` or inferred from the ids
    available in options or the estimate's project: option + estimate id ->
    add_option_note, estimate id -> update_estimate, job id -> add_to_job,
    otherwise create_estimate.

    Args:
        estimate: Estimate model or its ``to_dict()`` form
        options: mode, ids, path template overrides, endpoint, method,
            payloadOverride, plus the payload options

    Returns:
        {mode, context, method, path, path_template, payload}

    Raises:
        ValidationError: If the mode's required ids are missing or a path
            template cannot be resolved
    """
    data = _as_estimate_dict(estimate)
    options = options or {}
    context = _housecall_context(data.get("project") or {}, options)
    mode = _infer_mode(options, context)

    if mode == "add_to_job" and not context["job_id"]:
        raise ValidationError("job_id is required for Housecall mode=add_to_job", field="job_id")
    if mode == "update_estimate" and not context["estimate_id"]:
        raise ValidationError("estimate_id is required for Housecall mode=update_estimate", field="estimate_id")
    if mode == "add_option_note" and not (context["estimate_id"] and context["estimate_option_id"]):
        raise ValidationError(
            "estimate_id and estimate_option_id are required for Housecall mode=add_option_note",
            field="estimate_option_id",
        )

    override = options.get("payloadOverride")
    if isinstance(override, Mapping):
        payload = dict(override)
    elif mode == "add_option_note":
        payload = compact({
            "note": _text(options.get("note")) or _text((data.get("project") or {}).get("notes")),
            "metadata": {"source": PAYLOAD_SOURCE, "estimate_id": data.get("estimate_id")},
        })
    else:
        payload = build_housecall_estimate_payload(data, options)

    endpoint = _text(options.get("endpoint"))
    if endpoint:
        template, path = endpoint, endpoint
    else:
        template = _path_template(mode, options)
        path = resolve_path_template(template, context)

    method = (_text(options.get("method")) or EXPORT_MODES[mode]).upper()

    logger.info("housecall_export_prepared", mode=mode, method=method, path=path)
    return {
        "mode": mode,
        "context": context,
        "method": method,
        "path": path,
        "path_template": template,
        "payload": payload,
    }
