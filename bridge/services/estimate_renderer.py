"""
HTML rendering for priced estimates.

Pure formatting over the estimate's external JSON shape; no pricing logic
lives here.

Architecture:
- Uses Jinja2 with autoescaping for the HTML template
- Reads the aliased (camelCase) estimate dict, the same contract the
  Housecall mapper consumes
"""

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from models.estimate import Estimate

logger = structlog.get_logger(__name__)

# Template directory
TEMPLATE_DIR = Path(__file__).parent / "templates"

ESTIMATE_TEMPLATE = "estimate.html"

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "CA$",
    "EUR": "€",
    "GBP": "£",
}


def format_money(value: Any, currency: str = "USD") -> str:
    """Format an amount like ``$1,234.56`` (or ``MXN 1,234.56``)."""
    amount = float(value or 0)
    sign = "-" if amount < 0 else ""
    code = (currency or "USD").upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    body = f"{abs(amount):,.2f}"
    if symbol:
        return f"{sign}{symbol}{body}"
    return f"{sign}{code} {body}"


def format_quantity(value: Any) -> str:
    """Drop a trailing .0 from whole quantities."""
    number = float(value or 0)
    return str(int(number)) if number.is_integer() else f"{number:g}"


def _get_jinja_env() -> Environment:
    """
    Create and configure Jinja2 environment.

    Returns:
        Configured Jinja2 Environment
    """
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "xml"]),
    )
    env.filters["money"] = format_money
    env.filters["quantity"] = format_quantity
    return env


def render_estimate_html(
    estimate: Union[Estimate, Mapping[str, Any]],
    business_name: Optional[str] = None,
) -> str:
    """
    Render an estimate as a standalone HTML document.

    Args:
        estimate: Estimate model or its ``to_dict()`` form
        business_name: Heading override (defaults to "HVAC Estimate")

    Returns:
        HTML string
    """
    data: Dict[str, Any] = estimate.to_dict() if isinstance(estimate, Estimate) else dict(estimate)
    customer = data.get("customer") or {}
    project = data.get("project") or {}

    template = _get_jinja_env().get_template(ESTIMATE_TEMPLATE)
    html = template.render(
        estimate=data,
        currency=data.get("currency") or "USD",
        business_name=business_name or "HVAC Estimate",
        customer_name=customer.get("name") or "Customer",
        project_summary=project.get("summary") or "HVAC service estimate",
    )
    logger.debug("estimate_html_rendered", estimate_id=data.get("estimate_id"), size=len(html))
    return html
