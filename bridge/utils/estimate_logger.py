"""Estimate Console Logger.

Prints formatted banners for estimates and changeout plans so CLI runs
are easy to scan, and mirrors each banner as a structlog event.
"""

import structlog
from typing import Any, Dict, List

from config.errors import EstimatorError

logger = structlog.get_logger()

BANNER_WIDTH = 80
ESTIMATE_BANNER_CHAR = "═"
PLAN_BANNER_CHAR = "─"
ERROR_BANNER_CHAR = "!"


def _create_banner(char: str, text: str, width: int = BANNER_WIDTH) -> str:
    """Create a centered banner with given character."""
    text_with_spaces = f" {text} "
    padding = (width - len(text_with_spaces)) // 2
    return char * padding + text_with_spaces + char * (width - padding - len(text_with_spaces))


def _print_block(char: str, title: str, rows: List[str]) -> None:
    print("\n")
    print(char * BANNER_WIDTH)
    print(_create_banner(char, title))
    print(char * BANNER_WIDTH)
    for row in rows:
        print(row)
    print(char * BANNER_WIDTH)
    print("\n")


def log_estimate_summary(estimate: Dict[str, Any]) -> None:
    """Log a priced estimate (its ``to_dict()`` form) with totals and alerts."""
    totals = estimate.get("totals") or {}
    alerts = estimate.get("alerts") or []
    currency = estimate.get("currency") or "USD"

    rows = [
        f"║ Estimate ID   : {estimate.get('estimate_id')}",
        f"║ Expires At    : {estimate.get('expires_at')}",
        f"║ Line Items    : {len(estimate.get('line_items') or [])}",
        f"║ Subtotal      : {totals.get('subtotalAfterDiscount', 0):,.2f} {currency}",
        f"║ Tax           : {totals.get('taxTotal', 0):,.2f} {currency}",
        f"║ Grand Total   : {totals.get('grandTotal', 0):,.2f} {currency}",
        f"║ Gross Margin  : {totals.get('achievedGrossMargin', 0):.2%}",
    ]
    rows.extend(f"║ ALERT         : {alert}" for alert in alerts)
    _print_block(ESTIMATE_BANNER_CHAR, "✓ ESTIMATE COMPUTED", rows)

    logger.info(
        "estimate_summary_logged",
        estimate_id=estimate.get("estimate_id"),
        grand_total=totals.get("grandTotal"),
        alerts=len(alerts),
    )


def log_changeout_plan(plan: Dict[str, Any]) -> None:
    """Log a changeout plan (its ``to_dict()`` form): lane, risks, questions."""
    rows = [
        f"║ Lane          : {plan.get('lane')}",
        f"║ Confidence    : {plan.get('confidence_score')}",
        f"║ Options       : {len(plan.get('recommended_options') or [])}",
        f"║ Risks         : {', '.join(flag['code'] for flag in plan.get('risk_flags') or []) or 'None'}",
        f"║ Next Step     : {plan.get('next_step')}",
    ]
    rows.extend(f"║ QUESTION      : {question}" for question in plan.get("follow_up_questions") or [])
    _print_block(PLAN_BANNER_CHAR, f"▶ CHANGEOUT PLAN: {str(plan.get('lane')).upper()}", rows)

    logger.info(
        "changeout_plan_logged",
        lane=plan.get("lane"),
        confidence=plan.get("confidence_score"),
    )


def log_estimate_error(error: EstimatorError) -> None:
    """Log an estimator error with its code and details."""
    rows = [
        f"║ Code          : {error.code}",
        f"║ Message       : {error.message}",
    ]
    rows.extend(f"║ {key:<14}: {value}" for key, value in (error.details or {}).items())
    _print_block(ERROR_BANNER_CHAR, "✗ ESTIMATE FAILED", rows)

    logger.error(
        "estimate_error_logged",
        code=error.code,
        error=error.message,
    )
