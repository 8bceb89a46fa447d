"""
Price an estimate (or plan a changeout) from a JSON request file.

Usage:
  python scripts/create_estimate.py --request request.json --out estimate.json --html estimate.html
  python scripts/create_estimate.py --plan --request changeout.json --out plan.json

An estimate request carries config, catalog, selections, manual_items,
customer, project and adjustments. A changeout request carries profile,
intake, customer, project and limit.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import structlog  # noqa: E402

from config.errors import EstimatorError, ValidationError  # noqa: E402
from config.settings import settings  # noqa: E402
from services.changeout_planner import build_changeout_plan  # noqa: E402
from services.estimate_engine import build_estimate  # noqa: E402
from services.estimate_renderer import render_estimate_html  # noqa: E402
from utils.estimate_logger import (  # noqa: E402
    log_changeout_plan,
    log_estimate_error,
    log_estimate_summary,
)

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, settings.log_level.upper(), logging.INFO)
    ),
)
logger = structlog.get_logger()


def _load_request(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ValidationError(f"Could not read request file {path}: {e}", field="request")
    if not isinstance(data, dict):
        raise ValidationError("request file must contain a JSON object", field="request")
    return data


def _write_json(path: str, data: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    print(f"Wrote {path}")


def run(request_path: str, out: Optional[str], html: Optional[str], plan: bool) -> int:
    request = _load_request(request_path)

    if plan:
        result = build_changeout_plan(
            request.get("profile"),
            request.get("intake"),
            customer=request.get("customer"),
            project=request.get("project"),
            limit=request.get("limit"),
        )
        data = result.to_dict()
        log_changeout_plan(data)
        estimate = result.estimate_preview
    else:
        estimate = build_estimate(request)
        data = estimate.to_dict()
        log_estimate_summary(data)

    if out:
        _write_json(out, data)
    if html:
        if estimate is None:
            logger.warning("html_skipped_no_estimate", lane=data.get("lane"))
        else:
            business_name = None
            if plan:
                business_name = ((request.get("profile") or {}).get("config") or {}).get("businessName")
            Path(html).write_text(render_estimate_html(estimate, business_name=business_name), encoding="utf-8")
            print(f"Wrote {html}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Price an HVAC estimate or plan a changeout from JSON")
    parser.add_argument("--request", required=True, help="Path to the JSON request file")
    parser.add_argument("--out", required=False, help="Write the estimate (or plan) JSON here")
    parser.add_argument("--html", required=False, help="Write the rendered estimate HTML here")
    parser.add_argument(
        "--plan",
        action="store_true",
        help="Treat the request as a changeout intake and build a plan",
    )
    args = parser.parse_args()

    try:
        return run(args.request, args.out, args.html, args.plan)
    except EstimatorError as e:
        log_estimate_error(e)
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
