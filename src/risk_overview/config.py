from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional

import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = PROJECT_ROOT / "data"
OUTPUT_DIR = DATA_DIR / "output"
FIXTURES_DIR = DATA_DIR / "fixtures"
CONFIG_DIR = PROJECT_ROOT / "config"

FEEDS_CONFIG_PATH = CONFIG_DIR / "feeds.yaml"
PROBLEM_QUEUE_PATH = OUTPUT_DIR / "risk_problem_queue.csv"
PROBLEM_PAYLOAD_PATH = OUTPUT_DIR / "risk_problems.json"

# Order matters: it is the order the board fetches and reports feeds in.
FEED_KINDS = [
    "kpi",
    "orders",
    "coldStock",
    "bottleneck",
    "roll",
    "risk",
    "capacityOpportunity",
]

DEFAULT_DECISION_BASE_URL = "http://127.0.0.1:8700"
DEFAULT_TIMEOUT_SEC = 10.0
DEFAULT_RECENT_DAYS = 30
DEFAULT_MAX_WORKERS = len(FEED_KINDS)

DEFAULT_FEED_ENDPOINTS: Dict[str, str] = {
    "kpi": "/api/decision/kpi",
    "orders": "/api/decision/order-failures",
    "coldStock": "/api/decision/cold-stock",
    "bottleneck": "/api/decision/bottlenecks",
    "roll": "/api/decision/roll-alerts",
    "risk": "/api/decision/day-summaries",
    "capacityOpportunity": "/api/decision/capacity-opportunities",
}

SCHEMA_VERSION = "1.0.0"
SERVICE_NAME = "risk-overview"


def _safe_float(value: object, default: float) -> float:
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if parsed <= 0:
        return default
    return parsed


def _safe_int(value: object, default: int) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if parsed <= 0:
        return default
    return parsed


def resolve_feed_settings(
    *,
    base_url: Optional[str] = None,
    timeout_sec: Optional[float] = None,
    recent_days: Optional[int] = None,
    version_id: Optional[str] = None,
    expected_plan_rev: Optional[int] = None,
) -> Dict[str, object]:
    url = str(base_url or os.getenv("RO_DECISION_BASE_URL", DEFAULT_DECISION_BASE_URL)).strip()
    timeout = _safe_float(
        timeout_sec if timeout_sec is not None else os.getenv("RO_TIMEOUT_SEC"),
        default=DEFAULT_TIMEOUT_SEC,
    )
    days = _safe_int(
        recent_days if recent_days is not None else os.getenv("RO_RECENT_DAYS"),
        default=DEFAULT_RECENT_DAYS,
    )
    version = str(version_id or os.getenv("RO_VERSION_ID", "")).strip()

    plan_rev_raw = expected_plan_rev if expected_plan_rev is not None else os.getenv("RO_EXPECTED_PLAN_REV")
    try:
        plan_rev: Optional[int] = int(plan_rev_raw) if plan_rev_raw not in (None, "") else None  # type: ignore[arg-type]
    except (TypeError, ValueError):
        plan_rev = None

    return {
        "base_url": url or DEFAULT_DECISION_BASE_URL,
        "timeout_sec": timeout,
        "recent_days": days,
        "version_id": version,
        "expected_plan_rev": plan_rev,
    }


def load_feed_endpoints(path: Path = FEEDS_CONFIG_PATH) -> Dict[str, str]:
    if not path.exists():
        return dict(DEFAULT_FEED_ENDPOINTS)

    with path.open("r", encoding="utf-8") as f:
        payload = yaml.safe_load(f) or {}
    endpoints = payload.get("endpoints", {}) if isinstance(payload, dict) else None
    if not isinstance(endpoints, dict):
        raise ValueError("feed config format invalid: expected key `endpoints` as mapping")

    resolved: Dict[str, str] = {}
    for kind in FEED_KINDS:
        value = str(endpoints.get(kind, "") or "").strip()
        if not value:
            raise ValueError(f"feed config missing endpoint for `{kind}`")
        resolved[kind] = value if value.startswith("/") else f"/{value}"
    return resolved
