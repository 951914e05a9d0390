from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .feeds import (
    BottleneckPoint,
    ColdStockBucket,
    ColdStockSummary,
    DaySummary,
    GlobalKPI,
    OrderFailure,
    RollAlertSummary,
    RollCampaignAlert,
)

SEVERITIES = ["P0", "P1", "P2", "P3"]
SEVERITY_RANK = {"P0": 0, "P1": 1, "P2": 2, "P3": 3}

RISK_LEVEL_RANK = {"CRITICAL": 3, "HIGH": 2, "MEDIUM": 1, "LOW": 0}
RISK_LEVEL_SEVERITY = {"CRITICAL": "P0", "HIGH": "P1", "MEDIUM": "P2"}
SEVERE_LEVELS = {"HIGH", "CRITICAL"}

ROLL_STATUSES = ["NORMAL", "SUGGEST", "WARNING", "HARD_STOP"]

# Backend alert levels first, then legacy UI states, then risk-level style values.
ALERT_LEVEL_ALIASES = {
    "EMERGENCY": "HARD_STOP",
    "CRITICAL": "WARNING",
    "WARNING": "SUGGEST",
    "NONE": "NORMAL",
    "HARD_STOP": "HARD_STOP",
    "SUGGEST": "SUGGEST",
    "NORMAL": "NORMAL",
    "HIGH": "WARNING",
    "MEDIUM": "SUGGEST",
}

URGENT_LEVEL = "L3"
OVERDUE_FAIL_TYPE = "Overdue"


@dataclass(frozen=True)
class Verdict:
    severity: str
    representative: Optional[object] = None
    facts: Dict[str, object] = field(default_factory=dict, compare=False)


def severity_rank(severity: str) -> int:
    return SEVERITY_RANK.get(str(severity), len(SEVERITY_RANK))


def severity_for_risk_level(level: object) -> Optional[str]:
    return RISK_LEVEL_SEVERITY.get(str(level or "").strip().upper())


def parse_alert_level(alert_level: object) -> str:
    upper = str(alert_level or "").strip().upper()
    return ALERT_LEVEL_ALIASES.get(upper, "NORMAL")


def has_alert(status: str) -> bool:
    return status != "NORMAL"


def is_severe_alert(status: str) -> bool:
    return status in {"WARNING", "HARD_STOP"}


def _first_max(items: Iterable[object], key) -> Optional[object]:
    best = None
    best_key = None
    for item in items:
        current = key(item)
        if best is None or current > best_key:
            best, best_key = item, current
    return best


def _first_min(items: Iterable[object], key) -> Optional[object]:
    best = None
    best_key = None
    for item in items:
        current = key(item)
        if best is None or current < best_key:
            best, best_key = item, current
    return best


def classify_urgent_orders(failures: Sequence[OrderFailure]) -> Optional[Verdict]:
    urgent = [f for f in failures if f.urgency_level == URGENT_LEVEL]
    if not urgent:
        return None

    days = [f.days_to_due for f in urgent if f.days_to_due is not None]
    due_dates = sorted(f.due_date for f in urgent if f.due_date)
    facts = {
        "failures": urgent,
        "count": len(urgent),
        "overdue_count": sum(1 for f in urgent if f.fail_type == OVERDUE_FAIL_TYPE),
        "unscheduled_weight_t": sum(f.unscheduled_weight_t for f in urgent),
        "min_days_to_due": min(days) if days else None,
        "earliest_due_date": due_dates[0] if due_dates else "",
    }
    return Verdict(severity="P0", representative=urgent[0], facts=facts)


def worst_risk_day(days: Sequence[DaySummary]) -> Optional[DaySummary]:
    best: Optional[DaySummary] = None
    for current in days:
        if best is None:
            best = current
            continue
        best_rank = RISK_LEVEL_RANK.get(best.risk_level, 0)
        current_rank = RISK_LEVEL_RANK.get(current.risk_level, 0)
        if current_rank != best_rank:
            if current_rank > best_rank:
                best = current
            continue
        if current.risk_score > best.risk_score:
            best = current
    return best


def classify_worst_risk_day(days: Sequence[DaySummary]) -> Optional[Verdict]:
    worst = worst_risk_day(days)
    if worst is None or worst.risk_level not in SEVERE_LEVELS:
        return None
    severity = severity_for_risk_level(worst.risk_level)
    if severity is None:
        return None
    return Verdict(severity=severity, representative=worst)


def classify_bottlenecks(points: Sequence[BottleneckPoint]) -> Optional[Verdict]:
    severe = [p for p in points if p.bottleneck_level in SEVERE_LEVELS]
    if not severe:
        return None
    severity = "P0" if any(p.bottleneck_level == "CRITICAL" for p in severe) else "P1"
    top = _first_max(severe, key=lambda p: p.bottleneck_score)
    return Verdict(severity=severity, representative=top, facts={"count": len(severe)})


def severe_cold_stock_buckets(buckets: Sequence[ColdStockBucket]) -> List[ColdStockBucket]:
    return [b for b in buckets if b.pressure_level in SEVERE_LEVELS]


def classify_cold_stock(
    buckets: Sequence[ColdStockBucket], summary: Optional[ColdStockSummary]
) -> Optional[Verdict]:
    high_pressure_count = summary.high_pressure_count if summary is not None else 0
    if high_pressure_count <= 0:
        return None
    top = _first_max(severe_cold_stock_buckets(buckets), key=lambda b: b.pressure_score)
    return Verdict(severity="P2", representative=top, facts={"count": high_pressure_count})


def classify_roll_alerts(
    alerts: Sequence[RollCampaignAlert], summary: Optional[RollAlertSummary]
) -> Optional[Verdict]:
    near_hard_stop = summary.near_hard_stop_count if summary is not None else 0
    statuses = [parse_alert_level(a.alert_level) for a in alerts]

    if near_hard_stop > 0 or "HARD_STOP" in statuses:
        severity = "P0"
    elif "WARNING" in statuses:
        severity = "P1"
    elif "SUGGEST" in statuses:
        severity = "P2"
    else:
        return None

    active = [a for a, status in zip(alerts, statuses) if has_alert(status)]
    top = _first_min(active, key=lambda a: a.remaining_tonnage_t)
    count = near_hard_stop if near_hard_stop > 0 else len(active)
    return Verdict(severity=severity, representative=top, facts={"count": count})


def classify_blocked_urgent(kpi: Optional[GlobalKPI]) -> Optional[Verdict]:
    if kpi is None or kpi.blocked_urgent_count <= 0:
        return None
    return Verdict(severity="P1", facts={"count": kpi.blocked_urgent_count})
