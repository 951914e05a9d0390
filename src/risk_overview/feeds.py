from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

FEED_LOADING = "loading"
FEED_ERROR = "error"
FEED_READY = "ready"


def _text(value: object) -> str:
    return str(value or "").strip()


def _safe_float(value: object, default: float = 0.0) -> float:
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if not math.isfinite(parsed):
        return default
    return parsed


def _optional_float(value: object) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _safe_int(value: object, default: int = 0) -> int:
    try:
        return int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return default


def _reason_messages(raw: object) -> Tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    messages: List[str] = []
    for item in raw:
        if isinstance(item, dict):
            msg = _text(item.get("msg") or item.get("message"))
        else:
            msg = _text(item)
        if msg:
            messages.append(msg)
    return tuple(messages)


def _text_list(raw: object) -> Tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(_text(item) for item in raw if _text(item))


def _dict_items(payload: object) -> List[Dict[str, object]]:
    if not isinstance(payload, dict):
        return []
    items = payload.get("items", [])
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _summary(payload: object) -> Dict[str, object]:
    if not isinstance(payload, dict):
        return {}
    summary = payload.get("summary")
    return summary if isinstance(summary, dict) else {}


@dataclass(frozen=True)
class DaySummary:
    plan_date: str
    risk_score: float
    risk_level: str
    capacity_util_pct: float = 0.0
    overload_weight_t: float = 0.0
    top_reasons: Tuple[str, ...] = ()
    involved_machines: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, raw: Dict[str, object]) -> "DaySummary":
        return cls(
            plan_date=_text(raw.get("planDate")),
            risk_score=_safe_float(raw.get("riskScore")),
            risk_level=_text(raw.get("riskLevel")).upper(),
            capacity_util_pct=_safe_float(raw.get("capacityUtilPct")),
            overload_weight_t=_safe_float(raw.get("overloadWeightT")),
            top_reasons=_reason_messages(raw.get("topReasons")),
            involved_machines=_text_list(raw.get("involvedMachines")),
        )


@dataclass(frozen=True)
class BottleneckPoint:
    machine_code: str
    plan_date: str
    bottleneck_score: float
    bottleneck_level: str
    capacity_util_pct: float = 0.0
    pending_material_count: int = 0
    pending_weight_t: float = 0.0
    reasons: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, raw: Dict[str, object]) -> "BottleneckPoint":
        return cls(
            machine_code=_text(raw.get("machineCode")),
            plan_date=_text(raw.get("planDate")),
            bottleneck_score=_safe_float(raw.get("bottleneckScore")),
            bottleneck_level=_text(raw.get("bottleneckLevel")).upper(),
            capacity_util_pct=_safe_float(raw.get("capacityUtilPct")),
            pending_material_count=_safe_int(raw.get("pendingMaterialCount")),
            pending_weight_t=_safe_float(raw.get("pendingWeightT")),
            reasons=_reason_messages(raw.get("reasons")),
        )


@dataclass(frozen=True)
class OrderFailure:
    """One failed order, or one failed material when `material_id` is set."""

    contract_no: str
    urgency_level: str
    fail_type: str
    due_date: str
    days_to_due: Optional[float]
    unscheduled_weight_t: float
    machine_code: str
    material_id: str = ""

    @classmethod
    def from_payload(cls, raw: Dict[str, object]) -> "OrderFailure":
        return cls(
            contract_no=_text(raw.get("contractNo")),
            urgency_level=_text(raw.get("urgencyLevel")).upper(),
            fail_type=_text(raw.get("failType")),
            due_date=_text(raw.get("dueDate")),
            days_to_due=_optional_float(raw.get("daysToDue")),
            unscheduled_weight_t=_safe_float(raw.get("unscheduledWeightT")),
            machine_code=_text(raw.get("machineCode")),
            material_id=_text(raw.get("materialId")),
        )


@dataclass(frozen=True)
class ColdStockBucket:
    machine_code: str
    age_bin: str
    pressure_level: str
    pressure_score: float
    count: int
    weight_t: float
    avg_age_days: float = 0.0
    max_age_days: int = 0
    structure_gap: str = ""

    @classmethod
    def from_payload(cls, raw: Dict[str, object]) -> "ColdStockBucket":
        return cls(
            machine_code=_text(raw.get("machineCode")),
            age_bin=_text(raw.get("ageBin")),
            pressure_level=_text(raw.get("pressureLevel")).upper(),
            pressure_score=_safe_float(raw.get("pressureScore")),
            count=_safe_int(raw.get("count")),
            weight_t=_safe_float(raw.get("weightT")),
            avg_age_days=_safe_float(raw.get("avgAgeDays")),
            max_age_days=_safe_int(raw.get("maxAgeDays")),
            structure_gap=_text(raw.get("structureGap")),
        )


@dataclass(frozen=True)
class ColdStockSummary:
    high_pressure_count: int = 0
    total_cold_stock_count: int = 0
    total_cold_stock_weight_t: float = 0.0

    @classmethod
    def from_payload(cls, raw: Dict[str, object]) -> "ColdStockSummary":
        return cls(
            high_pressure_count=_safe_int(raw.get("highPressureCount")),
            total_cold_stock_count=_safe_int(raw.get("totalColdStockCount")),
            total_cold_stock_weight_t=_safe_float(raw.get("totalColdStockWeightT")),
        )


@dataclass(frozen=True)
class RollCampaignAlert:
    machine_code: str
    alert_level: str
    current_tonnage_t: float
    hard_limit_t: float
    remaining_tonnage_t: float
    soft_limit_t: float = 0.0
    estimated_hard_stop_date: str = ""
    estimated_hard_reach_at: str = ""

    @classmethod
    def from_payload(cls, raw: Dict[str, object]) -> "RollCampaignAlert":
        return cls(
            machine_code=_text(raw.get("machineCode")),
            alert_level=_text(raw.get("alertLevel")),
            current_tonnage_t=_safe_float(raw.get("currentTonnageT")),
            hard_limit_t=_safe_float(raw.get("hardLimitT")),
            remaining_tonnage_t=_safe_float(raw.get("remainingTonnageT")),
            soft_limit_t=_safe_float(raw.get("softLimitT")),
            estimated_hard_stop_date=_text(raw.get("estimatedHardStopDate")),
            estimated_hard_reach_at=_text(raw.get("estimatedHardReachAt")),
        )


@dataclass(frozen=True)
class RollAlertSummary:
    near_hard_stop_count: int = 0
    total_alerts: int = 0

    @classmethod
    def from_payload(cls, raw: Dict[str, object]) -> "RollAlertSummary":
        return cls(
            near_hard_stop_count=_safe_int(raw.get("nearHardStopCount")),
            total_alerts=_safe_int(raw.get("totalAlerts")),
        )


@dataclass(frozen=True)
class CapacityOpportunity:
    machine_code: str
    plan_date: str
    opportunity_space_t: float
    opportunity_type: str = ""
    current_util_pct: float = 0.0

    @classmethod
    def from_payload(cls, raw: Dict[str, object]) -> "CapacityOpportunity":
        return cls(
            machine_code=_text(raw.get("machineCode")),
            plan_date=_text(raw.get("planDate")),
            opportunity_space_t=_safe_float(raw.get("opportunitySpaceT")),
            opportunity_type=_text(raw.get("opportunityType")),
            current_util_pct=_safe_float(raw.get("currentUtilPct")),
        )


@dataclass(frozen=True)
class GlobalKPI:
    blocked_urgent_count: int = 0
    urgent_orders_count: int = 0
    most_risky_date: str = ""
    risk_level: str = ""
    cold_stock_count: int = 0

    @classmethod
    def from_payload(cls, raw: object) -> "GlobalKPI":
        if not isinstance(raw, dict):
            return cls()
        return cls(
            blocked_urgent_count=_safe_int(raw.get("blockedUrgentCount")),
            urgent_orders_count=_safe_int(raw.get("urgentOrdersCount")),
            most_risky_date=_text(raw.get("mostRiskyDate")),
            risk_level=_text(raw.get("riskLevel")).lower(),
            cold_stock_count=_safe_int(raw.get("coldStockCount")),
        )


@dataclass(frozen=True)
class FeedData:
    """Resolved body of a list feed: its items plus the feed-level summary, if any."""

    items: Tuple[object, ...] = ()
    summary: Optional[object] = None


_ITEM_PARSERS = {
    "orders": OrderFailure.from_payload,
    "coldStock": ColdStockBucket.from_payload,
    "bottleneck": BottleneckPoint.from_payload,
    "roll": RollCampaignAlert.from_payload,
    "risk": DaySummary.from_payload,
    "capacityOpportunity": CapacityOpportunity.from_payload,
}

_SUMMARY_PARSERS = {
    "coldStock": ColdStockSummary.from_payload,
    "roll": RollAlertSummary.from_payload,
}


def parse_feed_payload(kind: str, payload: object) -> object:
    """Turn a backend response body into the typed data held by a snapshot."""
    if kind == "kpi":
        return GlobalKPI.from_payload(payload)
    parser = _ITEM_PARSERS.get(kind)
    if parser is None:
        raise ValueError(f"unknown feed kind: {kind}")

    items = tuple(parser(raw) for raw in _dict_items(payload))
    summary_parser = _SUMMARY_PARSERS.get(kind)
    summary = summary_parser(_summary(payload)) if summary_parser else None
    return FeedData(items=items, summary=summary)


@dataclass(frozen=True)
class FeedSnapshot:
    kind: str
    status: str
    data: Optional[object] = None
    error: str = ""
    fetched_at_utc: str = field(default="", compare=False)

    @classmethod
    def loading(cls, kind: str) -> "FeedSnapshot":
        return cls(kind=kind, status=FEED_LOADING)

    @classmethod
    def failed(cls, kind: str, error: str) -> "FeedSnapshot":
        return cls(
            kind=kind,
            status=FEED_ERROR,
            error=str(error or "unknown_error"),
            fetched_at_utc=datetime.now(timezone.utc).isoformat(),
        )

    @classmethod
    def ready(cls, kind: str, data: object) -> "FeedSnapshot":
        return cls(
            kind=kind,
            status=FEED_READY,
            data=data,
            fetched_at_utc=datetime.now(timezone.utc).isoformat(),
        )

    @classmethod
    def from_payload(cls, kind: str, payload: object) -> "FeedSnapshot":
        return cls.ready(kind, parse_feed_payload(kind, payload))

    @property
    def is_loading(self) -> bool:
        return self.status == FEED_LOADING

    @property
    def is_error(self) -> bool:
        return self.status == FEED_ERROR

    @property
    def resolved(self) -> Optional[object]:
        # Loading and errored feeds count as "no data" for every rule.
        return self.data if self.status == FEED_READY else None

    @property
    def items(self) -> Tuple[object, ...]:
        data = self.resolved
        return data.items if isinstance(data, FeedData) else ()

    @property
    def summary(self) -> Optional[object]:
        data = self.resolved
        return data.summary if isinstance(data, FeedData) else None
