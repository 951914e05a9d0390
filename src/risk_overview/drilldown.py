"""Drilldown specs and their flat URL parameter encoding.

A drilldown names the detail view that is open on the risk overview and the
filters scoping it. It lives in the page URL as a handful of flat keys so the
open view survives a reload and can be shared as a link:

    ?dd=coldStock&machine=H031&age=30%2B&pressure=HIGH

`encode_drilldown` and `decode_drilldown` are exact inverses for every spec,
and `decode_drilldown` never raises: unknown values are dropped and an
unknown or missing `dd` means no drilldown is open.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Dict, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlencode

KIND_KEY = "dd"
URGENCY_KEY = "urgency"
MACHINE_KEY = "machine"
DATE_KEY = "date"
AGE_KEY = "age"
PRESSURE_KEY = "pressure"

DRILLDOWN_KEYS = [KIND_KEY, URGENCY_KEY, MACHINE_KEY, DATE_KEY, AGE_KEY, PRESSURE_KEY]

URGENCY_LEVELS = ["L0", "L1", "L2", "L3"]
AGE_BINS = ["0-7", "8-14", "15-30", "30+"]
PRESSURE_LEVELS = ["LOW", "MEDIUM", "HIGH", "CRITICAL"]

DIMENSION_TABS = ["issues", "orders", "capacity", "inventory", "roll"]


@dataclass(frozen=True)
class OrdersDrilldown:
    kind: ClassVar[str] = "orders"
    urgency: Optional[str] = None


@dataclass(frozen=True)
class ColdStockDrilldown:
    kind: ClassVar[str] = "coldStock"
    machine_code: Optional[str] = None
    age_bin: Optional[str] = None
    pressure_level: Optional[str] = None


@dataclass(frozen=True)
class BottleneckDrilldown:
    kind: ClassVar[str] = "bottleneck"
    machine_code: Optional[str] = None
    plan_date: Optional[str] = None


@dataclass(frozen=True)
class RollDrilldown:
    kind: ClassVar[str] = "roll"
    machine_code: Optional[str] = None


@dataclass(frozen=True)
class RiskDrilldown:
    kind: ClassVar[str] = "risk"
    plan_date: Optional[str] = None


@dataclass(frozen=True)
class CapacityOpportunityDrilldown:
    kind: ClassVar[str] = "capacityOpportunity"
    machine_code: Optional[str] = None
    plan_date: Optional[str] = None


DrilldownSpec = Union[
    OrdersDrilldown,
    ColdStockDrilldown,
    BottleneckDrilldown,
    RollDrilldown,
    RiskDrilldown,
    CapacityOpportunityDrilldown,
]

DRILLDOWN_KINDS = [
    OrdersDrilldown.kind,
    ColdStockDrilldown.kind,
    BottleneckDrilldown.kind,
    RollDrilldown.kind,
    RiskDrilldown.kind,
    CapacityOpportunityDrilldown.kind,
]


def _param(params: Mapping[str, object], key: str) -> Optional[str]:
    raw = params.get(key)
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    value = str(raw) if raw is not None else ""
    return value or None


def _enum_value(raw: Optional[str], allowed) -> Optional[str]:
    return raw if raw in allowed else None


def clear_drilldown(params: Optional[Mapping[str, object]] = None) -> Dict[str, str]:
    """Close the drilldown: drop every drilldown key, keep all other keys."""
    return {str(k): str(v) for k, v in (params or {}).items() if k not in DRILLDOWN_KEYS}


def encode_drilldown(spec: DrilldownSpec, params: Optional[Mapping[str, object]] = None) -> Dict[str, str]:
    if isinstance(spec, OrdersDrilldown):
        fields = {URGENCY_KEY: spec.urgency}
    elif isinstance(spec, ColdStockDrilldown):
        fields = {MACHINE_KEY: spec.machine_code, AGE_KEY: spec.age_bin, PRESSURE_KEY: spec.pressure_level}
    elif isinstance(spec, (BottleneckDrilldown, CapacityOpportunityDrilldown)):
        fields = {MACHINE_KEY: spec.machine_code, DATE_KEY: spec.plan_date}
    elif isinstance(spec, RollDrilldown):
        fields = {MACHINE_KEY: spec.machine_code}
    elif isinstance(spec, RiskDrilldown):
        fields = {DATE_KEY: spec.plan_date}
    else:
        raise TypeError(f"not a drilldown spec: {spec!r}")

    out = clear_drilldown(params)
    out[KIND_KEY] = spec.kind
    for key, value in fields.items():
        if value:
            out[key] = str(value)
    return out


def decode_drilldown(params: Mapping[str, object]) -> Optional[DrilldownSpec]:
    kind = _param(params, KIND_KEY)
    if kind is None:
        return None

    machine_code = _param(params, MACHINE_KEY)
    plan_date = _param(params, DATE_KEY)

    if kind == OrdersDrilldown.kind:
        return OrdersDrilldown(urgency=_enum_value(_param(params, URGENCY_KEY), URGENCY_LEVELS))

    if kind == ColdStockDrilldown.kind:
        pressure_raw = _param(params, PRESSURE_KEY)
        return ColdStockDrilldown(
            machine_code=machine_code,
            age_bin=_enum_value(_param(params, AGE_KEY), AGE_BINS),
            pressure_level=_enum_value(pressure_raw.upper() if pressure_raw else None, PRESSURE_LEVELS),
        )

    if kind == BottleneckDrilldown.kind:
        return BottleneckDrilldown(machine_code=machine_code, plan_date=plan_date)

    if kind == RollDrilldown.kind:
        return RollDrilldown(machine_code=machine_code)

    if kind == RiskDrilldown.kind:
        return RiskDrilldown(plan_date=plan_date)

    if kind == CapacityOpportunityDrilldown.kind:
        return CapacityOpportunityDrilldown(machine_code=machine_code, plan_date=plan_date)

    return None


def parse_drilldown_query(query: str) -> Optional[DrilldownSpec]:
    raw = str(query or "").lstrip("?")
    # First occurrence wins, matching URLSearchParams.get.
    params: Dict[str, str] = {}
    for key, value in parse_qsl(raw, keep_blank_values=True):
        params.setdefault(key, value)
    return decode_drilldown(params)


def drilldown_query_string(spec: Optional[DrilldownSpec], params: Optional[Mapping[str, object]] = None) -> str:
    encoded = encode_drilldown(spec, params) if spec is not None else clear_drilldown(params)
    return urlencode(encoded)


def dimension_tab_for(spec: Optional[DrilldownSpec]) -> str:
    """Overview dimension tab implied by an open drilldown."""
    if isinstance(spec, OrdersDrilldown):
        return "orders"
    if isinstance(spec, ColdStockDrilldown):
        return "inventory"
    if isinstance(spec, RollDrilldown):
        return "roll"
    if isinstance(spec, (RiskDrilldown, BottleneckDrilldown, CapacityOpportunityDrilldown)):
        return "capacity"
    return "issues"


def normalize_dimension_tab(value: object) -> str:
    raw = str(value or "").strip()
    return raw if raw in DIMENSION_TABS else "issues"
