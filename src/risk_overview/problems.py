from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from .drilldown import (
    BottleneckDrilldown,
    ColdStockDrilldown,
    DrilldownSpec,
    OrdersDrilldown,
    RiskDrilldown,
    RollDrilldown,
    encode_drilldown,
)
from .feeds import FeedSnapshot, GlobalKPI
from .severity import (
    SEVERITIES,
    URGENT_LEVEL,
    Verdict,
    classify_blocked_urgent,
    classify_bottlenecks,
    classify_cold_stock,
    classify_roll_alerts,
    classify_urgent_orders,
    classify_worst_risk_day,
    severity_rank,
)

logger = logging.getLogger(__name__)

URGENT_ORDERS_ID = "l3-order-failures"
WORST_RISK_DAY_ID = "worst-risk-day"
BOTTLENECK_ID = "bottleneck-severe"
COLD_STOCK_ID = "cold-stock-high-pressure"
ROLL_ID = "roll-campaign-alerts"
BLOCKED_URGENT_ID = "blocked-urgent-materials"

PROBLEM_SCOPES = {"ALL", "P0_P1"}
EMPTY_STRUCTURE_GAPS = {"", "无", "NONE"}


@dataclass(frozen=True)
class RiskProblem:
    id: str
    severity: str
    title: str
    drilldown: DrilldownSpec
    detail: Optional[str] = None
    count: Optional[int] = None
    impact: Optional[str] = None
    time_hint: Optional[str] = None
    workbench_tab: Optional[str] = None
    workbench_machine_code: Optional[str] = None
    workbench_plan_date: Optional[str] = None
    workbench_context: Optional[str] = None
    workbench_contract_no: Optional[str] = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "severity": self.severity,
            "title": self.title,
            "detail": self.detail,
            "count": self.count,
            "impact": self.impact,
            "timeHint": self.time_hint,
            "drilldown": encode_drilldown(self.drilldown),
            "workbenchTab": self.workbench_tab,
            "workbenchMachineCode": self.workbench_machine_code,
            "workbenchPlanDate": self.workbench_plan_date,
            "workbenchContext": self.workbench_context,
            "workbenchContractNo": self.workbench_contract_no,
        }


@dataclass(frozen=True)
class ProblemDelta:
    resolved: int = 0
    improved: int = 0
    worsened: int = 0
    updated: int = 0
    added: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "resolved": self.resolved,
            "improved": self.improved,
            "worsened": self.worsened,
            "updated": self.updated,
            "added": self.added,
        }


def format_number(value: object, digits: int = 1) -> str:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "-"
    if not math.isfinite(number):
        return "-"
    return f"{number:.{digits}f}"


def format_tonnage(tonnes: object) -> str:
    try:
        value = float(tonnes)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        value = 0.0
    if not math.isfinite(value):
        value = 0.0
    if abs(value) >= 1000:
        return f"{format_number(value / 1000, 3)}千吨"
    return f"{format_number(value, 3)}吨"


def _format_days(days: float) -> str:
    return str(int(days)) if float(days).is_integer() else format_number(days, 1)


def _snapshot(snapshots: Mapping[str, FeedSnapshot], kind: str) -> FeedSnapshot:
    snap = snapshots.get(kind)
    return snap if snap is not None else FeedSnapshot.loading(kind)


def _urgent_orders_problem(verdict: Verdict) -> RiskProblem:
    facts = verdict.facts
    first = verdict.representative
    overdue = int(facts.get("overdue_count", 0))
    unscheduled_t = float(facts.get("unscheduled_weight_t", 0.0))
    earliest = str(facts.get("earliest_due_date", ""))
    min_days = facts.get("min_days_to_due")

    impact_parts = []
    if overdue > 0:
        impact_parts.append(f"{overdue} 个逾期")
    if unscheduled_t > 0:
        impact_parts.append(f"未排 {format_tonnage(unscheduled_t)}")

    time_hint = None
    if min_days is not None:
        if min_days < 0:
            time_hint = f"已逾期 {_format_days(abs(min_days))} 天"
        else:
            time_hint = f"距交期 {_format_days(min_days)} 天"

    return RiskProblem(
        id=URGENT_ORDERS_ID,
        severity=verdict.severity,
        title="三级紧急订单未满足",
        count=int(facts.get("count", 0)),
        detail=f"最早交期 {earliest}" if earliest else None,
        impact=" · ".join(impact_parts) or None,
        time_hint=time_hint,
        drilldown=OrdersDrilldown(urgency=URGENT_LEVEL),
        workbench_tab="materials",
        workbench_machine_code=(first.machine_code or None) if first else None,
        workbench_context="orders",
        workbench_contract_no=(first.contract_no or None) if first else None,
    )


def _worst_risk_day_problem(verdict: Verdict) -> RiskProblem:
    day = verdict.representative
    machines = list(day.involved_machines)
    time_hint = None
    if machines:
        suffix = "…" if len(machines) > 3 else ""
        time_hint = f"涉及机组：{', '.join(machines[:3])}{suffix}"

    return RiskProblem(
        id=WORST_RISK_DAY_ID,
        severity=verdict.severity,
        title=f"最高风险日 {day.plan_date}",
        detail=(
            f"风险 {format_number(day.risk_score, 1)} | "
            f"利用率 {format_number(day.capacity_util_pct, 1)}% | "
            f"超载 {format_tonnage(day.overload_weight_t)}"
        ),
        impact=f"首因：{day.top_reasons[0]}" if day.top_reasons else None,
        time_hint=time_hint,
        drilldown=RiskDrilldown(plan_date=day.plan_date or None),
        workbench_tab="capacity",
        workbench_machine_code=machines[0] if machines else None,
        workbench_plan_date=day.plan_date or None,
        workbench_context="risk",
    )


def _bottleneck_problem(verdict: Verdict) -> RiskProblem:
    top = verdict.representative
    return RiskProblem(
        id=BOTTLENECK_ID,
        severity=verdict.severity,
        title="产能/结构堵塞预警",
        count=int(verdict.facts.get("count", 0)),
        detail=(
            f"{top.machine_code} {top.plan_date} 分数 {format_number(top.bottleneck_score, 0)} | "
            f"利用率 {format_number(top.capacity_util_pct, 1)}%"
        ),
        impact=f"未排材料 {top.pending_material_count} 件 · {format_tonnage(top.pending_weight_t)}",
        time_hint=f"首因：{top.reasons[0]}" if top.reasons else None,
        drilldown=BottleneckDrilldown(machine_code=top.machine_code or None, plan_date=top.plan_date or None),
        workbench_tab="capacity",
        workbench_machine_code=top.machine_code or None,
        workbench_plan_date=top.plan_date or None,
        workbench_context="bottleneck",
    )


def _cold_stock_problem(verdict: Verdict) -> RiskProblem:
    top = verdict.representative
    detail = impact = time_hint = None
    if top is not None:
        detail = f"{top.machine_code} {top.age_bin} 压力 {format_number(top.pressure_score, 0)} | {top.count} 件"
        impact = f"平均库龄 {format_number(top.avg_age_days, 1)} 天 · 最大 {top.max_age_days} 天"
        if top.structure_gap not in EMPTY_STRUCTURE_GAPS:
            time_hint = f"结构缺口：{top.structure_gap}"

    return RiskProblem(
        id=COLD_STOCK_ID,
        severity=verdict.severity,
        title="冷坨高压力积压",
        count=int(verdict.facts.get("count", 0)),
        detail=detail,
        impact=impact,
        time_hint=time_hint,
        drilldown=ColdStockDrilldown(),
        workbench_tab="materials",
        workbench_machine_code=(top.machine_code or None) if top else None,
        workbench_context="coldStock",
    )


def _roll_problem(verdict: Verdict) -> RiskProblem:
    top = verdict.representative
    detail = impact = time_hint = None
    if top is not None:
        detail = f"最紧急：{top.machine_code} 剩余 {format_tonnage(top.remaining_tonnage_t)}"
        impact = f"当前 {format_tonnage(top.current_tonnage_t)} / 硬限 {format_tonnage(top.hard_limit_t)}"
        reach_at = top.estimated_hard_reach_at or top.estimated_hard_stop_date
        if reach_at:
            time_hint = f"预计触达硬限制：{reach_at}"

    machine_code = (top.machine_code or None) if top else None
    return RiskProblem(
        id=ROLL_ID,
        severity=verdict.severity,
        title="设备监控：换辊",
        count=int(verdict.facts.get("count", 0)),
        detail=detail,
        impact=impact,
        time_hint=time_hint,
        drilldown=RollDrilldown(machine_code=machine_code),
        workbench_tab="visualization",
        workbench_machine_code=machine_code,
        workbench_context="roll",
    )


def _blocked_urgent_problem(verdict: Verdict) -> RiskProblem:
    return RiskProblem(
        id=BLOCKED_URGENT_ID,
        severity=verdict.severity,
        title="紧急物料阻塞",
        count=int(verdict.facts.get("count", 0)),
        detail="存在紧急物料未排产或被锁定阻塞",
        drilldown=OrdersDrilldown(),
        workbench_tab="materials",
        workbench_context="orders",
    )


def synthesize_unranked(snapshots: Mapping[str, FeedSnapshot]) -> List[RiskProblem]:
    """Run every rule in fixed order and emit one problem per triggered rule."""
    orders = _snapshot(snapshots, "orders")
    risk = _snapshot(snapshots, "risk")
    bottleneck = _snapshot(snapshots, "bottleneck")
    cold_stock = _snapshot(snapshots, "coldStock")
    roll = _snapshot(snapshots, "roll")
    kpi = _snapshot(snapshots, "kpi").resolved

    rules = [
        (classify_urgent_orders(orders.items), _urgent_orders_problem),
        (classify_worst_risk_day(risk.items), _worst_risk_day_problem),
        (classify_bottlenecks(bottleneck.items), _bottleneck_problem),
        (classify_cold_stock(cold_stock.items, cold_stock.summary), _cold_stock_problem),
        (classify_roll_alerts(roll.items, roll.summary), _roll_problem),
        (classify_blocked_urgent(kpi if isinstance(kpi, GlobalKPI) else None), _blocked_urgent_problem),
    ]

    problems: List[RiskProblem] = []
    for verdict, build in rules:
        if verdict is not None:
            problems.append(build(verdict))
    return problems


def rank_problems(problems: Sequence[RiskProblem]) -> List[RiskProblem]:
    # sorted() is stable: equal severities keep synthesis order.
    return sorted(problems, key=lambda p: severity_rank(p.severity))


def synthesize_problems(snapshots: Mapping[str, FeedSnapshot]) -> List[RiskProblem]:
    problems = rank_problems(synthesize_unranked(snapshots))
    logger.debug(
        "synthesized %d problems from %d snapshots: %s",
        len(problems),
        len(snapshots),
        ",".join(p.id for p in problems),
    )
    return problems


def severity_counts(problems: Sequence[RiskProblem]) -> Dict[str, int]:
    counts = {severity: 0 for severity in SEVERITIES}
    for problem in problems:
        if problem.severity in counts:
            counts[problem.severity] += 1
    return counts


def recommended_problem(problems: Sequence[RiskProblem]) -> Optional[RiskProblem]:
    for severity in ("P0", "P1"):
        for problem in problems:
            if problem.severity == severity:
                return problem
    return None


def scope_problems(problems: Sequence[RiskProblem], scope: str = "ALL") -> List[RiskProblem]:
    normalized = str(scope or "ALL").strip().upper()
    if normalized not in PROBLEM_SCOPES:
        raise ValueError(f"unknown problem scope: {scope}")
    if normalized == "P0_P1":
        return [p for p in problems if p.severity in {"P0", "P1"}]
    return list(problems)


def _normalize_text(value: object) -> str:
    return str(value if value is not None else "").strip()


def _content_changed(prev: RiskProblem, curr: RiskProblem) -> bool:
    if prev.count != curr.count:
        return True
    fields = [
        "detail",
        "impact",
        "time_hint",
        "workbench_machine_code",
        "workbench_plan_date",
        "workbench_context",
        "workbench_contract_no",
    ]
    return any(_normalize_text(getattr(prev, f)) != _normalize_text(getattr(curr, f)) for f in fields)


def diff_problems(previous: Sequence[RiskProblem], current: Sequence[RiskProblem]) -> ProblemDelta:
    """Compare two synthesis runs by problem id."""
    prev_by_id = {p.id: p for p in previous}
    curr_by_id = {p.id: p for p in current}

    resolved = sum(1 for problem_id in prev_by_id if problem_id not in curr_by_id)
    improved = worsened = updated = added = 0
    for problem_id, curr in curr_by_id.items():
        prev = prev_by_id.get(problem_id)
        if prev is None:
            added += 1
            continue
        prev_rank = severity_rank(prev.severity)
        curr_rank = severity_rank(curr.severity)
        if curr_rank > prev_rank:
            improved += 1
        elif curr_rank < prev_rank:
            worsened += 1
        elif _content_changed(prev, curr):
            updated += 1

    return ProblemDelta(resolved=resolved, improved=improved, worsened=worsened, updated=updated, added=added)
