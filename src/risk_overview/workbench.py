from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlencode

from .drilldown import (
    BottleneckDrilldown,
    CapacityOpportunityDrilldown,
    ColdStockDrilldown,
    DrilldownSpec,
    OrdersDrilldown,
    RiskDrilldown,
    RollDrilldown,
)
from .problems import RiskProblem

WORKBENCH_PATH = "/workbench"
WORKBENCH_TABS = ["materials", "capacity", "visualization"]

# Contexts that point at one machine/day cell of the schedule.
CELL_CONTEXTS = {RiskDrilldown.kind, BottleneckDrilldown.kind, CapacityOpportunityDrilldown.kind}

VIEW_MODE_CARD = "CARD"
VIEW_MODE_GANTT = "GANTT"


@dataclass(frozen=True)
class WorkbenchTarget:
    workbench_tab: Optional[str] = None
    machine_code: Optional[str] = None
    urgency_level: Optional[str] = None
    plan_date: Optional[str] = None
    context: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "workbenchTab": self.workbench_tab,
            "machineCode": self.machine_code,
            "urgencyLevel": self.urgency_level,
            "planDate": self.plan_date,
            "context": self.context,
        }


def _clean(value: object) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


def workbench_tab_for(spec: DrilldownSpec) -> str:
    if isinstance(spec, (OrdersDrilldown, ColdStockDrilldown)):
        return "materials"
    if isinstance(spec, RollDrilldown):
        return "visualization"
    if isinstance(spec, (RiskDrilldown, BottleneckDrilldown, CapacityOpportunityDrilldown)):
        return "capacity"
    raise TypeError(f"not a drilldown spec: {spec!r}")


def go_workbench(
    workbench_tab: Optional[str] = None,
    machine_code: Optional[str] = None,
    urgency_level: Optional[str] = None,
    plan_date: Optional[str] = None,
    context: Optional[str] = None,
) -> WorkbenchTarget:
    tab = _clean(workbench_tab)
    if tab is not None and tab not in WORKBENCH_TABS:
        raise ValueError(f"unknown workbench tab: {workbench_tab}")
    return WorkbenchTarget(
        workbench_tab=tab,
        machine_code=_clean(machine_code),
        urgency_level=_clean(urgency_level),
        plan_date=_clean(plan_date),
        context=_clean(context),
    )


def workbench_target_for_problem(problem: RiskProblem) -> WorkbenchTarget:
    spec = problem.drilldown
    urgency = spec.urgency if isinstance(spec, OrdersDrilldown) else None
    plan_date = None
    if isinstance(spec, (RiskDrilldown, BottleneckDrilldown, CapacityOpportunityDrilldown)):
        plan_date = spec.plan_date

    return go_workbench(
        workbench_tab=problem.workbench_tab or workbench_tab_for(spec),
        machine_code=problem.workbench_machine_code,
        urgency_level=urgency,
        plan_date=plan_date,
        context=spec.kind,
    )


def build_workbench_route(target: WorkbenchTarget) -> str:
    params: Dict[str, str] = {}
    if target.machine_code:
        params["machine"] = target.machine_code
    if target.urgency_level:
        params["urgency"] = target.urgency_level
    if target.plan_date:
        params["date"] = target.plan_date
    if target.context:
        params["context"] = target.context
        if target.context in CELL_CONTEXTS:
            params["focus"] = "gantt"
            if target.machine_code and target.plan_date:
                params["openCell"] = "1"

    query = urlencode(params)
    return f"{WORKBENCH_PATH}?{query}" if query else WORKBENCH_PATH


def workbench_view_mode(target: WorkbenchTarget) -> Optional[str]:
    """View mode the workbench switches to on arrival; None keeps the current one."""
    if target.workbench_tab == "materials":
        return VIEW_MODE_CARD
    if target.workbench_tab in {"capacity", "visualization"}:
        return VIEW_MODE_GANTT
    if target.context in CELL_CONTEXTS:
        return VIEW_MODE_GANTT
    return None
