from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .config import PROBLEM_PAYLOAD_PATH, PROBLEM_QUEUE_PATH, SCHEMA_VERSION, SERVICE_NAME
from .drilldown import drilldown_query_string
from .problems import RiskProblem, recommended_problem, severity_counts
from .workbench import build_workbench_route, workbench_target_for_problem

QUEUE_COLUMNS = [
    "rank",
    "id",
    "severity",
    "title",
    "count",
    "detail",
    "impact",
    "time_hint",
    "drilldown_kind",
    "drilldown_query",
    "workbench_route",
]


def _problem_row(rank: int, problem: RiskProblem) -> Dict[str, object]:
    return {
        "rank": rank,
        "id": problem.id,
        "severity": problem.severity,
        "title": problem.title,
        "count": problem.count,
        "detail": problem.detail or "",
        "impact": problem.impact or "",
        "time_hint": problem.time_hint or "",
        "drilldown_kind": problem.drilldown.kind,
        "drilldown_query": drilldown_query_string(problem.drilldown),
        "workbench_route": build_workbench_route(workbench_target_for_problem(problem)),
    }


def problems_frame(problems: Sequence[RiskProblem]) -> pd.DataFrame:
    rows = [_problem_row(idx, problem) for idx, problem in enumerate(problems, start=1)]
    frame = pd.DataFrame(rows, columns=QUEUE_COLUMNS)
    # Nullable ints keep rules without a count blank instead of NaN floats.
    frame["count"] = frame["count"].astype("Int64")
    return frame


def write_problem_queue(problems: Sequence[RiskProblem], output_path: Path = PROBLEM_QUEUE_PATH) -> pd.DataFrame:
    frame = problems_frame(problems)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output_path, index=False, encoding="utf-8")
    return frame


def build_problem_payload(
    problems: Sequence[RiskProblem],
    board_status: Optional[Dict[str, object]] = None,
    scope: str = "ALL",
) -> Dict[str, object]:
    recommended = recommended_problem(problems)
    items: List[Dict[str, object]] = []
    for rank, problem in enumerate(problems, start=1):
        item = problem.as_dict()
        item["rank"] = rank
        item["workbenchRoute"] = build_workbench_route(workbench_target_for_problem(problem))
        items.append(item)

    return {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
        "schema_version": SCHEMA_VERSION,
        "scope": scope,
        "severity_counts": severity_counts(problems),
        "recommended_problem_id": recommended.id if recommended is not None else None,
        "problems": items,
        "feed_status": board_status or {},
    }


def write_problem_payload(payload: Dict[str, object], output_path: Path = PROBLEM_PAYLOAD_PATH) -> Dict[str, object]:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    return payload
