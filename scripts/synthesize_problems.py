#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from risk_overview.config import PROBLEM_PAYLOAD_PATH, PROBLEM_QUEUE_PATH
from risk_overview.decision_client import DecisionFeedClient, FixtureFeedSource, RiskOverviewBoard
from risk_overview.problem_export import build_problem_payload, write_problem_payload, write_problem_queue
from risk_overview.problems import scope_problems


def main() -> int:
    parser = argparse.ArgumentParser(description="Fetch decision feeds and print the ranked risk problem list.")
    parser.add_argument("--version-id", default=None, help="Plan version id (default: RO_VERSION_ID).")
    parser.add_argument("--base-url", default=None, help="Decision backend base URL (default: RO_DECISION_BASE_URL).")
    parser.add_argument(
        "--expected-plan-rev",
        type=int,
        default=None,
        help="Plan revision the reads must match (default: RO_EXPECTED_PLAN_REV).",
    )
    parser.add_argument(
        "--fixtures",
        type=Path,
        default=None,
        help="Read <kind>.json payloads from this directory instead of the backend.",
    )
    parser.add_argument("--scope", default="ALL", choices=["ALL", "P0_P1"], help="Problem severity scope.")
    parser.add_argument("--csv-out", type=Path, default=PROBLEM_QUEUE_PATH, help="Problem queue CSV path.")
    parser.add_argument("--json-out", type=Path, default=PROBLEM_PAYLOAD_PATH, help="Problem payload JSON path.")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument(
        "--fail-on-feed-error",
        action="store_true",
        help="Exit with non-zero when any feed failed to load.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.fixtures is not None:
        source = FixtureFeedSource(args.fixtures)
    else:
        source = DecisionFeedClient(
            base_url=args.base_url,
            version_id=args.version_id,
            expected_plan_rev=args.expected_plan_rev,
        )

    board = RiskOverviewBoard(source)
    board.fetch_all()
    problems = scope_problems(board.problems, args.scope)
    status = board.status()

    write_problem_queue(problems, args.csv_out)
    payload = build_problem_payload(problems, board_status=status, scope=args.scope)
    write_problem_payload(payload, args.json_out)

    payload["csv_path"] = str(args.csv_out)
    payload["json_path"] = str(args.json_out)
    print(json.dumps(payload, ensure_ascii=False, indent=2))

    if args.fail_on_feed_error and status["errors"]:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
