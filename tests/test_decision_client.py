from __future__ import annotations

import json
import sys
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

import requests

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from risk_overview.config import DEFAULT_FEED_ENDPOINTS, FEED_KINDS, FIXTURES_DIR
from risk_overview.decision_client import (
    DecisionFeedClient,
    DecisionFeedError,
    FixtureFeedSource,
    RiskOverviewBoard,
)
from risk_overview.drilldown import OrdersDrilldown, RollDrilldown
from risk_overview.feeds import FEED_READY, GlobalKPI
from risk_overview.problems import BLOCKED_URGENT_ID, ROLL_ID, URGENT_ORDERS_ID, synthesize_problems


class _FakeResponse:
    def __init__(self, payload: object, status_code: int = 200, content: bytes = b"{}") -> None:
        self._payload = payload
        self.status_code = status_code
        self.content = content

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status={self.status_code}")

    def json(self) -> object:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeSource:
    def __init__(self, payloads, failing=(), raising=None) -> None:
        self.payloads = dict(payloads)
        self.failing = set(failing)
        self.raising = dict(raising or {})
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, kind: str) -> object:
        with self._lock:
            self.calls.append(kind)
        if kind in self.failing:
            raise DecisionFeedError(kind, "request_failed: boom")
        if kind in self.raising:
            raise self.raising[kind]
        return self.payloads.get(kind, {})


class _GatedKpiSource:
    """First kpi read blocks until released; later reads answer at once."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self._calls = 0
        self._lock = threading.Lock()

    def fetch(self, kind: str) -> object:
        with self._lock:
            self._calls += 1
            call = self._calls
        if call == 1:
            self.entered.set()
            self.release.wait(timeout=5)
            return {"blockedUrgentCount": 1}
        return {"blockedUrgentCount": 2}


def _fixture_payloads():
    return {kind: json.loads((FIXTURES_DIR / f"{kind}.json").read_text(encoding="utf-8")) for kind in FEED_KINDS}


class TestDecisionFeedClient(unittest.TestCase):
    def _client(self, **kwargs) -> DecisionFeedClient:
        options = {
            "base_url": "http://decision.local/",
            "version_id": "V20260301",
            "timeout_sec": 3.0,
            "recent_days": 14,
            "endpoints": dict(DEFAULT_FEED_ENDPOINTS),
        }
        options.update(kwargs)
        return DecisionFeedClient(**options)

    def test_request_params_per_kind(self) -> None:
        client = self._client(expected_plan_rev=7)
        self.assertEqual(client.request_params("risk"), {"version_id": "V20260301", "days": 14, "expected_plan_rev": 7})
        self.assertEqual(client.request_params("orders"), {"version_id": "V20260301", "expected_plan_rev": 7})

    @patch("risk_overview.decision_client.requests.get")
    def test_fetch_calls_endpoint_with_params(self, mock_get) -> None:
        mock_get.return_value = _FakeResponse({"items": []})
        payload = self._client().fetch("bottleneck")

        self.assertEqual(payload, {"items": []})
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], "http://decision.local/api/decision/bottlenecks")
        self.assertEqual(kwargs["params"], {"version_id": "V20260301", "days": 14})
        self.assertEqual(kwargs["timeout"], 3.0)

    @patch("risk_overview.decision_client.requests.get")
    def test_http_error_is_wrapped(self, mock_get) -> None:
        mock_get.return_value = _FakeResponse({}, status_code=503)
        with self.assertRaises(DecisionFeedError) as ctx:
            self._client().fetch("kpi")
        self.assertEqual(ctx.exception.kind, "kpi")
        self.assertIn("request_failed", str(ctx.exception))
        self.assertIsInstance(ctx.exception, RuntimeError)

    @patch("risk_overview.decision_client.requests.get")
    def test_transport_error_is_wrapped(self, mock_get) -> None:
        mock_get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(DecisionFeedError):
            self._client().fetch("roll")

    @patch("risk_overview.decision_client.requests.get")
    def test_invalid_json_is_wrapped(self, mock_get) -> None:
        mock_get.return_value = _FakeResponse(requests.JSONDecodeError("Expecting value", "<html>", 0))
        with self.assertRaises(DecisionFeedError) as ctx:
            self._client().fetch("orders")
        self.assertIn("invalid_json", str(ctx.exception))
        self.assertNotIn("request_failed", str(ctx.exception))

    @patch("risk_overview.decision_client.requests.get")
    def test_plain_value_error_from_json_is_wrapped(self, mock_get) -> None:
        mock_get.return_value = _FakeResponse(ValueError("bad json"))
        with self.assertRaises(DecisionFeedError) as ctx:
            self._client().fetch("orders")
        self.assertIn("invalid_json", str(ctx.exception))

    def test_unknown_kind_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self._client().fetch("weather")


class TestFixtureFeedSource(unittest.TestCase):
    def test_reads_bundled_fixtures(self) -> None:
        payload = FixtureFeedSource(FIXTURES_DIR).fetch("kpi")
        self.assertEqual(payload["blockedUrgentCount"], 3)

    def test_missing_and_broken_files_raise_feed_errors(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "orders.json").write_text("{not json", encoding="utf-8")
            source = FixtureFeedSource(Path(tmp))
            with self.assertRaises(DecisionFeedError):
                source.fetch("kpi")
            with self.assertRaises(DecisionFeedError):
                source.fetch("orders")

    def test_unreadable_fixture_raises_feed_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "kpi.json").mkdir()
            with self.assertRaises(DecisionFeedError) as ctx:
                FixtureFeedSource(Path(tmp)).fetch("kpi")
            self.assertIn("fixture_unreadable", str(ctx.exception))


class TestRiskOverviewBoard(unittest.TestCase):
    def test_starts_loading_with_no_problems(self) -> None:
        board = RiskOverviewBoard(_FakeSource({}))
        self.assertTrue(board.is_loading)
        self.assertTrue(all(board.loading_by_kind.values()))
        self.assertEqual(board.errors, [])
        self.assertEqual(board.problems, [])

    def test_fetch_all_isolates_failed_feed(self) -> None:
        source = _FakeSource(_fixture_payloads(), failing={"roll"})
        board = RiskOverviewBoard(source, max_workers=3)
        board.fetch_all()

        self.assertEqual(sorted(source.calls), sorted(FEED_KINDS))
        self.assertFalse(board.is_loading)
        self.assertEqual(len(board.errors), 1)
        self.assertIn("boom", board.error_by_kind["roll"])
        self.assertIsNone(board.error_by_kind["orders"])
        self.assertIsInstance(board.snapshot("kpi").resolved, GlobalKPI)

        ids = [p.id for p in board.problems]
        self.assertIn(URGENT_ORDERS_ID, ids)
        self.assertIn(BLOCKED_URGENT_ID, ids)
        self.assertNotIn(ROLL_ID, ids)

    def test_unexpected_source_error_stays_on_its_feed(self) -> None:
        source = _FakeSource(_fixture_payloads(), raising={"coldStock": OSError("disk gone")})
        board = RiskOverviewBoard(source)
        snapshots = board.fetch_all()

        self.assertTrue(snapshots["coldStock"].is_error)
        self.assertIn("disk gone", board.error_by_kind["coldStock"])
        self.assertFalse(board.is_loading)
        self.assertEqual(len(board.errors), 1)
        self.assertEqual(snapshots["orders"].status, FEED_READY)
        self.assertIn(URGENT_ORDERS_ID, [p.id for p in board.problems])

    def test_fixture_directory_in_place_of_file_fails_one_feed(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            for kind, payload in _fixture_payloads().items():
                if kind != "kpi":
                    (Path(tmp) / f"{kind}.json").write_text(json.dumps(payload), encoding="utf-8")
            (Path(tmp) / "kpi.json").mkdir()

            board = RiskOverviewBoard(FixtureFeedSource(Path(tmp)))
            board.fetch_all()

        self.assertIn("fixture_unreadable", board.error_by_kind["kpi"])
        self.assertEqual([kind for kind, error in board.error_by_kind.items() if error], ["kpi"])
        self.assertNotIn(BLOCKED_URGENT_ID, [p.id for p in board.problems])

    def test_older_in_flight_result_does_not_overwrite_newer(self) -> None:
        source = _GatedKpiSource()
        board = RiskOverviewBoard(source, kinds=["kpi"])
        slow = threading.Thread(target=board.refetch, args=("kpi",))
        slow.start()
        self.assertTrue(source.entered.wait(timeout=5))

        fresh = board.refetch("kpi")
        self.assertEqual(fresh.resolved.blocked_urgent_count, 2)

        source.release.set()
        slow.join(timeout=5)
        self.assertFalse(slow.is_alive())
        self.assertEqual(board.snapshot("kpi").resolved.blocked_urgent_count, 2)

    def test_refetch_replaces_only_one_feed(self) -> None:
        source = _FakeSource(_fixture_payloads(), failing={"roll"})
        board = RiskOverviewBoard(source)
        board.fetch_all()
        orders_before = board.snapshot("orders")

        source.failing.clear()
        snapshot = board.refetch("roll")

        self.assertEqual(snapshot.status, FEED_READY)
        self.assertIs(board.snapshot("orders"), orders_before)
        self.assertEqual(board.errors, [])
        self.assertIn(ROLL_ID, [p.id for p in board.problems])
        with self.assertRaises(ValueError):
            board.refetch("weather")

    def test_problems_are_memoized_on_snapshot_identity(self) -> None:
        board = RiskOverviewBoard(_FakeSource(_fixture_payloads()))
        board.fetch_all()
        first = board.problems
        with patch("risk_overview.decision_client.synthesize_problems", wraps=synthesize_problems) as spy:
            second = board.problems
            self.assertEqual(spy.call_count, 0)
            self.assertEqual(first, second)

            board.refetch("kpi")
            board.problems
            self.assertEqual(spy.call_count, 1)

    def test_drilldown_status_follows_open_kind(self) -> None:
        board = RiskOverviewBoard(_FakeSource(_fixture_payloads(), failing={"roll"}))
        self.assertEqual(board.drilldown_status(OrdersDrilldown()), {"kind": "orders", "loading": True, "error": None})

        board.fetch_all()
        status = board.drilldown_status(RollDrilldown(machine_code="H031"))
        self.assertEqual(status["kind"], "roll")
        self.assertFalse(status["loading"])
        self.assertIn("boom", status["error"])
        self.assertEqual(board.drilldown_status(None), {"kind": None, "loading": False, "error": None})


if __name__ == "__main__":
    unittest.main()
