from __future__ import annotations

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from risk_overview.config import (
    DEFAULT_DECISION_BASE_URL,
    DEFAULT_FEED_ENDPOINTS,
    DEFAULT_RECENT_DAYS,
    DEFAULT_TIMEOUT_SEC,
    FEEDS_CONFIG_PATH,
    load_feed_endpoints,
    resolve_feed_settings,
)

ENV_KEYS = ["RO_DECISION_BASE_URL", "RO_TIMEOUT_SEC", "RO_RECENT_DAYS", "RO_VERSION_ID", "RO_EXPECTED_PLAN_REV"]


class TestFeedSettings(unittest.TestCase):
    def setUp(self) -> None:
        cleared = {key: "" for key in ENV_KEYS}
        self._env = patch.dict(os.environ, cleared)
        self._env.start()
        for key in ENV_KEYS:
            os.environ.pop(key, None)

    def tearDown(self) -> None:
        self._env.stop()

    def test_defaults(self) -> None:
        settings = resolve_feed_settings()
        self.assertEqual(settings["base_url"], DEFAULT_DECISION_BASE_URL)
        self.assertEqual(settings["timeout_sec"], DEFAULT_TIMEOUT_SEC)
        self.assertEqual(settings["recent_days"], DEFAULT_RECENT_DAYS)
        self.assertEqual(settings["version_id"], "")
        self.assertIsNone(settings["expected_plan_rev"])

    def test_env_values_and_invalid_numbers(self) -> None:
        os.environ["RO_DECISION_BASE_URL"] = "http://decision.internal:9000"
        os.environ["RO_TIMEOUT_SEC"] = "not-a-number"
        os.environ["RO_RECENT_DAYS"] = "-3"
        os.environ["RO_VERSION_ID"] = " V7 "
        os.environ["RO_EXPECTED_PLAN_REV"] = "12"

        settings = resolve_feed_settings()
        self.assertEqual(settings["base_url"], "http://decision.internal:9000")
        self.assertEqual(settings["timeout_sec"], DEFAULT_TIMEOUT_SEC)
        self.assertEqual(settings["recent_days"], DEFAULT_RECENT_DAYS)
        self.assertEqual(settings["version_id"], "V7")
        self.assertEqual(settings["expected_plan_rev"], 12)

    def test_explicit_arguments_win(self) -> None:
        os.environ["RO_VERSION_ID"] = "V7"
        settings = resolve_feed_settings(version_id="V9", timeout_sec=2.5, recent_days=7, expected_plan_rev=3)
        self.assertEqual(settings["version_id"], "V9")
        self.assertEqual(settings["timeout_sec"], 2.5)
        self.assertEqual(settings["recent_days"], 7)
        self.assertEqual(settings["expected_plan_rev"], 3)


class TestFeedEndpoints(unittest.TestCase):
    def test_bundled_config_matches_defaults(self) -> None:
        self.assertEqual(load_feed_endpoints(FEEDS_CONFIG_PATH), DEFAULT_FEED_ENDPOINTS)

    def test_missing_file_falls_back_to_defaults(self) -> None:
        self.assertEqual(load_feed_endpoints(Path("/nonexistent/feeds.yaml")), DEFAULT_FEED_ENDPOINTS)

    def test_missing_kind_and_bad_shape_raise(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "feeds.yaml"
            path.write_text("endpoints:\n  kpi: api/kpi\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_feed_endpoints(path)

            path.write_text("endpoints:\n  - kpi\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_feed_endpoints(path)

    def test_paths_get_leading_slash(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "feeds.yaml"
            lines = ["endpoints:"] + [f"  {kind}: api/{kind}" for kind in DEFAULT_FEED_ENDPOINTS]
            path.write_text("\n".join(lines) + "\n", encoding="utf-8")
            endpoints = load_feed_endpoints(path)
            self.assertEqual(endpoints["coldStock"], "/api/coldStock")


if __name__ == "__main__":
    unittest.main()
