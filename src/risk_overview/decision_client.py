from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import requests

from .config import DEFAULT_MAX_WORKERS, FEED_KINDS, load_feed_endpoints, resolve_feed_settings
from .drilldown import DrilldownSpec
from .feeds import FeedSnapshot
from .problems import RiskProblem, synthesize_problems

logger = logging.getLogger(__name__)

# Feeds that read a trailing window of plan days.
RECENT_DAYS_KINDS = {"risk", "bottleneck"}


class DecisionFeedError(RuntimeError):
    """A single decision feed could not be read."""

    def __init__(self, kind: str, message: str):
        super().__init__(f"{kind}: {message}")
        self.kind = kind


class DecisionFeedClient:
    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        version_id: Optional[str] = None,
        expected_plan_rev: Optional[int] = None,
        timeout_sec: Optional[float] = None,
        recent_days: Optional[int] = None,
        endpoints: Optional[Dict[str, str]] = None,
    ):
        settings = resolve_feed_settings(
            base_url=base_url,
            timeout_sec=timeout_sec,
            recent_days=recent_days,
            version_id=version_id,
            expected_plan_rev=expected_plan_rev,
        )
        self.base_url = str(settings["base_url"]).rstrip("/")
        self.version_id = str(settings["version_id"])
        self.expected_plan_rev = settings["expected_plan_rev"]
        self.timeout_sec = float(settings["timeout_sec"])  # type: ignore[arg-type]
        self.recent_days = int(settings["recent_days"])  # type: ignore[arg-type]
        self.endpoints = dict(endpoints) if endpoints is not None else load_feed_endpoints()

    def request_params(self, kind: str) -> Dict[str, object]:
        params: Dict[str, object] = {}
        if self.version_id:
            params["version_id"] = self.version_id
        if kind in RECENT_DAYS_KINDS:
            params["days"] = self.recent_days
        if self.expected_plan_rev is not None:
            params["expected_plan_rev"] = self.expected_plan_rev
        return params

    def fetch(self, kind: str) -> object:
        path = self.endpoints.get(kind)
        if path is None:
            raise ValueError(f"unknown feed kind: {kind}")
        endpoint = f"{self.base_url}{path}"
        try:
            response = requests.get(
                endpoint,
                params=self.request_params(kind),
                timeout=max(1.0, self.timeout_sec),
            )
            response.raise_for_status()
            payload = response.json() if response.content else {}
        # JSONDecodeError subclasses RequestException, so it must come first.
        except requests.JSONDecodeError as exc:
            raise DecisionFeedError(kind, "invalid_json") from exc
        except requests.RequestException as exc:
            raise DecisionFeedError(kind, f"request_failed: {exc}") from exc
        except ValueError as exc:
            raise DecisionFeedError(kind, "invalid_json") from exc

        logger.debug("fetched feed %s from %s", kind, endpoint)
        return payload


class FixtureFeedSource:
    """Reads `<kind>.json` payloads from a directory instead of the backend."""

    def __init__(self, fixtures_dir: Path):
        self.fixtures_dir = Path(fixtures_dir)

    def fetch(self, kind: str) -> object:
        path = self.fixtures_dir / f"{kind}.json"
        if not path.exists():
            raise DecisionFeedError(kind, f"fixture_missing: {path}")
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DecisionFeedError(kind, f"fixture_unreadable: {exc}") from exc
        try:
            return json.loads(text)
        except ValueError as exc:
            raise DecisionFeedError(kind, "invalid_json") from exc


class RiskOverviewBoard:
    """Current snapshot of every feed plus the problem list derived from it.

    Feeds are fetched concurrently and land independently; each fetch replaces
    only its own snapshot. A failed fetch is recorded on that feed and never
    blocks the others. `problems` is recomputed only when a snapshot changed.
    """

    def __init__(
        self,
        source,
        *,
        kinds: Sequence[str] = FEED_KINDS,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self._source = source
        self._kinds: List[str] = list(kinds)
        self._max_workers = max(1, int(max_workers))
        self._lock = threading.Lock()
        self._snapshots: Dict[str, FeedSnapshot] = {kind: FeedSnapshot.loading(kind) for kind in self._kinds}
        # Per-kind request sequence: last issued, and the one behind the stored snapshot.
        self._issued: Dict[str, int] = {kind: 0 for kind in self._kinds}
        self._applied: Dict[str, int] = {kind: 0 for kind in self._kinds}
        self._memo_key: Optional[tuple] = None
        self._memo_problems: List[RiskProblem] = []

    @property
    def kinds(self) -> List[str]:
        return list(self._kinds)

    @property
    def snapshots(self) -> Dict[str, FeedSnapshot]:
        with self._lock:
            return dict(self._snapshots)

    def snapshot(self, kind: str) -> FeedSnapshot:
        self._require_kind(kind)
        with self._lock:
            return self._snapshots[kind]

    def _require_kind(self, kind: str) -> None:
        if kind not in self._kinds:
            raise ValueError(f"unknown feed kind: {kind}")

    def _next_sequence(self, kind: str) -> int:
        with self._lock:
            self._issued[kind] += 1
            return self._issued[kind]

    def _store(self, snapshot: FeedSnapshot, sequence: int) -> FeedSnapshot:
        """Keep the newest request's result; a slower, older request never overwrites it."""
        with self._lock:
            if sequence < self._applied[snapshot.kind]:
                logger.debug("dropping stale %s result (request %d)", snapshot.kind, sequence)
                return self._snapshots[snapshot.kind]
            self._applied[snapshot.kind] = sequence
            self._snapshots[snapshot.kind] = snapshot
            return snapshot

    def _fetch_one(self, kind: str) -> FeedSnapshot:
        sequence = self._next_sequence(kind)
        try:
            payload = self._source.fetch(kind)
            snapshot = FeedSnapshot.from_payload(kind, payload)
        except DecisionFeedError as exc:
            logger.warning("feed %s failed: %s", kind, exc)
            snapshot = FeedSnapshot.failed(kind, str(exc))
        except Exception as exc:
            logger.exception("feed %s failed unexpectedly", kind)
            snapshot = FeedSnapshot.failed(kind, f"{kind}: {type(exc).__name__}: {exc}")
        else:
            logger.debug("feed %s ready: %d items", kind, len(snapshot.items))
        return self._store(snapshot, sequence)

    def fetch_all(self) -> Dict[str, FeedSnapshot]:
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(self._kinds) or 1)) as pool:
            futures = [pool.submit(self._fetch_one, kind) for kind in self._kinds]
            for future in futures:
                future.result()
        return self.snapshots

    def refetch(self, kind: str) -> FeedSnapshot:
        self._require_kind(kind)
        return self._fetch_one(kind)

    def refetch_all(self) -> Dict[str, FeedSnapshot]:
        return self.fetch_all()

    @property
    def problems(self) -> List[RiskProblem]:
        snapshots = self.snapshots
        current = tuple(snapshots[kind] for kind in self._kinds)
        memo = self._memo_key
        if memo is not None and len(memo) == len(current) and all(a is b for a, b in zip(memo, current)):
            return list(self._memo_problems)

        problems = synthesize_problems(snapshots)
        self._memo_key = current
        self._memo_problems = problems
        return list(problems)

    @property
    def is_loading(self) -> bool:
        return any(s.is_loading for s in self.snapshots.values())

    @property
    def errors(self) -> List[str]:
        snapshots = self.snapshots
        return [snapshots[kind].error for kind in self._kinds if snapshots[kind].is_error]

    @property
    def loading_by_kind(self) -> Dict[str, bool]:
        snapshots = self.snapshots
        return {kind: snapshots[kind].is_loading for kind in self._kinds}

    @property
    def error_by_kind(self) -> Dict[str, Optional[str]]:
        snapshots = self.snapshots
        return {kind: (snapshots[kind].error if snapshots[kind].is_error else None) for kind in self._kinds}

    def drilldown_status(self, spec: Optional[DrilldownSpec]) -> Dict[str, object]:
        """Loading/error state of the feed backing an open drilldown."""
        if spec is None or spec.kind not in self._kinds:
            return {"kind": None, "loading": False, "error": None}
        snapshot = self.snapshot(spec.kind)
        return {
            "kind": spec.kind,
            "loading": snapshot.is_loading,
            "error": snapshot.error if snapshot.is_error else None,
        }

    def status(self) -> Dict[str, object]:
        return {
            "is_loading": self.is_loading,
            "errors": self.errors,
            "loading_by_kind": self.loading_by_kind,
            "error_by_kind": self.error_by_kind,
        }
