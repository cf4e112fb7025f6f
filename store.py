"""JSON-file persistence for runs, test cases, automation configs and issues.

Each collection is one JSON document keyed by record id. Passing ``path=None``
keeps the collection in memory only, which is what the tests use.
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, TypeVar

from exceptions import RecordNotFoundError, StoreError
from run_types import AutomationConfig, Issue, Run, TestCaseRecord, TestCaseStep, utc_now

logger = logging.getLogger("store")

T = TypeVar("T")


class RunStore(Protocol):
    def create(self, run: Run) -> Run: ...

    def update(self, run_id: str, **fields: Any) -> Run: ...

    def get(self, run_id: str) -> Optional[Run]: ...

    def list_runs(self, test_case_id: Optional[str] = None, limit: Optional[int] = None) -> List[Run]: ...


class TestCaseStore(Protocol):
    def get(self, test_case_id: str) -> Optional[TestCaseRecord]: ...

    def update_steps(self, test_case_id: str, steps: List[TestCaseStep]) -> None: ...


class AutomationConfigStore(Protocol):
    def get(self, test_case_id: str, framework: Optional[str] = None) -> Optional[AutomationConfig]: ...


class IssueTracker(Protocol):
    def create(self, issue: Issue) -> str: ...


class JsonCollection(Generic[T]):
    """Thread-safe id -> record map mirrored to a JSON file."""

    def __init__(
        self,
        path: Optional[Path],
        encode: Callable[[T], Dict[str, Any]],
        decode: Callable[[Dict[str, Any]], T],
    ):
        self.path = path
        self._encode = encode
        self._decode = decode
        self._records: Dict[str, T] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            for record_id, data in raw.items():
                self._records[record_id] = self._decode(data)
        except Exception as exc:
            raise StoreError(f"Failed to load {self.path.name}: {exc}", {"path": str(self.path)}) from exc

    def _save(self) -> None:
        if self.path is None:
            return
        payload = {record_id: self._encode(record) for record_id, record in self._records.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as exc:
            raise StoreError(f"Failed to write {self.path.name}: {exc}", {"path": str(self.path)}) from exc

    def get(self, record_id: str) -> Optional[T]:
        with self._lock:
            return self._records.get(record_id)

    def put(self, record_id: str, record: T) -> T:
        with self._lock:
            self._records[record_id] = record
            self._save()
        return record

    def values(self) -> List[T]:
        with self._lock:
            return list(self._records.values())


class JsonRunStore:
    """Run records, one JSON document."""

    def __init__(self, path: Optional[Path] = None):
        self._runs: JsonCollection[Run] = JsonCollection(path, Run.to_dict, Run.from_dict)

    def create(self, run: Run) -> Run:
        if self._runs.get(run.id) is not None:
            raise StoreError(f"Run already exists: {run.id}")
        return self._runs.put(run.id, run)

    def update(self, run_id: str, **fields: Any) -> Run:
        current = self._runs.get(run_id)
        if current is None:
            raise RecordNotFoundError(f"Run not found: {run_id}", record_id=run_id)
        return self._runs.put(run_id, replace(current, updated_at=utc_now(), **fields))

    def get(self, run_id: str) -> Optional[Run]:
        return self._runs.get(run_id)

    def list_runs(self, test_case_id: Optional[str] = None, limit: Optional[int] = None) -> List[Run]:
        runs = [r for r in self._runs.values() if test_case_id is None or r.test_case_id == test_case_id]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit] if limit else runs


class JsonTestCaseStore:
    """Test cases with their ordered steps."""

    __test__ = False

    def __init__(self, path: Optional[Path] = None):
        self._cases: JsonCollection[TestCaseRecord] = JsonCollection(
            path, TestCaseRecord.to_dict, TestCaseRecord.from_dict
        )

    def get(self, test_case_id: str) -> Optional[TestCaseRecord]:
        return self._cases.get(test_case_id)

    def put(self, record: TestCaseRecord) -> TestCaseRecord:
        return self._cases.put(record.id, record)

    def update_steps(self, test_case_id: str, steps: List[TestCaseStep]) -> None:
        current = self._cases.get(test_case_id)
        if current is None:
            raise RecordNotFoundError(f"Test case not found: {test_case_id}", record_id=test_case_id)
        self._cases.put(test_case_id, replace(current, steps=list(steps)))


class JsonAutomationConfigStore:
    """Automation configs keyed by test case id."""

    def __init__(self, path: Optional[Path] = None):
        self._configs: JsonCollection[AutomationConfig] = JsonCollection(
            path, AutomationConfig.to_dict, AutomationConfig.from_dict
        )

    def get(self, test_case_id: str, framework: Optional[str] = None) -> Optional[AutomationConfig]:
        config = self._configs.get(test_case_id)
        if config is None or not config.is_active:
            return None
        if framework and config.framework != framework:
            return None
        return config

    def put(self, config: AutomationConfig) -> AutomationConfig:
        return self._configs.put(config.test_case_id, config)


def _issue_from_dict(data: Dict[str, Any]) -> Issue:
    data = dict(data)
    data["created_at"] = datetime.fromisoformat(data["created_at"]) if data.get("created_at") else utc_now()
    return Issue(**data)


class JsonIssueTracker:
    """Known-issue records filed by the engine."""

    def __init__(self, path: Optional[Path] = None):
        self._issues: JsonCollection[Issue] = JsonCollection(path, Issue.to_dict, _issue_from_dict)

    def create(self, issue: Issue) -> str:
        issue_id = issue.id or uuid.uuid4().hex
        self._issues.put(issue_id, replace(issue, id=issue_id))
        logger.info(f"Issue {issue_id} filed: {issue.title}")
        return issue_id

    def get(self, issue_id: str) -> Optional[Issue]:
        return self._issues.get(issue_id)

    def list_issues(self, test_case_id: Optional[str] = None) -> List[Issue]:
        return [i for i in self._issues.values() if test_case_id is None or i.test_case_id == test_case_id]
