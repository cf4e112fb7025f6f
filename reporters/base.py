"""Base reporter interface for automation runs."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from plan_types import ExecutionLog, Plan


class ReportFormat(str, Enum):
    """Supported report formats."""
    HTML = "html"
    JSON = "json"


@dataclass
class ReportContext:
    """Everything a reporter needs to render one run."""

    plan: Plan
    log: ExecutionLog
    report_name: str
    page_title: str = ""
    error: Optional[str] = None
    framework: str = "vision-agent"
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.error is None


class BaseReporter(ABC):
    """Abstract base class for report generators."""

    @abstractmethod
    def generate(self, context: ReportContext, target: Path) -> Path:
        """
        Write a report for one run.

        Args:
            context: Plan, execution log and outcome of the run
            target: File to write; parent directories are created

        Returns:
            Path to the generated report file
        """
        pass

    @property
    @abstractmethod
    def format(self) -> ReportFormat:
        """Return the report format this reporter generates."""
        pass
