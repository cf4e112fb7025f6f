"""JSON execution log snapshot for automation runs."""
from __future__ import annotations

import json
from pathlib import Path

from reporters.base import BaseReporter, ReportContext, ReportFormat

REPORT_VERSION = "1.0"


class JSONReporter(BaseReporter):
    """Write the machine-readable log snapshot the correlator reads back."""

    @property
    def format(self) -> ReportFormat:
        return ReportFormat.JSON

    def generate(self, context: ReportContext, target: Path) -> Path:
        """Write ``executions`` plus run metadata to ``target``."""
        target.parent.mkdir(parents=True, exist_ok=True)
        report_data = {
            "generated_at": context.generated_at.isoformat(),
            "report_version": REPORT_VERSION,
            "name": context.report_name,
            "framework": context.framework,
            "success": context.success,
            "error": context.error,
            "plan": context.plan.to_dict(),
            **context.log.to_dict(),
        }
        tmp_path = target.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(report_data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(target)
        return target
