"""Report generators and publishing for automation runs."""
from reporters.base import BaseReporter, ReportContext, ReportFormat
from reporters.html import HTMLReporter
from reporters.json_reporter import JSONReporter
from reporters.publisher import ReportPublisher, apply_branding_patch

__all__ = [
    "BaseReporter",
    "ReportContext",
    "ReportFormat",
    "HTMLReporter",
    "JSONReporter",
    "ReportPublisher",
    "apply_branding_patch",
]
