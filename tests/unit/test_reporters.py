"""Unit tests for reporters package."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from plan_codec import parse_plan
from plan_types import ActionRecord, ExecutionLog, ExecutionRecord, ScreenshotRecord
from reporters import HTMLReporter, JSONReporter, ReportContext, ReportFormat, ReportPublisher, apply_branding_patch
from reporters.publisher import BRANDING_MARKER


@pytest.fixture
def report_context() -> ReportContext:
    plan = parse_plan(
        "target:\n  url: https://x.test\ntasks:\n  - name: Login\n    flow:\n      - aiAssert: user <b>is</b> in\n"
    )
    log = ExecutionLog(
        executions=[
            ExecutionRecord(
                name="Login",
                tasks=[
                    ActionRecord(
                        type="Insight",
                        sub_type="Assert",
                        param={"assertion": "user <b>is</b> in"},
                        recorder=[ScreenshotRecord(screenshot="data:image/png;base64,AAAA")],
                        thought="Dashboard visible",
                    )
                ],
            )
        ]
    )
    return ReportContext(plan=plan, log=log, report_name="doc-1", page_title="Home")


class TestHTMLReporter:
    """Tests for HTMLReporter."""

    def test_format(self):
        assert HTMLReporter().format == ReportFormat.HTML

    def test_generates_report(self, report_context, temp_dir: Path):
        target = HTMLReporter().generate(report_context, temp_dir / "nested" / "r.html")
        content = target.read_text(encoding="utf-8")
        assert "</head>" in content
        assert 'class="logo"' in content
        assert "data:image/png;base64,AAAA" in content
        assert "PASSED" in content

    def test_escapes_user_text(self, report_context):
        content = HTMLReporter().render(report_context)
        assert "user &lt;b&gt;is&lt;/b&gt; in" in content
        assert "<b>is</b>" not in content

    def test_failed_report_shows_error(self, report_context):
        report_context.error = "agent crashed"
        content = HTMLReporter().render(report_context)
        assert "FAILED" in content
        assert "agent crashed" in content


class TestJSONReporter:
    """Tests for JSONReporter."""

    def test_snapshot_contains_executions(self, report_context, temp_dir: Path):
        target = JSONReporter().generate(report_context, temp_dir / "tc-1" / "log.json")
        data = json.loads(target.read_text(encoding="utf-8"))
        assert data["executions"][0]["tasks"][0]["param"]["assertion"] == "user <b>is</b> in"
        assert data["plan"]["target"]["url"] == "https://x.test"
        assert data["success"] is True
        assert not (temp_dir / "tc-1" / "log.tmp").exists()


class TestBrandingPatch:
    """Tests for the CSS branding patch."""

    def test_inserted_before_head_close(self):
        patched = apply_branding_patch("<html><head><title>x</title></head><body></body></html>")
        assert patched.index(BRANDING_MARKER) < patched.index("</head>")
        assert ".page-nav-left .logo" in patched

    def test_idempotent(self):
        once = apply_branding_patch("<head></head>")
        assert apply_branding_patch(once) == once

    def test_no_head_left_alone(self):
        assert apply_branding_patch("<body>x</body>") == "<body>x</body>"


class TestReportPublisher:
    """Tests for ReportPublisher."""

    def test_publishes_public_path(self, temp_dir: Path):
        report = temp_dir / "playwright-1-doc.html"
        report.write_text("<html><head></head><body></body></html>", encoding="utf-8")
        publisher = ReportPublisher(temp_dir)

        assert publisher.publish(report) == "/report/playwright-1-doc.html"
        assert BRANDING_MARKER in report.read_text(encoding="utf-8")
        assert report.exists()

    def test_publishing_twice_patches_once(self, temp_dir: Path):
        report = temp_dir / "r.html"
        report.write_text("<head></head>", encoding="utf-8")
        publisher = ReportPublisher(temp_dir)
        publisher.publish(report)
        publisher.publish(report)
        assert report.read_text(encoding="utf-8").count(BRANDING_MARKER) == 1

    def test_missing_file_returns_empty(self, temp_dir: Path):
        assert ReportPublisher(temp_dir).publish(temp_dir / "gone.html") == ""

    def test_none_returns_empty(self, temp_dir: Path):
        assert ReportPublisher(temp_dir).publish(None) == ""

    def test_outside_report_dir_returns_empty(self, temp_dir: Path):
        (temp_dir / "public").mkdir()
        outside = temp_dir / "r.html"
        outside.write_text("<head></head>", encoding="utf-8")
        assert ReportPublisher(temp_dir / "public").publish(outside) == ""

    def test_custom_prefix(self, temp_dir: Path):
        report = temp_dir / "r.html"
        report.write_text("<head></head>", encoding="utf-8")
        assert ReportPublisher(temp_dir, public_prefix="reports/").publish(report) == "/reports/r.html"

    def test_non_utf8_report_is_patched_byte_for_byte(self, temp_dir: Path):
        report = temp_dir / "r.html"
        report.write_bytes(b"<html><head>\xff\xfe</head></html>")

        assert ReportPublisher(temp_dir).publish(report) == "/report/r.html"

        patched = report.read_bytes()
        assert patched.startswith(b"<html><head>\xff\xfe")
        assert BRANDING_MARKER.encode("utf-8") in patched
        assert patched.endswith(b"</head></html>")
