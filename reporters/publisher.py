"""Patch raw HTML reports in place and name their public URL."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from exceptions import ReportNotFoundError

BRANDING_MARKER = "<!-- report-branding-hidden -->"
BRANDING_PATCH = f"""{BRANDING_MARKER}
<style>
.page-nav-left .logo {{
  display: none !important;
}}
</style>
"""


def apply_branding_patch(content: str) -> str:
    """Insert the branding CSS before ``</head>`` once. Repeat calls are no-ops."""
    if BRANDING_MARKER in content:
        return content
    index = content.lower().rfind("</head>")
    if index < 0:
        return content
    return content[:index] + BRANDING_PATCH + content[index:]


class ReportPublisher:
    """Turns a raw report file under the servable root into a public path.

    The file is never copied: it already lives under ``report_dir``.
    """

    def __init__(
        self,
        report_dir: Path,
        public_prefix: str = "/report",
        logger: Optional[logging.Logger] = None,
    ):
        self.report_dir = report_dir
        self.public_prefix = "/" + public_prefix.strip("/")
        self.logger = logger or logging.getLogger("publisher")

    def _resolve(self, raw_path: Path) -> Path:
        path = raw_path.expanduser().resolve()
        root = self.report_dir.expanduser().resolve()
        if path.parent != root:
            raise ReportNotFoundError("Report is outside the servable report directory", path=str(raw_path))
        if not path.is_file():
            raise ReportNotFoundError("Report file does not exist", path=str(raw_path))
        return path

    def publish(self, raw_path: Optional[Path]) -> str:
        """Patch the report and return ``/report/<filename>``, or "" when unusable."""
        if raw_path is None:
            self.logger.warning("No report path to publish")
            return ""
        try:
            path = self._resolve(Path(raw_path))
        except ReportNotFoundError as exc:
            self.logger.warning(f"Report not published: {exc}")
            return ""

        try:
            # Undecodable bytes round-trip unchanged through surrogateescape.
            content = path.read_bytes().decode("utf-8", errors="surrogateescape")
            patched = apply_branding_patch(content)
            if patched != content:
                path.write_bytes(patched.encode("utf-8", errors="surrogateescape"))
        except (OSError, ValueError) as exc:
            # The file still serves unpatched.
            self.logger.warning(f"Could not patch report {path.name}: {exc}")

        public_path = f"{self.public_prefix}/{path.name}"
        self.logger.info(f"Report published at {public_path}")
        return public_path
