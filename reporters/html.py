"""HTML report generator for automation runs."""
from __future__ import annotations

import html
from pathlib import Path
from typing import List

from plan_types import ActionRecord, ExecutionRecord
from reporters.base import BaseReporter, ReportContext, ReportFormat


class HTMLReporter(BaseReporter):
    """Generate a self-contained HTML report with embedded screenshots."""

    @property
    def format(self) -> ReportFormat:
        return ReportFormat.HTML

    def _render_screenshot(self, action: ActionRecord, label: str) -> str:
        shots = [entry.screenshot for entry in action.recorder if entry.type == "screenshot" and entry.screenshot]
        if not shots:
            return ""
        src = shots[-1] if shots[-1].startswith("data:") else f"data:image/png;base64,{shots[-1]}"
        return f'''
                    <div class="screenshot-preview">
                        <img src="{src}" alt="{html.escape(label)}" loading="lazy" onclick="openModal(this.src)" />
                    </div>'''

    def _render_action(self, index: int, action: ActionRecord) -> str:
        param_text = action.assertion or action.param.get("prompt") or action.param.get("timeMs") or ""
        thought = ""
        if action.thought:
            thought = f'<div class="action-result">{html.escape(action.thought)}</div>'
        status_class = "failure" if action.status == "failed" else "success"
        return f'''
            <div class="timeline-item {status_class}">
                <div class="timeline-marker"><span class="round-num">{index}</span></div>
                <div class="timeline-content">
                    <div class="timeline-header">
                        <span class="action-name">{html.escape(action.type)} / {html.escape(action.sub_type)}</span>
                        <span class="action-status">{html.escape(action.status)}</span>
                    </div>
                    <div class="timeline-body">
                        <div class="action-args"><code>{html.escape(str(param_text))}</code></div>
                        {thought}
                    </div>
                    {self._render_screenshot(action, f"Action {index}")}
                </div>
            </div>'''

    def _render_execution(self, record: ExecutionRecord) -> str:
        if not record.tasks:
            body = "<p class='empty'>No actions were recorded for this task.</p>"
        else:
            body = "".join(self._render_action(i, a) for i, a in enumerate(record.tasks, start=1))
        return f'''
        <div class="card">
            <h2>{html.escape(record.name)}</h2>
            <div class="timeline">{body}</div>
        </div>'''

    def _render_plan(self, context: ReportContext) -> str:
        items: List[str] = []
        for task in context.plan.tasks:
            steps = "".join(
                f"<li><code>{html.escape(step.type)}</code> {html.escape(step.value)}</li>" for step in task.flow
            )
            items.append(f"<li><strong>{html.escape(task.name)}</strong><ul>{steps}</ul></li>")
        return f"<ol class='plan'>{''.join(items)}</ol>"

    def _render_error(self, context: ReportContext) -> str:
        if context.success:
            return ""
        return f"""
            <div style="margin-top: 12px;">
                <div class="error-label">⚠ Error Details</div>
                <div class="error-details">{html.escape(context.error or "")}</div>
            </div>"""

    def render(self, context: ReportContext) -> str:
        status_badge = "pass" if context.success else "fail"
        status_text = "PASSED" if context.success else "FAILED"
        executions = "".join(self._render_execution(r) for r in context.log.executions)
        if not executions:
            executions = "<div class='card'><p class='empty'>No tasks were executed.</p></div>"
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>{html.escape(context.report_name)} - Automation Report</title>
    <style>{self._get_css()}</style>
</head>
<body>
    <nav class="page-nav">
        <div class="page-nav-left"><span class="logo">{html.escape(context.framework)}</span></div>
        <div class="page-nav-right">{context.generated_at.strftime("%Y-%m-%d %H:%M:%S UTC")}</div>
    </nav>
    <div class="container">
        <div class="card">
            <div class="header">
                <div class="header-content">
                    <h1>{html.escape(context.page_title or context.plan.target.url or context.report_name)}</h1>
                    <p><code>{html.escape(context.plan.target.url)}</code></p>
                </div>
                <span class="badge {status_badge}">{status_text}</span>
            </div>
            {self._render_error(context)}
        </div>
        <div class="card">
            <h2>Plan</h2>
            {self._render_plan(context)}
        </div>
        {executions}
    </div>
    <div id="modal" class="modal" onclick="this.style.display='none'"><img id="modalImg" /></div>
    <script>
        function openModal(src) {{
            document.getElementById('modalImg').src = src;
            document.getElementById('modal').style.display = 'flex';
        }}
    </script>
</body>
</html>
"""

    def generate(self, context: ReportContext, target: Path) -> Path:
        """Write the HTML report to ``target``."""
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.render(context), encoding="utf-8")
        return target

    def _get_css(self) -> str:
        """Return the CSS styles for the report."""
        return """
        :root {
            --bg-primary: #0b1220;
            --bg-card: #111a2d;
            --border-color: #1f2a44;
            --text-primary: #e6edf7;
            --text-secondary: #c3cee6;
            --success-bg: #0f5132;
            --success-text: #b6f6d8;
            --fail-bg: #5b1a1a;
            --fail-text: #f6c6c6;
        }
        * { box-sizing: border-box; }
        body {
            font-family: "Inter", "Segoe UI", -apple-system, sans-serif;
            background: var(--bg-primary);
            color: var(--text-primary);
            margin: 0;
            line-height: 1.5;
        }
        .page-nav {
            display: flex;
            justify-content: space-between;
            padding: 12px 24px;
            border-bottom: 1px solid var(--border-color);
        }
        .page-nav-left .logo { font-weight: 700; letter-spacing: 0.5px; }
        .page-nav-right { color: var(--text-secondary); font-size: 0.85rem; }
        .container { max-width: 1200px; margin: 0 auto; padding: 24px; }
        .card {
            background: var(--bg-card);
            border: 1px solid var(--border-color);
            border-radius: 12px;
            padding: 20px;
            margin-bottom: 18px;
        }
        .header { display: flex; justify-content: space-between; gap: 20px; }
        h1 { margin: 0 0 8px; font-size: 1.4rem; }
        h2 { margin: 0 0 12px; font-size: 1.1rem; }
        p { margin: 4px 0; color: var(--text-secondary); }
        code {
            background: #0c1424;
            padding: 2px 6px;
            border-radius: 4px;
            font-family: "JetBrains Mono", "Fira Code", monospace;
            font-size: 0.85em;
        }
        .badge { padding: 8px 16px; border-radius: 999px; font-weight: 700; height: fit-content; }
        .badge.pass { background: var(--success-bg); color: var(--success-text); }
        .badge.fail { background: var(--fail-bg); color: var(--fail-text); }
        .error-label { font-weight: 600; color: var(--fail-text); }
        .error-details {
            white-space: pre-wrap;
            background: #1a0f14;
            border-radius: 8px;
            padding: 10px;
            margin-top: 6px;
        }
        .empty { color: #666; font-style: italic; }
        .timeline-item { display: flex; gap: 12px; padding: 12px 0; border-top: 1px solid var(--border-color); }
        .timeline-item.failure .round-num { background: var(--fail-bg); }
        .round-num {
            display: inline-block;
            width: 28px;
            height: 28px;
            border-radius: 50%;
            text-align: center;
            background: var(--success-bg);
        }
        .timeline-content { flex: 1; }
        .timeline-header { display: flex; justify-content: space-between; }
        .action-status { color: var(--text-secondary); font-size: 0.8rem; }
        .screenshot-preview img { max-width: 480px; border-radius: 6px; margin-top: 8px; cursor: zoom-in; }
        .modal {
            display: none;
            position: fixed;
            inset: 0;
            background: rgba(0,0,0,0.85);
            align-items: center;
            justify-content: center;
        }
        .modal img { max-width: 95vw; max-height: 95vh; }
        """
