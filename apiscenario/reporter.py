# apiscenario/reporter.py
"""
Run reporter.

Contract with the engine: `start()` once, `add_scenario_result()` once per
scenario, `generate_report()` once. Output formats:

- console:  plain-text summary (default, written to stdout)
- json:     full result tree
- markdown: summary table + per-scenario step lists
- html:     Jinja2-rendered standalone page
- junit:    JUnit XML for CI

With `output` set, the report is written to that file atomically
(tmp file + replace); otherwise it goes to the stream.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Dict, List, Optional
from xml.etree import ElementTree as ET

from jinja2 import BaseLoader, Environment, select_autoescape

from apiscenario.results import ScenarioResult, StepResult, StepStatus

logger = logging.getLogger(__name__)

REPORT_FORMATS = ("console", "json", "markdown", "html", "junit")

# ==================== HTML Template ====================

_HTML_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>API Scenario Report</title>
<meta name="viewport" content="width=device-width,initial-scale=1"/>
<style>
  :root { --bg:#f7fafc; --fg:#111; --muted:#666; --card:#fff; --ok:#1a7f37; --bad:#d00000; --skip:#f59e0b; }
  body { font-family: Inter, 'Segoe UI', Roboto, sans-serif; background: var(--bg); color: var(--fg); margin: 0; padding: 20px; }
  .wrap { max-width: 1100px; margin: 0 auto; }
  .card { background: var(--card); border-radius: 12px; box-shadow: 0 4px 12px rgba(0,0,0,0.08); padding: 20px; margin-bottom: 16px; }
  .muted { color: var(--muted); font-size: 13px; }
  .badge { display: inline-block; padding: 4px 12px; border-radius: 6px; font-size: 12px; font-weight: 600; text-transform: uppercase; color: #fff; }
  .badge.passed { background: var(--ok); }
  .badge.failed { background: var(--bad); }
  .badge.skipped { background: var(--skip); }
  table { width: 100%; border-collapse: collapse; font-size: 14px; }
  th, td { padding: 8px; border-bottom: 1px solid #eee; text-align: left; vertical-align: top; }
  th { background: #eef4ff; }
  .error { color: var(--bad); font-size: 13px; }
</style>
</head>
<body>
<div class="wrap">
  <h1>API Scenario Report</h1>
  <div class="muted">{{ summary.started_at or '-' }} &rarr; {{ summary.finished_at or '-' }}</div>

  <div class="card">
    <h2>Summary</h2>
    <table>
      <tr><th>Scenarios</th><th>Passed</th><th>Failed</th><th>Skipped</th><th>Pass rate</th><th>Duration</th></tr>
      <tr>
        <td>{{ summary.total }}</td><td>{{ summary.passed }}</td><td>{{ summary.failed }}</td>
        <td>{{ summary.skipped }}</td><td>{{ '%.1f' % summary.pass_rate }}%</td><td>{{ summary.duration_ms }}ms</td>
      </tr>
    </table>
  </div>

  {% for scenario in scenarios %}
  <div class="card">
    <h3>{{ scenario.scenario }} <span class="badge {{ scenario.status }}">{{ scenario.status }}</span></h3>
    <div class="muted">{{ scenario.duration_ms }}ms</div>
    {% if scenario.error %}<div class="error">{{ scenario.error }}</div>{% endif %}
    <table>
      <thead><tr><th>Step</th><th>Group</th><th>Status</th><th>Duration</th><th>Details</th></tr></thead>
      <tbody>
        {% for step in scenario.steps %}
        <tr>
          <td>{{ step.name }}</td>
          <td>{{ step.group or '-' }}</td>
          <td><span class="badge {{ step.status }}">{{ step.status }}</span></td>
          <td>{{ step.duration_ms }}ms</td>
          <td>
            {% if step.error %}<div class="error">{{ step.error }}</div>{% endif %}
            {% for a in step.assertions %}
            <div>{{ '✅' if a.passed else '❌' }} {{ a.message }}</div>
            {% endfor %}
          </td>
        </tr>
        {% endfor %}
      </tbody>
    </table>
  </div>
  {% endfor %}
</div>
</body>
</html>
"""

_env = Environment(
    loader=BaseLoader(),
    autoescape=select_autoescape(enabled_extensions=("html", "xml"), default_for_string=True),
)


class Reporter:
    """Aggregates scenario results and renders them"""

    def __init__(self, format: str = "console", output: str = "", stream: Optional[IO[str]] = None):
        if format not in REPORT_FORMATS:
            raise ValueError(f"unsupported report format: {format}")
        self.format = format
        self.output = Path(output) if output else None
        self.stream = stream
        self.results: List[ScenarioResult] = []
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    # ==================== Engine contract ====================

    def start(self) -> None:
        self.started_at = datetime.now().astimezone()
        self.results = []

    def add_scenario_result(self, result: ScenarioResult) -> None:
        self.results.append(result)

    def generate_report(self) -> str:
        self.finished_at = datetime.now().astimezone()
        text = self.render(self.format)

        if self.output is not None:
            self._atomic_text_write(self.output, text)
            logger.info(f"✅ {self.format} report → {self.output}")
        else:
            (self.stream or sys.stdout).write(text)
        return text

    # ==================== Summary ====================

    def summary(self) -> Dict[str, Any]:
        total = len(self.results)
        passed = sum(1 for r in self.results if r.status is StepStatus.PASSED)
        failed = sum(1 for r in self.results if r.status is StepStatus.FAILED)
        skipped = total - passed - failed

        steps: Dict[str, int] = {status.value: 0 for status in StepStatus}
        for r in self.results:
            for status, count in r.counts().items():
                steps[status] += count

        duration_ms = 0
        if self.started_at and self.finished_at:
            duration_ms = int((self.finished_at - self.started_at).total_seconds() * 1000)

        return {
            "total": total,
            "passed": passed,
            "failed": failed,
            "skipped": skipped,
            "pass_rate": (passed / total * 100.0) if total else 0.0,
            "steps": steps,
            "duration_ms": duration_ms,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    # ==================== Rendering ====================

    def render(self, format: str) -> str:
        if format == "json":
            return self.render_json()
        if format == "markdown":
            return self.render_markdown()
        if format == "html":
            return self.render_html()
        if format == "junit":
            return self.render_junit()
        return self.render_console()

    def render_console(self) -> str:
        s = self.summary()
        lines = ["", "=" * 60, "API Scenario Report", "=" * 60]
        for r in self.results:
            icon = "✅" if r.passed else "❌"
            lines.append(f"{icon} {r.scenario_name} ({r.duration_ms}ms)")
            for step in r.steps:
                lines.extend(self._console_step(step, indent="   "))
            if r.error:
                lines.append(f"   error: {r.error}")
        lines.append("-" * 60)
        lines.append(
            f"Scenarios: {s['total']} total, {s['passed']} passed, {s['failed']} failed "
            f"({s['pass_rate']:.1f}%)"
        )
        lines.append(
            f"Steps: {s['steps']['passed']} passed, {s['steps']['failed']} failed, "
            f"{s['steps']['skipped']} skipped"
        )
        lines.append(f"Duration: {s['duration_ms']}ms")
        return "\n".join(lines) + "\n"

    def _console_step(self, step: StepResult, indent: str) -> List[str]:
        marker = {"passed": "✓", "failed": "✗", "skipped": "-"}[step.status.value]
        label = f"{step.group}/{step.name}" if step.group else step.name
        lines = [f"{indent}{marker} {label} ({step.duration_ms}ms)"]
        if step.error:
            lines.append(f"{indent}    {step.error}")
        for child in step.children:
            lines.extend(self._console_step(child, indent + "    "))
        return lines

    def render_json(self) -> str:
        payload = {
            "summary": self.summary(),
            "scenarios": [r.to_dict() for r in self.results],
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def render_markdown(self) -> str:
        s = self.summary()
        out = [
            "# API Scenario Report",
            "",
            "| Scenarios | Passed | Failed | Skipped | Pass rate | Duration |",
            "|---|---|---|---|---|---|",
            f"| {s['total']} | {s['passed']} | {s['failed']} | {s['skipped']} | {s['pass_rate']:.1f}% | {s['duration_ms']}ms |",
            "",
        ]
        for r in self.results:
            out.append(f"## {'✅' if r.passed else '❌'} {r.scenario_name}")
            out.append("")
            if r.error:
                out.append(f"> {r.error}")
                out.append("")
            out.append("| Step | Group | Status | Duration | Error |")
            out.append("|---|---|---|---|---|")
            for step in r.steps:
                error = (step.error or "").replace("|", "\\|")
                out.append(f"| {step.name} | {step.group or '-'} | {step.status.value} | {step.duration_ms}ms | {error} |")
            out.append("")
        return "\n".join(out)

    def render_html(self) -> str:
        return _env.from_string(_HTML_TEMPLATE).render(
            summary=self.summary(),
            scenarios=[r.to_dict() for r in self.results],
        )

    def render_junit(self) -> str:
        root = ET.Element("testsuites", name="apiscenario")
        for r in self.results:
            suite = ET.SubElement(
                root,
                "testsuite",
                name=r.scenario_name,
                tests=str(len(r.steps)),
                failures=str(r.counts()["failed"]),
                skipped=str(r.counts()["skipped"]),
                time=f"{r.duration_ms / 1000:.3f}",
            )
            for step in r.steps:
                case = ET.SubElement(
                    suite,
                    "testcase",
                    name=step.name,
                    classname=step.group or r.scenario_name,
                    time=f"{step.duration_ms / 1000:.3f}",
                )
                if step.status is StepStatus.FAILED:
                    failure = ET.SubElement(case, "failure", message=step.error or "step failed")
                    failure.text = "\n".join(a.message for a in step.assertions if not a.passed)
                elif step.status is StepStatus.SKIPPED:
                    ET.SubElement(case, "skipped")
            if r.error and not r.steps:
                case = ET.SubElement(suite, "testcase", name=r.scenario_name, classname=r.scenario_name)
                ET.SubElement(case, "error", message=r.error)
        return ET.tostring(root, encoding="unicode", method="xml")

    # ==================== Helpers ====================

    @staticmethod
    def _atomic_text_write(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(path)
