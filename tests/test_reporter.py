"""Tests for report rendering."""
from __future__ import annotations

import io
import json
from datetime import datetime, timedelta
from xml.etree import ElementTree as ET

import pytest

from apiscenario.reporter import Reporter
from apiscenario.results import AssertionResult, ScenarioResult, StepResult, StepStatus

T0 = datetime(2026, 1, 1, 12, 0, 0)


def _step(name, status=StepStatus.PASSED, error=None, group="", ms=10, assertions=None):
    return StepResult(
        name=name,
        group=group,
        status=status,
        started_at=T0,
        finished_at=T0 + timedelta(milliseconds=ms),
        error=error,
        assertions=assertions or [],
    )


def _results():
    ok = ScenarioResult(
        scenario_name="users",
        started_at=T0,
        finished_at=T0 + timedelta(milliseconds=30),
        steps=[_step("create"), _step("fetch", group="smoke"), _step("cleanup", StepStatus.SKIPPED)],
    )
    bad = ScenarioResult(
        scenario_name="<orders>",
        status=StepStatus.FAILED,
        started_at=T0,
        finished_at=T0 + timedelta(milliseconds=50),
        error="Step 'pay' failed",
        steps=[_step(
            "pay",
            StepStatus.FAILED,
            error="1 assertion(s) failed: expected 200 but got 500",
            assertions=[AssertionResult(passed=False, message="expected 200 but got 500", expected=200, actual=500)],
        )],
    )
    return [ok, bad]


def _reporter(format="console", **kwargs):
    reporter = Reporter(format=format, stream=io.StringIO(), **kwargs)
    reporter.start()
    for r in _results():
        reporter.add_scenario_result(r)
    return reporter


def test_invalid_format():
    with pytest.raises(ValueError, match="unsupported report format"):
        Reporter(format="pdf")


def test_summary_counts():
    reporter = _reporter()
    reporter.generate_report()
    s = reporter.summary()
    assert (s["total"], s["passed"], s["failed"], s["skipped"]) == (2, 1, 1, 0)
    assert s["pass_rate"] == 50.0
    assert s["steps"] == {"passed": 2, "failed": 1, "skipped": 1}
    assert s["started_at"] and s["finished_at"]


def test_empty_run_summary():
    reporter = Reporter(stream=io.StringIO())
    reporter.start()
    reporter.generate_report()
    assert reporter.summary()["pass_rate"] == 0.0


def test_console_goes_to_stream():
    reporter = _reporter()
    text = reporter.generate_report()
    assert reporter.stream.getvalue() == text
    assert "✅ users" in text
    assert "❌ <orders>" in text
    assert "✓ smoke/fetch" in text
    assert "- cleanup" in text
    assert "Scenarios: 2 total, 1 passed, 1 failed (50.0%)" in text


def test_json_is_parseable():
    payload = json.loads(_reporter("json").generate_report())
    assert payload["summary"]["total"] == 2
    scenario = payload["scenarios"][1]
    assert scenario["status"] == "failed"
    assert scenario["steps"][0]["assertions"][0]["actual"] == 500
    assert scenario["counts"] == {"passed": 0, "failed": 1, "skipped": 0}


def test_markdown():
    text = _reporter("markdown").generate_report()
    assert text.startswith("# API Scenario Report")
    assert "| 2 | 1 | 1 | 0 | 50.0% |" in text
    assert "## ❌ <orders>" in text
    assert "| pay | - | failed | 10ms |" in text


def test_html_escapes_names():
    text = _reporter("html").generate_report()
    assert "&lt;orders&gt;" in text
    assert "<orders>" not in text
    assert "expected 200 but got 500" in text


def test_junit():
    root = ET.fromstring(_reporter("junit").generate_report())
    suites = root.findall("testsuite")
    assert [s.get("name") for s in suites] == ["users", "<orders>"]
    assert suites[0].get("tests") == "3"
    assert suites[0].find("testcase[@name='cleanup']/skipped") is not None
    failure = suites[1].find("testcase/failure")
    assert failure.get("message").startswith("1 assertion(s) failed")
    assert failure.text == "expected 200 but got 500"


def test_output_file_is_written_atomically(tmp_path):
    out = tmp_path / "reports" / "run.json"
    reporter = _reporter("json", output=str(out))
    text = reporter.generate_report()

    assert out.read_text(encoding="utf-8") == text
    assert reporter.stream.getvalue() == ""
    assert list(out.parent.glob("*.tmp")) == []
