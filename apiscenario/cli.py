# apiscenario/cli.py
"""
Command line entry point.

    apiscenario run scenarios/ smoke.yaml --env staging --format html --output report.html

Exit codes: 0 all scenarios passed, 1 at least one failed, 2 the scenarios
or configuration could not be loaded, 130 interrupted.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from apiscenario.config import Settings
from apiscenario.engine import ExecutionEngine
from apiscenario.errors import ApiScenarioError
from apiscenario.loader import load_scenario_paths
from apiscenario.reporter import REPORT_FORMATS, Reporter

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _build_cli() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="apiscenario",
        description="Run declarative API test scenarios",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Run one scenario:
    apiscenario run scenarios/users.yaml

  Run a directory against staging, HTML report:
    apiscenario run scenarios/ --env staging --format html --output reports/run.html
""",
    )
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute scenario files or directories")
    run.add_argument("paths", nargs="+", help="Scenario files (.yaml/.yml/.json) or directories")
    run.add_argument("--config", "-c", help="YAML config file")
    run.add_argument("--env", "-e", help="Named environment from the config file")
    run.add_argument("--format", "-f", choices=REPORT_FORMATS, help="Report format")
    run.add_argument("--output", "-o", help="Write the report to this file")
    run.add_argument("--parallel", action="store_true", help="Run test groups concurrently")
    run.add_argument("--timeout", type=float, help="Default request timeout in seconds")
    run.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return p


def run(args: argparse.Namespace) -> int:
    try:
        settings = Settings.load(args.config)
        if args.env:
            settings = settings.merge_environment(args.env)
        if args.timeout is not None:
            settings = settings.model_copy(update={"timeout_sec": args.timeout})
        scenarios = list(load_scenario_paths(args.paths).values())
    except ApiScenarioError as e:
        logger.error(f"{e}")
        return 2

    if not scenarios:
        logger.error("No scenario files found")
        return 2

    if args.parallel:
        for scenario in scenarios:
            scenario.config.parallel = True

    reporter = Reporter(
        format=args.format or settings.report_format,
        output=args.output or settings.report_output,
    )
    engine = ExecutionEngine(settings=settings, reporter=reporter)
    results = engine.execute_scenarios(scenarios)
    return 0 if all(r.passed for r in results) else 1


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = _build_cli().parse_args(argv)
    setup_logging(verbose=getattr(args, "verbose", False))

    try:
        if args.command == "run":
            return run(args)
    except KeyboardInterrupt:
        print("\nCancelled by user")
        return 130
    return 2


if __name__ == "__main__":
    sys.exit(main())
