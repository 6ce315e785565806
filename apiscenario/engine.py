# apiscenario/engine.py
"""
Scenario execution engine.

Per scenario the stages run in a fixed order:

    Setup -> Before -> (Steps | Tests) -> Teardown -> After -> Finalize

- A failing Before hook aborts the scenario.
- Setup and legacy-step failures abort only when `config.failFast` is set.
- Test groups run one after another on the shared scenario context, or,
  with `config.parallel`, as concurrent asyncio tasks each on its own
  context clone. Only the result append is serialized.
- `continueOnFail` on a group keeps running its remaining steps (and
  data-driven iterations) after a failure.

Step pipeline: clear step scope -> bind variables -> condition -> build
request -> transport -> captures -> checks/assertions -> status.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from apiscenario.assertions import AssertionEngine, checks_to_assertions
from apiscenario.config import EnvironmentConfig, Settings
from apiscenario.data_loader import DataLoader
from apiscenario.errors import ConfigError, DataSourceError, ExtractionError, TransportError
from apiscenario.extraction import apply_captures, extract_by_shorthand, is_extractor
from apiscenario.models import AuthConfig, RetryConfig, Scenario, Step, TestGroup
from apiscenario.results import GroupResult, ScenarioResult, StepResult, StepStatus
from apiscenario.transport import HTTPResponse, HTTPTransport, ResolvedRequest, Transport
from apiscenario.values import is_truthy
from apiscenario.variables import Scope, VariableContext, has_placeholders

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


def _now() -> datetime:
    return datetime.now().astimezone()


# ==================== Result collection ====================

class ResultCollector:
    """Shared sink for step/group results; the lock covers only the append"""

    def __init__(self, result: ScenarioResult):
        self.result = result
        self._lock = asyncio.Lock()

    async def add_step(self, step: StepResult) -> None:
        async with self._lock:
            self.result.steps.append(step)

    async def add_group(self, group: GroupResult) -> None:
        async with self._lock:
            self.result.groups.append(group)


@dataclass
class _ScenarioRun:
    scenario: Scenario
    result: ScenarioResult
    collector: ResultCollector
    environment: Optional[EnvironmentConfig] = None

    def abort(self, error: str) -> None:
        self.result.status = StepStatus.FAILED
        self.result.error = error


# ==================== Engine ====================

class ExecutionEngine:
    """
    Runs scenarios against a transport and hands results to a reporter.

    Args:
        settings: immutable run configuration (base URL, headers, timeouts,
            retry policy, named environments)
        reporter: optional object with start / add_scenario_result /
            generate_report
        transport: optional `Transport`; by default an `HTTPTransport` is
            opened for the duration of each run
        progress_cb: optional callable receiving {"event": ..., ...} dicts
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        reporter: Any = None,
        transport: Optional[Transport] = None,
        progress_cb: Optional[ProgressCallback] = None,
        base_dir: Optional[str] = None,
    ):
        self.settings = settings or Settings()
        self.reporter = reporter
        self.transport = transport
        self.base_dir = base_dir
        self._progress_cb = progress_cb

        self.ctx = VariableContext()
        self.ctx.update(Scope.GLOBAL, self.settings.variables)
        self.ctx.add_builtins()

    # ==================== Public API ====================

    def execute_scenarios(self, scenarios: Sequence[Scenario]) -> List[ScenarioResult]:
        """Synchronous wrapper for execute_scenarios_async"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            raise RuntimeError(
                "execute_scenarios() called inside running loop; use await execute_scenarios_async()"
            )

        return asyncio.run(self.execute_scenarios_async(scenarios))

    async def execute_scenarios_async(self, scenarios: Sequence[Scenario]) -> List[ScenarioResult]:
        results: List[ScenarioResult] = []
        if self.reporter is not None:
            self.reporter.start()
        self._emit("run_start", scenarios=len(scenarios))

        async with self._session():
            for scenario in scenarios:
                result = await self.run_scenario(scenario)
                results.append(result)
                if self.reporter is not None:
                    self.reporter.add_scenario_result(result)

        if self.reporter is not None:
            self.reporter.generate_report()

        passed = sum(1 for r in results if r.passed)
        self._emit("run_done", total=len(results), passed=passed, failed=len(results) - passed)
        return results

    async def run_scenario(self, scenario: Scenario) -> ScenarioResult:
        async with self._session():
            return await self._run_scenario(scenario)

    # ==================== Scenario ====================

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[Transport]:
        if self.transport is not None:
            yield self.transport
            return

        transport = HTTPTransport(self.settings)
        self.transport = transport
        try:
            yield transport
        finally:
            self.transport = None
            await transport.aclose()

    async def _run_scenario(self, scenario: Scenario) -> ScenarioResult:
        result = ScenarioResult(scenario_name=scenario.name, started_at=_now())
        run = _ScenarioRun(scenario=scenario, result=result, collector=ResultCollector(result))
        logger.info(f"▶️ Running scenario: {scenario.name}")
        self._emit("scenario_start", name=scenario.name)

        ctx = self.ctx.clone()
        ctx.update(Scope.GLOBAL, scenario.env)

        try:
            self._prepare(run, ctx)
        except (ConfigError, DataSourceError) as e:
            run.abort(str(e))
            return self._finish(run, ctx)

        await self._run_stages(run, ctx)
        return self._finish(run, ctx)

    def _prepare(self, run: _ScenarioRun, ctx: VariableContext) -> None:
        scenario = run.scenario
        env_name = scenario.config.environment
        if env_name:
            environment = self.settings.get_environment(env_name)
            if environment is None:
                raise ConfigError(f"unknown environment: {env_name}")
            run.environment = environment
            ctx.update(Scope.LOCAL, environment.variables)

        ctx.update(Scope.LOCAL, ctx.interpolate(scenario.variables))

        loader = DataLoader(scenario.base_dir or self.base_dir)
        ctx.update(Scope.LOCAL, loader.load_all(scenario.data))

    async def _run_stages(self, run: _ScenarioRun, ctx: VariableContext) -> None:
        scenario = run.scenario
        fail_fast = scenario.config.fail_fast

        for step in scenario.setup:
            step_result = await self._run_step(run, ctx, step, group="setup")
            if step_result.status is StepStatus.FAILED and fail_fast:
                run.abort(f"Setup step '{step.name}' failed")
                return

        if scenario.before is not None:
            before = await self._run_group(run, ctx, scenario.before, "before")
            if before.status is StepStatus.FAILED:
                failed = next((s for s in before.steps if s.status is StepStatus.FAILED), None)
                run.abort(f"Before hook step '{failed.name}' failed" if failed else "Before hook failed")
                return

        for step in scenario.steps:
            step_result = await self._run_step(run, ctx, step, group="")
            if step_result.status is StepStatus.FAILED and fail_fast:
                run.abort(f"Step '{step.name}' failed")
                return

        if scenario.tests:
            await self._run_tests(run, ctx)

        for step in scenario.teardown:
            await self._run_step(run, ctx, step, group="teardown")

        if scenario.after is not None:
            await self._run_group(run, ctx, scenario.after, "after")

    def _finish(self, run: _ScenarioRun, ctx: VariableContext) -> ScenarioResult:
        result = run.result
        result.finished_at = _now()
        result.variables = ctx.get_all()

        if result.status is not StepStatus.FAILED:
            failed_groups = [g for g in result.groups if g.status is StepStatus.FAILED]
            if failed_groups or any(s.status is StepStatus.FAILED for s in result.steps):
                result.status = StepStatus.FAILED
                errors = [f"{g.name}: {g.error}" for g in failed_groups if g.error]
                result.error = "; ".join(errors) or None

        if result.passed:
            logger.info(f"✅ Scenario passed: {result.scenario_name} ({result.duration_ms}ms)")
        else:
            logger.warning(f"❌ Scenario failed: {result.scenario_name} - {result.error or 'step failures'}")

        self._emit(
            "scenario_done",
            name=result.scenario_name,
            status=result.status.value,
            duration_ms=result.duration_ms,
            **result.counts(),
        )
        return result

    # ==================== Test groups ====================

    async def _run_tests(self, run: _ScenarioRun, ctx: VariableContext) -> None:
        groups = list(run.scenario.tests.values())
        config = run.scenario.config

        if not config.parallel:
            for group in groups:
                await self._run_group(run, ctx, group, group.name)
            return

        semaphore = asyncio.Semaphore(config.concurrency) if config.concurrency > 0 else None

        async def worker(group: TestGroup, group_ctx: VariableContext) -> GroupResult:
            if semaphore is None:
                return await self._run_group(run, group_ctx, group, group.name)
            async with semaphore:
                return await self._run_group(run, group_ctx, group, group.name)

        # Clone at fan-out so every group starts from the same snapshot
        outcomes = await asyncio.gather(
            *(worker(group, ctx.clone()) for group in groups),
            return_exceptions=True,
        )
        for group, outcome in zip(groups, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Test group '{group.name}' crashed: {outcome!r}")
                await run.collector.add_group(GroupResult(
                    name=group.name,
                    status=StepStatus.FAILED,
                    error=f"internal error: {outcome!r}",
                ))

    async def _run_group(
        self,
        run: _ScenarioRun,
        ctx: VariableContext,
        group: TestGroup,
        name: str,
    ) -> GroupResult:
        group_result = GroupResult(name=name, started_at=_now())

        if group.skip:
            group_result.status = StepStatus.SKIPPED
            group_result.finished_at = _now()
            await run.collector.add_group(group_result)
            return group_result

        ctx.update(Scope.LOCAL, group.env)

        if group.data_driven is None:
            await self._run_group_steps(run, ctx, group, group_result, suffix="")
        else:
            try:
                records = self._resolve_records(ctx, group.data_driven.source)
            except DataSourceError as e:
                group_result.status = StepStatus.FAILED
                group_result.error = str(e)
                records = []
            for i, record in enumerate(records, start=1):
                iteration_ctx = ctx.clone()
                iteration_ctx.set_local(group.data_driven.variable, record)
                ok = await self._run_group_steps(run, iteration_ctx, group, group_result, suffix=f" (data {i})")
                if not ok and not group.continue_on_fail:
                    break

        failed = [s for s in group_result.steps if s.status is StepStatus.FAILED]
        if failed:
            group_result.status = StepStatus.FAILED
            group_result.error = group_result.error or f"step '{failed[0].name}' failed: {failed[0].error}"

        group_result.finished_at = _now()
        group_result.variables = ctx.get_all()
        await run.collector.add_group(group_result)
        return group_result

    async def _run_group_steps(
        self,
        run: _ScenarioRun,
        ctx: VariableContext,
        group: TestGroup,
        group_result: GroupResult,
        suffix: str,
    ) -> bool:
        ok = True
        for step in group.steps:
            step_result = await self._run_step(
                run, ctx, step, group=group_result.name, suffix=suffix, continue_on_fail=group.continue_on_fail,
            )
            group_result.steps.append(step_result)
            if step_result.status is StepStatus.FAILED:
                ok = False
                if not group.continue_on_fail:
                    break
        return ok

    # ==================== Steps ====================

    async def _run_step(
        self,
        run: _ScenarioRun,
        ctx: VariableContext,
        step: Step,
        group: str,
        suffix: str = "",
        continue_on_fail: bool = False,
    ) -> StepResult:
        name = f"{step.name}{suffix}"
        if step.data_driven is None:
            step_result = await self._execute_step(run, ctx, step, group, name)
        else:
            step_result = await self._execute_data_driven_step(run, ctx, step, group, name, continue_on_fail)

        await run.collector.add_step(step_result)
        self._emit(
            "step_done",
            scenario=run.scenario.name,
            group=group,
            name=step_result.name,
            status=step_result.status.value,
            duration_ms=step_result.duration_ms,
        )
        return step_result

    async def _execute_data_driven_step(
        self,
        run: _ScenarioRun,
        ctx: VariableContext,
        step: Step,
        group: str,
        name: str,
        continue_on_fail: bool = False,
    ) -> StepResult:
        parent = StepResult(name=name, group=group, started_at=_now())
        try:
            records = self._resolve_records(ctx, step.data_driven.source)
        except DataSourceError as e:
            parent.fail(str(e))
            records = []

        for i, record in enumerate(records, start=1):
            iteration_ctx = ctx.clone()
            iteration_ctx.set_local(step.data_driven.variable, record)
            child = await self._execute_step(run, iteration_ctx, step, group, f"{name} (data {i})")
            parent.children.append(child)
            if child.status is StepStatus.FAILED and parent.passed:
                parent.fail(f"iteration {i} failed: {child.error}")
            if not parent.passed and not continue_on_fail:
                break

        parent.finished_at = _now()
        parent.variables = ctx.get_all()
        return parent

    async def _execute_step(
        self,
        run: _ScenarioRun,
        ctx: VariableContext,
        step: Step,
        group: str,
        name: str,
    ) -> StepResult:
        result = StepResult(name=name, group=group, started_at=_now())

        ctx.clear_step()
        deferred: Dict[str, str] = {}
        for key, value in step.variables.items():
            if step.is_legacy and is_extractor(value):
                deferred[key] = value
                continue
            ctx.set_step(key, ctx.interpolate(value))

        if step.condition and not self._condition_met(ctx, step.condition):
            logger.debug(f"Step '{name}' skipped: condition {step.condition!r} not met")
            result.status = StepStatus.SKIPPED
            return self._finish_step(result, ctx)

        if not step.has_request:
            # Variable-only step: promote its bindings to the scenario
            for key in step.variables:
                if key not in deferred:
                    ctx.set_local(key, ctx.get(key)[0])
            return self._finish_step(result, ctx)

        if step.is_legacy and step.type != "http":
            result.fail(f"Unsupported step type: {step.type}")
            return self._finish_step(result, ctx)

        try:
            request = self._build_request(run, ctx, step)
            result.request = request.to_dict()
            response = await self.transport.execute(request)
        except TransportError as e:
            result.fail(str(e))
            return self._finish_step(result, ctx)

        result.response = response.to_dict(include_body=True)
        apply_captures(step.capture, response, ctx)

        assertions = (
            checks_to_assertions(step.http.check if step.http is not None else None)
            + checks_to_assertions(step.check)
            + list(step.assertions)
        )
        assertion_results, engine_error = AssertionEngine(ctx).run_assertions(assertions, response)
        result.assertions = assertion_results

        if step.is_legacy:
            self._apply_legacy_extractors(ctx, deferred, response)
            ctx.set_local("last_status", response.status_code)
            ctx.set_local("last_response", self._response_snapshot(response))

        failed = [a for a in assertion_results if not a.passed]
        if engine_error:
            result.fail(engine_error)
        elif failed:
            result.fail(f"{len(failed)} assertion(s) failed: {failed[0].message}")

        return self._finish_step(result, ctx)

    @staticmethod
    def _finish_step(result: StepResult, ctx: VariableContext) -> StepResult:
        result.finished_at = _now()
        result.variables = ctx.get_all()
        return result

    # ==================== Step helpers ====================

    @staticmethod
    def _condition_met(ctx: VariableContext, condition: str) -> bool:
        """Single-variable truthiness; unresolved means skip"""
        value, found = ctx.resolve_reference(condition)
        if found:
            return is_truthy(value)
        if not has_placeholders(condition):
            value, found = ctx.get_nested(condition.strip())
            return is_truthy(value) if found else False
        text = ctx.interpolate_string(condition)
        if has_placeholders(text):
            return False
        return is_truthy(text)

    @staticmethod
    def _resolve_records(ctx: VariableContext, source: str) -> List[Dict[str, Any]]:
        value, found = ctx.resolve_reference(source)
        if not found:
            value, found = ctx.get_nested(source.strip())
        if not found:
            raise DataSourceError(f"data source '{source}' not found")
        if not isinstance(value, list) or not all(isinstance(r, dict) for r in value):
            raise DataSourceError(f"data source '{source}' must be a list of records")
        return value

    def _build_request(self, run: _ScenarioRun, ctx: VariableContext, step: Step) -> ResolvedRequest:
        config = run.scenario.config
        if step.http is not None:
            spec = step.http
            request = ResolvedRequest(
                method=spec.method,
                url=ctx.interpolate_string(spec.url),
                headers=ctx.interpolate_map(spec.headers),
                query=ctx.interpolate_map(spec.query),
                body=ctx.interpolate(spec.body),
                json_body=ctx.interpolate(spec.json_body),
                auth=self._resolve_auth(ctx, spec.auth),
                cookies=ctx.interpolate_map(spec.cookies),
            )
        else:
            spec = step.request
            request = ResolvedRequest(
                method=spec.method or "GET",
                url=ctx.interpolate_string(spec.url),
                headers=ctx.interpolate_map(spec.headers),
                query=ctx.interpolate_map(spec.query),
                body=ctx.interpolate(spec.body),
                auth=self._resolve_auth(ctx, spec.auth),
                cookies=ctx.interpolate_map(spec.cookies),
                follow_redirects=spec.follow_redirect,
            )

        http_config = config.http
        request.timeout = step.timeout or (http_config.timeout if http_config else None) or config.timeout
        if request.follow_redirects is None and http_config is not None:
            request.follow_redirects = http_config.follow_redirects

        if step.retry is not None:
            request.retry = step.retry
        elif config.retries > 0:
            request.retry = RetryConfig(count=config.retries, delay=self.settings.retry_delay_sec)

        if run.environment is not None:
            if run.environment.base_url:
                request.base_url = run.environment.base_url
            request.headers = {**run.environment.headers, **request.headers}

        return request

    @staticmethod
    def _resolve_auth(ctx: VariableContext, auth: Optional[AuthConfig]) -> Optional[AuthConfig]:
        if auth is None:
            return None
        return auth.model_copy(update={
            "username": ctx.interpolate_string(auth.username),
            "password": ctx.interpolate_string(auth.password),
            "token": ctx.interpolate_string(auth.token),
            "config": ctx.interpolate(auth.config),
        })

    @staticmethod
    def _apply_legacy_extractors(ctx: VariableContext, extractors: Dict[str, str], response: HTTPResponse) -> None:
        for key, spec in extractors.items():
            try:
                value = extract_by_shorthand(response, spec)
            except ExtractionError as e:
                logger.debug(f"Variable '{key}' not extracted ({spec}): {e}")
                continue
            ctx.set_step(key, value)
            ctx.set_local(key, value)

    @staticmethod
    def _response_snapshot(response: HTTPResponse) -> Dict[str, Any]:
        try:
            body = json.loads(response.body_text)
        except ValueError:
            body = response.body_text
        return {
            "status_code": response.status_code,
            "headers": {k: v[0] if len(v) == 1 else v for k, v in response.headers.items()},
            "body": body,
            "elapsed_ms": response.elapsed_ms,
            "size": response.size,
        }

    # ==================== Internals ====================

    def _emit(self, event: str, **data: Any) -> None:
        """Emit progress event"""
        if self._progress_cb:
            try:
                self._progress_cb({"event": event, **data})
            except Exception:
                logger.debug("progress_cb failed", exc_info=True)
