# orchestrator.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, as_completed
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Tuple

from . import dag
from .errors import StepExecutionFailed, VerificationError
from .ledger import DeploymentLedger
from .model import (
    DeployResult,
    ExecutionPlan,
    RunReport,
    RunState,
    Step,
    StepReport,
    StepStatus,
    VerificationOutcome,
)
from .registry import ALL, StepRegistry
from .verify import DEFAULT_TIMEOUT, Verifier

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Plans and runs deployment steps against one network.

    - Planning: tags -> dependency closure -> topological layers. Errors here
      are raised before any step runs.
    - Executing: layer by layer. A step whose ledger entry still has code on
      chain is skipped; otherwise its action runs and the result is written
      to the ledger before anything else happens.
    - Verification runs on background threads, at most `verify_workers` at
      a time, and never affects the run. The report waits for it at most
      `verify_timeout` seconds.

    `chain` only needs `has_code(address)`. `environment` is passed through
    to step actions untouched.
    """

    def __init__(
        self,
        registry: StepRegistry,
        ledger: DeploymentLedger,
        chain: Any,
        *,
        environment: Any = None,
        verifier: Verifier | None = None,
        max_workers: int = 1,
        verify_timeout: float = DEFAULT_TIMEOUT,
        verify_workers: int = 2,
    ):
        self.registry = registry
        self.ledger = ledger
        self.chain = chain
        self.environment = environment
        self.verifier = verifier
        self.max_workers = max(1, int(max_workers or 1))
        self.verify_timeout = verify_timeout
        self.verify_workers = max(1, verify_workers)
        self._lock = threading.Lock()

    @property
    def network(self) -> str:
        return self.ledger.network

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, tags: Iterable[str] = (ALL,)) -> ExecutionPlan:
        tags = list(tags) or [ALL]
        execution_plan = dag.plan(self.registry, tags)
        logger.info("plan for %s on %s: %s", tags, self.network, list(execution_plan.order))
        return execution_plan

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, tags: Iterable[str] = (ALL,)) -> RunReport:
        """
        Deploy the requested tags and everything they need.

        Planning errors (UnknownStep, CyclicDependency) propagate. A failing
        step does not: it ends the run in FAILED state with the error stored
        on the report, and everything finished before it stays in the ledger.
        """
        execution_plan = self.plan(tags)

        report = RunReport(network=self.network, plan=execution_plan, state=RunState.EXECUTING)
        report.steps = {name: StepReport(name) for name in execution_plan}

        gate = threading.BoundedSemaphore(self.verify_workers)
        pending: List[Tuple[str, str, Future]] = []
        try:
            for level_idx, layer in enumerate(execution_plan.layers):
                logger.debug("stage %d: %s", level_idx + 1, list(layer))
                self._run_layer(layer, report, gate, pending)
        except StepExecutionFailed as e:
            report.state = RunState.FAILED
            report.error = e
        else:
            report.state = RunState.COMPLETED
        finally:
            self._collect_verifications(report, pending)

        logger.info("run on %s finished: %s", self.network, report.state.value)
        return report

    def _run_layer(self, layer, report, gate, pending) -> None:
        if self.max_workers == 1 or len(layer) == 1:
            for name in layer:
                self._execute_step(name, report, gate, pending)
            return

        # Steps in one layer are independent; the next layer only starts once
        # all of these have returned (and so written the ledger).
        first_failure: StepExecutionFailed | None = None
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(self._execute_step, name, report, gate, pending): name
                for name in layer
            }
            for future in as_completed(futures):
                try:
                    future.result()
                except StepExecutionFailed as e:
                    if first_failure is None:
                        first_failure = e
        if first_failure is not None:
            raise first_failure

    def _execute_step(self, name: str, report: RunReport, gate, pending) -> DeployResult:
        step = self.registry.resolve(name)
        step_report = report.steps[name]

        try:
            result, status = self._deploy_or_skip(step, report)
        except Exception as e:
            step_report.status = StepStatus.FAILED
            step_report.error = f"{type(e).__name__}: {e}"
            logger.error("step %s failed: %s", name, step_report.error)
            raise StepExecutionFailed(name, e) from e

        with self._lock:
            report.results[name] = result
        step_report.status = status
        step_report.address = result.address
        logger.info("%s: %s (%s)", name, status.value, result.address)

        if result.freshly_deployed:
            self._schedule_verification(step, result, report, gate, pending)
        return result

    def _deploy_or_skip(self, step: Step, report: RunReport) -> Tuple[DeployResult, StepStatus]:
        entry = self.ledger.get(step.name)
        if entry is not None and self.chain.has_code(entry.address):
            if entry.last_run_freshly_deployed:
                self.ledger.put(step.name, replace(entry, last_run_freshly_deployed=False))
            return entry.to_result(), StepStatus.SKIPPED

        if entry is not None:
            logger.warning(
                "%s recorded at %s but no code there on %s, redeploying",
                step.name, entry.address, self.network,
            )

        deps = self._dependency_outputs(step, report)
        result = step.action(self.environment, deps)
        if not isinstance(result, DeployResult):
            raise TypeError(f"action returned {type(result).__name__}, expected DeployResult")

        # ledger first: dependents and verification only ever see committed results
        self.ledger.record(step.name, result)
        status = StepStatus.DEPLOYED if result.freshly_deployed else StepStatus.SKIPPED
        return result, status

    def _dependency_outputs(self, step: Step, report: RunReport) -> Dict[str, DeployResult]:
        outputs: Dict[str, DeployResult] = {}
        for dep in self.registry.dependencies_of(step):
            with self._lock:
                result = report.results.get(dep.name)
            if result is None:
                entry = self.ledger.get(dep.name)
                if entry is None:
                    raise RuntimeError(f"dependency '{dep.name}' of '{step.name}' has no recorded deployment")
                result = entry.to_result()
            outputs[dep.name] = result
        return outputs

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _schedule_verification(self, step: Step, result: DeployResult, report, gate, pending) -> None:
        if self.verifier is None or not step.verify:
            report.steps[step.name].verification = VerificationOutcome(
                step.name, result.address, verified=False, skipped=True,
            )
            return
        # Daemon threads: a verification abandoned at the deadline must not
        # keep the process alive after the report is out.
        future: Future = Future()
        thread = threading.Thread(
            target=self._verify_into,
            args=(future, gate, step.name, result),
            name=f"verify-{step.name}",
            daemon=True,
        )
        with self._lock:
            pending.append((step.name, result.address, future))
        thread.start()

    def _verify_into(self, future: Future, gate, name: str, result: DeployResult) -> None:
        with gate:
            if not future.set_running_or_notify_cancel():
                return
            future.set_result(self._verify(name, result))

    def _verify(self, name: str, result: DeployResult) -> VerificationOutcome:
        try:
            error = self.verifier.verify(result.address, result.constructor_args, contract=result.contract)
        except Exception as e:
            # verifiers are supposed to return errors, not raise them
            error = VerificationError(result.address, f"{type(e).__name__}: {e}")

        if error is None:
            logger.info("verified %s at %s", name, result.address)
            return VerificationOutcome(name, result.address, verified=True)

        logger.warning("verification of %s at %s failed: %s", name, result.address, error.reason)
        return VerificationOutcome(name, result.address, verified=False, reason=error.reason)

    def _collect_verifications(self, report: RunReport, pending) -> None:
        deadline = time.monotonic() + self.verify_timeout
        order = {name: i for i, name in enumerate(report.plan)}
        for name, address, future in sorted(pending, key=lambda p: order[p[0]]):
            remaining = max(0.0, deadline - time.monotonic())
            try:
                outcome = future.result(timeout=remaining)
            except FutureTimeout:
                future.cancel()
                logger.warning("verification of %s still running after %.0fs, giving up", name, self.verify_timeout)
                outcome = VerificationOutcome(name, address, verified=False, reason="timed out")
            report.verifications.append(outcome)
            report.steps[name].verification = outcome
