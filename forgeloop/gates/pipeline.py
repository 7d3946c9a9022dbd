"""
Gate pipeline: run the requested gates and aggregate one verdict.

Gates are read-only checks against the same tree, so they run
concurrently in a thread pool. Results are always reported in the order
the gates were requested. Gate-level problems (unknown name, timeout,
crash, cancellation) become GateResults; nothing raises past run().
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Mapping

from forgeloop.lib.config import ForgeConfig
from forgeloop.lib.types import GateError, GateResult, PipelineResult
from .base import Checker, crash_error, timeout_error, with_remediation

logger = logging.getLogger(__name__)

MAX_ERRORS_PER_GATE = 50

# Extra seconds the pipeline waits beyond a gate's timeout before giving up
# on a checker that does not enforce its own timeout
DEFAULT_TIMEOUT_GRACE = 5.0


def unknown_gate_result(name: str) -> GateResult:
    return GateResult(
        gate=name,
        passed=True,
        warnings=(f"{name} is not in the verify pipeline",),
    )


def cancelled_gate_result(name: str) -> GateResult:
    return GateResult(
        gate=name,
        passed=False,
        errors=(GateError(
            message=f"{name} was cancelled before it started",
            remediation="The run was stopped. Re-run verification.",
        ),),
    )


def cap_errors(result: GateResult, limit: int = MAX_ERRORS_PER_GATE) -> GateResult:
    """Keep the first `limit` errors and append one entry counting the rest."""
    if len(result.errors) <= limit:
        return result
    omitted = len(result.errors) - limit
    summary = GateError(message=f"... {omitted} more diagnostics omitted")
    return replace(result, errors=result.errors[:limit] + (summary,))


class Pipeline:
    """
    Runs gates by name against a project tree.

    Args:
        checkers: Gate name -> Checker. Names not in this mapping are unknown
            gates and pass with a warning.
        config: Supplies per-gate timeouts and the default gate list.
        stop_event: When set, gates not yet started are reported as cancelled.
    """

    def __init__(
        self,
        checkers: Mapping[str, Checker],
        config: ForgeConfig | None = None,
        stop_event: threading.Event | None = None,
        max_errors: int = MAX_ERRORS_PER_GATE,
        timeout_grace: float = DEFAULT_TIMEOUT_GRACE,
    ):
        self.checkers = dict(checkers)
        self.config = config or ForgeConfig()
        self.stop_event = stop_event
        self.max_errors = max_errors
        self.timeout_grace = timeout_grace

    def run(self, project_dir: Path, gate_names: Iterable[str] | None = None) -> PipelineResult:
        """Run gates (config gates when None) and return the ordered verdict."""
        names = list(gate_names) if gate_names is not None else list(self.config.gates)
        results: list[GateResult | None] = [None] * len(names)
        pending: list[tuple[int, str, Future, float]] = []

        known = [n for n in names if n in self.checkers]
        pool = ThreadPoolExecutor(max_workers=max(1, len(known)), thread_name_prefix="gate")
        try:
            for index, name in enumerate(names):
                checker = self.checkers.get(name)
                if checker is None:
                    logger.warning(f"Gate {name} is not in the verify pipeline, skipping")
                    results[index] = unknown_gate_result(name)
                    continue
                timeout = self.config.gate_timeout(name, checker.default_timeout)
                future = pool.submit(self._invoke, name, checker, project_dir, timeout)
                pending.append((index, name, future, time.monotonic() + timeout + self.timeout_grace))

            for index, name, future, deadline in pending:
                try:
                    result = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeout:
                    timeout = self.config.gate_timeout(name, self.checkers[name].default_timeout)
                    logger.warning(f"Gate {name} did not return within {timeout:g}s")
                    result = GateResult(gate=name, passed=False, errors=(timeout_error(name, timeout),),
                                        duration_ms=int(timeout * 1000))
                results[index] = result
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        pipeline_result = PipelineResult(gates=tuple(results))
        logger.info(f"Pipeline {pipeline_result.result}: "
                    + ", ".join(f"{g.gate}={'pass' if g.passed else 'fail'}" for g in pipeline_result.gates))
        return pipeline_result

    def _invoke(self, name: str, checker: Checker, project_dir: Path, timeout: float) -> GateResult:
        if self.stop_event is not None and self.stop_event.is_set():
            logger.info(f"Gate {name} cancelled")
            return cancelled_gate_result(name)

        logger.info(f"Running gate {name}")
        start = time.monotonic()
        try:
            result = checker.invoke(project_dir, timeout)
        except Exception as e:
            logger.exception(f"Gate {name} crashed")
            result = GateResult(gate=name, passed=False, errors=(crash_error(name, f"{type(e).__name__}: {e}"),))

        if result.gate != name:
            result = replace(result, gate=name)
        if not result.passed and not result.errors:
            result = replace(result, errors=(GateError(message=f"{name} failed without reporting any errors"),))
        result = replace(
            result,
            errors=with_remediation(name, list(result.errors)),
            duration_ms=result.duration_ms or int((time.monotonic() - start) * 1000),
        )
        result = cap_errors(result, self.max_errors)

        logger.debug(f"Gate {name} finished in {result.duration_ms}ms ({len(result.errors)} errors)")
        return result
