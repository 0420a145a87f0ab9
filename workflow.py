# workflow.py — HealthPulse Collect
# Sequential multi-step writes with compensating actions (saga).

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Action = Callable[[Dict[str, Any]], Any]


@dataclass
class Step:
    name: str
    action: Action
    # receives the shared context and this step's own result
    compensate: Optional[Callable[[Dict[str, Any], Any], None]] = None


@dataclass
class StepRecord:
    name: str
    result: Any = None
    compensated: bool = False


class WorkflowError(Exception):
    def __init__(
        self,
        step: str,
        cause: BaseException,
        committed: List[str],
        compensated: List[str],
        compensation_failures: List[str],
    ):
        super().__init__(f"Step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause
        self.committed = committed
        self.compensated = compensated
        self.compensation_failures = compensation_failures

    @property
    def left_partial_data(self) -> bool:
        # committed rows that were not undone remain in the store
        return len(self.compensated) < len(self.committed)


@dataclass
class Saga:
    """
    Runs steps strictly in order, each awaiting the previous one.

    When a step raises, the steps already committed are compensated in
    reverse order (if compensate is enabled) and WorkflowError is raised
    with the original exception as its cause. No step is retried.
    """

    name: str
    steps: List[Step] = field(default_factory=list)
    compensate: bool = True

    def add(self, name: str, action: Action, compensate=None) -> "Saga":
        self.steps.append(Step(name=name, action=action, compensate=compensate))
        return self

    def run(self, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ctx: Dict[str, Any] = context if context is not None else {}
        done: List[StepRecord] = []
        for step in self.steps:
            try:
                result = step.action(ctx)
            except Exception as exc:
                logger.error("%s: step %r failed: %s", self.name, step.name, exc)
                compensated, failures = self._unwind(ctx, done)
                raise WorkflowError(
                    step.name,
                    exc,
                    committed=[r.name for r in done],
                    compensated=compensated,
                    compensation_failures=failures,
                ) from exc
            done.append(StepRecord(name=step.name, result=result))
        ctx["_steps"] = [r.name for r in done]
        return ctx

    def _unwind(self, ctx: Dict[str, Any], done: List[StepRecord]):
        compensated: List[str] = []
        failures: List[str] = []
        if not self.compensate:
            if done:
                logger.warning("%s: leaving %d committed step(s) in place", self.name, len(done))
            return compensated, failures
        by_name = {s.name: s for s in self.steps}
        for record in reversed(done):
            step = by_name[record.name]
            if step.compensate is None:
                continue
            try:
                step.compensate(ctx, record.result)
            except Exception as exc:
                # keep unwinding; the caller learns which undo failed
                logger.error("%s: compensation for %r failed: %s", self.name, record.name, exc)
                failures.append(record.name)
                continue
            record.compensated = True
            compensated.append(record.name)
            logger.warning("%s: compensated %r", self.name, record.name)
        return compensated, failures
