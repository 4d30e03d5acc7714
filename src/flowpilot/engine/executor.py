"""Graph walker with run control, loop handling and per-node logging."""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

import structlog

from ..browser.driver import BrowserDriver
from ..conditions.evaluator import ConditionalEvaluator
from ..core.config import EngineConfig
from ..core.errors import (
    DriverFailureError,
    EntryNodeError,
    EvaluationError,
    FlowError,
    RunStoppedError,
    UnknownNodeError,
)
from ..core.variables import VariableStore
from ..graph.model import ENTRY_NODE_ID, Automation, ConditionalNode, Graph, StepNode
from ..steps.library import StepLibrary

logger = structlog.get_logger()


class RunState(Enum):
    """Lifecycle of a single run."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


class RunControl:
    """
    Cooperative pause/stop token for one run.

    The walker calls ``checkpoint()`` before every node. Pausing blocks
    there until ``resume()`` or ``stop()``; stopping makes the next
    checkpoint abort the run.
    """

    def __init__(self):
        self._running = asyncio.Event()
        self._running.set()
        self._stopped = False
        self.state = RunState.IDLE

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def paused(self) -> bool:
        return not self._running.is_set() and not self._stopped

    def pause(self) -> None:
        if self._stopped:
            return
        self._running.clear()
        if self.state == RunState.RUNNING:
            self.state = RunState.PAUSED

    def resume(self) -> None:
        self._running.set()
        if self.state == RunState.PAUSED:
            self.state = RunState.RUNNING

    def stop(self) -> None:
        self._stopped = True
        self._running.set()

    async def checkpoint(self, node_id: Optional[str] = None) -> None:
        """Wait while paused; raise RunStoppedError once stopped."""
        if not self._running.is_set():
            logger.info("run_paused", node_id=node_id)
            await self._running.wait()
            if not self._stopped:
                logger.info("run_resumed", node_id=node_id)
        if self._stopped:
            raise RunStoppedError(node_id=node_id)


@dataclass
class ExecutionLogEntry:
    """One step or condition execution."""
    step_id: str
    success: bool
    error: Optional[str] = None
    screenshot: Optional[str] = None
    node_id: Optional[str] = None
    kind: str = "step"  # step | condition
    result: dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0

    def to_dict(self) -> dict[str, Any]:
        data = {
            "stepId": self.step_id,
            "nodeId": self.node_id,
            "kind": self.kind,
            "success": self.success,
            "result": self.result,
            "durationMs": round(self.duration_ms, 2),
        }
        if self.error is not None:
            data["error"] = self.error
        if self.screenshot is not None:
            data["screenshot"] = self.screenshot
        return data


@dataclass
class ExecutionLog:
    """Outcome of one run: entries in execution order plus the visit sequence."""
    id: str
    automation_id: Optional[str]
    timestamp: datetime
    success: bool = False
    duration: float = 0
    status: RunState = RunState.IDLE
    steps: list[ExecutionLogEntry] = field(default_factory=list)
    visited: list[str] = field(default_factory=list)
    error: Optional[str] = None
    variables: dict[str, str] = field(default_factory=dict)

    @property
    def failed_entry(self) -> Optional[ExecutionLogEntry]:
        return next((e for e in self.steps if not e.success), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "automationId": self.automation_id,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "duration": round(self.duration, 3),
            "status": self.status.value,
            "steps": [e.to_dict() for e in self.steps],
            "visited": list(self.visited),
            "error": self.error,
            "variables": dict(self.variables),
        }


@dataclass
class _Run:
    graph: Graph
    variables: VariableStore
    driver: BrowserDriver
    control: RunControl
    log: ExecutionLog


class ExecutionEngine:
    """
    Walks an automation graph from the entry node.

    Walk rules:
    - Depth-first over an explicit stack, successors in edge order
    - Each node runs at most once per walk (visited set)
    - Step nodes follow their outgoing edge; conditionals follow the
      "if" edge when true, the "else" edge when false
    - A missing branch edge is a dead end, not an error
    - loopUntilFalse re-runs its "if" branch while the condition holds,
      up to maxIterations, then continues on "else"

    Any failure aborts the run with one failed log entry. The engine
    never mutates the graph.
    """

    def __init__(
        self,
        library: Optional[StepLibrary] = None,
        evaluator: Optional[ConditionalEvaluator] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.evaluator = evaluator or (library.evaluator if library else ConditionalEvaluator())
        self.library = library or StepLibrary(evaluator=self.evaluator)
        self.config = config or EngineConfig()

    async def run(
        self,
        graph: Union[Automation, Graph],
        variables: Optional[VariableStore],
        driver: BrowserDriver,
        control: Optional[RunControl] = None,
        automation_id: Optional[str] = None,
    ) -> ExecutionLog:
        """
        Execute the graph against the driver.

        Args:
            graph: Automation document or an indexed Graph
            variables: Run variable store (a fresh one when None)
            driver: Browser driver that performs the steps
            control: Pause/stop token
            automation_id: Recorded in the log (defaults to the automation id)

        Returns:
            ExecutionLog with a terminal status of COMPLETED, FAILED or STOPPED
        """
        if isinstance(graph, Automation):
            automation_id = automation_id or graph.id
            graph = Graph.from_automation(graph)

        variables = variables if variables is not None else VariableStore()
        control = control or RunControl()
        log = ExecutionLog(
            id=uuid.uuid4().hex,
            automation_id=automation_id,
            timestamp=datetime.now(),
        )
        run = _Run(graph=graph, variables=variables, driver=driver, control=control, log=log)

        control.state = RunState.RUNNING
        log.status = RunState.RUNNING
        start_time = time.monotonic()
        logger.info("run_started", run_id=log.id, automation_id=automation_id, nodes=len(graph))

        try:
            if ENTRY_NODE_ID not in graph:
                raise EntryNodeError(f"Entry node {ENTRY_NODE_ID} is missing", node_id=ENTRY_NODE_ID)
            await self._walk(run, [ENTRY_NODE_ID], set(), ())
            log.status = RunState.COMPLETED

        except RunStoppedError as e:
            log.status = RunState.STOPPED
            log.error = e.message
            logger.warning("run_stopped", run_id=log.id, node_id=e.context.get("node_id"))

        except FlowError as e:
            log.status = RunState.FAILED
            log.error = e.message
            logger.error("run_failed", run_id=log.id, error=e.to_dict())

        log.duration = time.monotonic() - start_time
        log.success = log.status == RunState.COMPLETED and all(e.success for e in log.steps)
        log.variables = variables.snapshot()
        control.state = log.status

        logger.info(
            "run_completed",
            run_id=log.id,
            status=log.status.value,
            success=log.success,
            executed=len(log.steps),
            duration_s=round(log.duration, 3),
        )
        return log

    async def _walk(
        self,
        run: _Run,
        start: list[str],
        visited: set[str],
        loops: tuple[str, ...],
    ) -> None:
        """Visit every node reachable from start that is not yet in visited."""
        stack = list(reversed(start))

        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue

            await run.control.checkpoint(node_id)
            visited.add(node_id)

            node = run.graph.node(node_id)
            if node is None:
                raise UnknownNodeError(node_id)
            run.log.visited.append(node_id)

            if isinstance(node, StepNode):
                await self._execute_step(run, node)
                successors = run.graph.outgoing(node_id)
            elif node.data.condition_type == "loopUntilFalse":
                await self._execute_loop(run, node, visited, loops)
                successors = run.graph.branch(node_id, "else")
            else:
                result = await self._evaluate(run, node)
                successors = run.graph.branch(node_id, "if" if result else "else")

            stack.extend(reversed([edge.target for edge in successors]))

    async def _execute_loop(
        self,
        run: _Run,
        node: ConditionalNode,
        visited: set[str],
        loops: tuple[str, ...],
    ) -> None:
        """
        Run the "if" branch of a loopUntilFalse node until its condition fails.

        Each iteration walks the body with a fresh visited set seeded with
        the active loop nodes, so an edge back into the loop ends the
        iteration. Body nodes join the outer visited set afterwards.
        """
        data = node.data
        cap = data.max_iterations or self.config.max_loop_iterations
        active = loops + (node.id,)
        body = [edge.target for edge in run.graph.branch(node.id, "if")]
        index = data.start_index
        iterations = 0

        while iterations < cap:
            if data.index_variable:
                run.variables.set(data.index_variable, index)
            if iterations:
                await run.control.checkpoint(node.id)

            if not await self._evaluate(run, node):
                break

            iterations += 1
            body_visited = set(active)
            await self._walk(run, body, body_visited, active)
            visited.update(body_visited - set(active))
            index += data.increment
        else:
            logger.warning("loop_iteration_cap_reached", node_id=node.id, cap=cap)

        logger.info("loop_finished", node_id=node.id, iterations=iterations)

    async def _execute_step(self, run: _Run, node: StepNode) -> None:
        step = node.step
        start_time = time.monotonic()
        logger.info("step_started", node_id=node.id, step_id=step.id, step_type=step.type)

        try:
            outcome = await asyncio.wait_for(
                self.library.dispatch(step, run.driver, run.variables),
                timeout=self.config.step_timeout_seconds,
            )
        except Exception as e:
            error = self._as_flow_error(e, step.id, step.type)
            run.log.steps.append(ExecutionLogEntry(
                step_id=step.id,
                node_id=node.id,
                success=False,
                error=error.message,
                screenshot=getattr(error, "screenshot", None),
                duration_ms=(time.monotonic() - start_time) * 1000,
            ))
            logger.error(
                "step_failed",
                node_id=node.id,
                step_id=step.id,
                step_type=step.type,
                error=error.message,
            )
            if error is e:
                raise
            raise error from e

        run.log.steps.append(ExecutionLogEntry(
            step_id=step.id,
            node_id=node.id,
            success=True,
            screenshot=outcome.screenshot,
            result=dict(outcome.data),
            duration_ms=(time.monotonic() - start_time) * 1000,
        ))
        logger.info("step_completed", node_id=node.id, step_id=step.id, step_type=step.type)

    async def _evaluate(self, run: _Run, node: ConditionalNode) -> bool:
        data = node.data
        start_time = time.monotonic()

        try:
            result = await asyncio.wait_for(
                self.evaluator.evaluate(
                    data.condition_type,
                    data.selector,
                    run.driver,
                    comparison_op=data.comparison_op,
                    expected_value=data.expected_value,
                    variables=run.variables,
                    node_id=node.id,
                ),
                timeout=self.config.step_timeout_seconds,
            )
        except Exception as e:
            if isinstance(e, FlowError):
                error = e
            elif isinstance(e, asyncio.TimeoutError):
                error = EvaluationError(
                    f"Condition timed out after {self.config.step_timeout_seconds}s",
                    node_id=node.id,
                )
            else:
                error = EvaluationError(str(e) or type(e).__name__, node_id=node.id)
            run.log.steps.append(ExecutionLogEntry(
                step_id=node.id,
                node_id=node.id,
                kind="condition",
                success=False,
                error=error.message,
                duration_ms=(time.monotonic() - start_time) * 1000,
            ))
            logger.error("condition_failed", node_id=node.id, error=error.message)
            if error is e:
                raise
            raise error from e

        run.log.steps.append(ExecutionLogEntry(
            step_id=node.id,
            node_id=node.id,
            kind="condition",
            success=True,
            result={"conditionResult": result},
            duration_ms=(time.monotonic() - start_time) * 1000,
        ))
        return result

    def _as_flow_error(self, error: Exception, step_id: str, step_type: str) -> FlowError:
        if isinstance(error, FlowError):
            return error
        if isinstance(error, asyncio.TimeoutError):
            return DriverFailureError(
                f"Step timed out after {self.config.step_timeout_seconds}s",
                step_id=step_id,
                step_type=step_type,
            )
        return DriverFailureError(str(error) or type(error).__name__, step_id=step_id, step_type=step_type)
