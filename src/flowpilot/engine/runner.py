"""
Runner - loads, runs and records automations.

Ties the stores to the engine: one RunControl per running automation,
a fresh variable store per run, run history and lastRun bookkeeping.
"""

from typing import Any, Mapping, Optional, Union

import structlog

from ..browser.driver import BrowserDriver
from ..core.config import FlowConfig
from ..core.errors import StorageError
from ..core.variables import VariableStore
from ..graph.model import Automation, LastRun
from ..graph.validator import validate_automation
from ..steps.library import StepLibrary
from ..storage.credentials import CredentialStore
from ..storage.history import RunHistory
from ..storage.store import AutomationStore
from .executor import ExecutionEngine, ExecutionLog, RunControl

logger = structlog.get_logger()


class AutomationRunner:
    """
    Runs automations by id or by document.

    Features:
    - Validation before every run
    - One active run per automation id
    - Pause/resume/stop by automation id
    - lastRun and status written back to the store
    - Execution logs recorded in run history
    """

    def __init__(
        self,
        store: Optional[AutomationStore] = None,
        history: Optional[RunHistory] = None,
        credentials: Optional[CredentialStore] = None,
        config: Optional[FlowConfig] = None,
        engine: Optional[ExecutionEngine] = None,
    ):
        self.config = config or FlowConfig()
        self.store = store
        self.history = history
        self.credentials = credentials

        if engine is None:
            library = StepLibrary(
                credentials=credentials,
                http_config=self.config.http,
            )
            engine = ExecutionEngine(library=library, config=self.config.engine)
        self.engine = engine

        self._controls: dict[str, RunControl] = {}
        self._active: dict[str, Automation] = {}

    def _resolve(self, automation: Union[Automation, str]) -> tuple[Automation, bool]:
        """Automation plus whether it lives in the store."""
        if isinstance(automation, Automation):
            stored = self.store is not None and self.store.exists(automation.id)
            return automation, stored

        if self.store is None:
            raise StorageError(f"No automation store configured to load {automation}")
        loaded = self.store.load(automation)
        if loaded is None:
            raise StorageError(
                f"Automation not found: {automation}",
                path=str(self.store.path_for(automation)),
            )
        return loaded, True

    async def run(
        self,
        automation: Union[Automation, str],
        driver: BrowserDriver,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionLog:
        """
        Run one automation to a terminal state.

        Args:
            automation: Automation document or stored automation id
            driver: Browser driver for this run
            variables: Initial variable values

        Raises GraphError/StorageError before the run starts; failures
        during the run are reported in the returned ExecutionLog.
        """
        automation, stored = self._resolve(automation)
        validate_automation(automation)

        if automation.id in self._controls:
            raise RuntimeError(f"Automation already running: {automation.id}")

        control = RunControl()
        self._controls[automation.id] = control
        self._active[automation.id] = automation
        automation.status = "running"

        logger.info(
            "automation_run_requested",
            automation_id=automation.id,
            name=automation.name,
            variables=sorted((variables or {}).keys()),
        )

        try:
            log = await self.engine.run(
                automation,
                VariableStore(variables),
                driver,
                control=control,
            )
        finally:
            self._controls.pop(automation.id, None)
            self._active.pop(automation.id, None)
            automation.status = "idle"

        automation.last_run = LastRun(
            timestamp=log.timestamp,
            success=log.success,
            duration=round(log.duration, 3),
        )
        if stored:
            self.store.save(automation)
        if self.history is not None:
            await self.history.record(log)

        return log

    def is_running(self, automation_id: str) -> bool:
        return automation_id in self._controls

    def pause(self, automation_id: str) -> bool:
        control = self._controls.get(automation_id)
        if control is None:
            return False
        control.pause()
        self._active[automation_id].status = "paused"
        logger.info("automation_paused", automation_id=automation_id)
        return True

    def resume(self, automation_id: str) -> bool:
        control = self._controls.get(automation_id)
        if control is None:
            return False
        control.resume()
        self._active[automation_id].status = "running"
        logger.info("automation_resumed", automation_id=automation_id)
        return True

    def stop(self, automation_id: str) -> bool:
        control = self._controls.get(automation_id)
        if control is None:
            return False
        control.stop()
        logger.info("automation_stop_requested", automation_id=automation_id)
        return True

    def stop_all(self) -> int:
        """Stop every active run. Returns how many were signalled."""
        for control in self._controls.values():
            control.stop()
        return len(self._controls)

    def get_status(self) -> dict[str, Any]:
        return {
            automation_id: {
                "name": self._active[automation_id].name,
                "state": control.state.value,
                "paused": control.paused,
                "stopped": control.stopped,
            }
            for automation_id, control in self._controls.items()
        }
