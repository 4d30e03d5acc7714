"""Step library - dispatch table from step type to handler."""

import asyncio
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
import structlog

from ..browser.driver import BrowserDriver, StepOutcome
from ..conditions.evaluator import ConditionalEvaluator
from ..core.config import HttpConfig
from ..core.errors import (
    CredentialNotFoundError,
    DriverFailureError,
    HttpFailureError,
    InvalidDurationError,
    InvalidValueError,
    MissingFieldError,
    MissingSelectorError,
    StepError,
)
from ..core.variables import VariableStore
from ..graph.steps import AutomationStep

logger = structlog.get_logger()

# Handler signature: (step, driver, variables) -> StepOutcome
StepHandler = Callable[[Any, BrowserDriver, VariableStore], Awaitable[StepOutcome]]

# Never interpolated: identity fields and the credential reference.
_FIXED_FIELDS = frozenset({"id", "type", "credential_id"})

_DURATION_PATTERN = re.compile(r"^\d+$")


def _parse_number(text: str) -> Union[int, float]:
    try:
        return int(text)
    except ValueError:
        return float(text)


def interpolate_step(step: AutomationStep, variables: VariableStore) -> AutomationStep:
    """Copy of step with {{name}} tokens resolved in every text field."""
    updates: dict[str, Any] = {}
    for name, value in step:
        if name in _FIXED_FIELDS:
            continue
        if isinstance(value, str):
            resolved = variables.interpolate(value)
            if resolved != value:
                updates[name] = resolved
        elif isinstance(value, dict):
            updates[name] = {
                k: variables.interpolate(v) if isinstance(v, str) else v
                for k, v in value.items()
            }
    return step.model_copy(update=updates) if updates else step


class StepLibrary:
    """
    Registry of step handlers.

    Dispatch:
    1. Interpolate variables into the step's text fields
    2. Check the step's required fields
    3. Run the handler (driver, HTTP client or variable store)
    4. Raise a StepError on any failure

    Browser steps go to the driver. wait, apiCall, setVariable and
    modifyVariable are handled here without touching the page.
    """

    def __init__(
        self,
        credentials: Optional[Any] = None,
        http_config: Optional[HttpConfig] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        evaluator: Optional[ConditionalEvaluator] = None,
    ):
        """
        Args:
            credentials: Object with ``resolve(ref) -> Optional[str]``
            http_config: Timeouts for apiCall
            http_transport: Transport override for the apiCall client
            evaluator: Operator table shared with conditionals
        """
        self.credentials = credentials
        self.http_config = http_config or HttpConfig()
        self.http_transport = http_transport
        self.evaluator = evaluator or ConditionalEvaluator()
        self._handlers: dict[str, StepHandler] = {}
        self._register_builtin_steps()

    def register(self, step_type: str, handler: StepHandler) -> None:
        """Register (or replace) a step handler."""
        self._handlers[step_type] = handler

    def unregister(self, step_type: str) -> None:
        self._handlers.pop(step_type, None)

    def get_handler(self, step_type: str) -> Optional[StepHandler]:
        return self._handlers.get(step_type)

    def list_steps(self) -> list[str]:
        return list(self._handlers.keys())

    async def dispatch(
        self,
        step: AutomationStep,
        driver: BrowserDriver,
        variables: VariableStore,
    ) -> StepOutcome:
        """
        Execute one step.

        Returns a successful StepOutcome or raises StepError.
        """
        handler = self.get_handler(step.type)
        if not handler:
            raise StepError(
                f"No handler registered for step type: {step.type}",
                step_id=step.id,
                step_type=step.type,
            )

        resolved = interpolate_step(step, variables)
        logger.debug("step_dispatch", step_id=step.id, step_type=step.type)

        try:
            outcome = await handler(resolved, driver, variables)
        except StepError:
            raise
        except Exception as e:
            raise DriverFailureError(
                str(e) or type(e).__name__,
                step_id=step.id,
                step_type=step.type,
            ) from e

        if not outcome.success:
            raise DriverFailureError(
                outcome.error or f"Step {step.id} failed",
                screenshot=outcome.screenshot,
                step_id=step.id,
                step_type=step.type,
            )
        return outcome

    # ==================== Handlers ====================

    def _register_builtin_steps(self) -> None:
        # Browser steps
        self.register("navigate", self._step_navigate)
        self.register("click", self._step_element)
        self.register("hover", self._step_element)
        self.register("type", self._step_type)
        self.register("screenshot", self._step_screenshot)
        self.register("extract", self._step_extract)
        self.register("extractWithLogic", self._step_extract_with_logic)
        self.register("scroll", self._step_scroll)
        self.register("selectOption", self._step_select_option)
        self.register("fileUpload", self._step_file_upload)

        # Local steps
        self.register("wait", self._step_wait)
        self.register("apiCall", self._step_api_call)
        self.register("setVariable", self._step_set_variable)
        self.register("modifyVariable", self._step_modify_variable)

    @staticmethod
    def _require_selector(step) -> None:
        if not (step.selector or "").strip():
            raise MissingSelectorError(step_id=step.id, step_type=step.type)

    async def _step_navigate(self, step, driver, variables) -> StepOutcome:
        if not step.url.strip():
            raise MissingFieldError("value", step_id=step.id, step_type=step.type)
        return await driver.run_step(step)

    async def _step_element(self, step, driver, variables) -> StepOutcome:
        self._require_selector(step)
        return await driver.run_step(step)

    async def _step_type(self, step, driver, variables) -> StepOutcome:
        self._require_selector(step)
        if step.credential_id:
            secret = self.credentials.resolve(step.credential_id) if self.credentials else None
            if secret is None:
                raise CredentialNotFoundError(
                    step.credential_id,
                    step_id=step.id,
                    step_type=step.type,
                )
            step = step.model_copy(update={"text": secret})
        return await driver.run_step(step)

    async def _step_screenshot(self, step, driver, variables) -> StepOutcome:
        outcome = await driver.run_step(step)
        if outcome.success and outcome.screenshot is None:
            outcome.screenshot = outcome.data.get("path") or step.save_path
        return outcome

    async def _step_extract(self, step, driver, variables) -> StepOutcome:
        self._require_selector(step)
        outcome = await driver.run_step(step)
        if outcome.success and step.store_key:
            variables.set(step.store_key, outcome.data.get("text", ""))
        return outcome

    async def _step_extract_with_logic(self, step, driver, variables) -> StepOutcome:
        self._require_selector(step)
        outcome = await driver.run_step(step)
        if outcome.success:
            outcome.data["matched"] = self.evaluator.compare(
                outcome.data.get("text"),
                step.comparison_op,
                step.expected_value,
            )
        return outcome

    async def _step_scroll(self, step, driver, variables) -> StepOutcome:
        if step.scroll_type == "toElement":
            self._require_selector(step)
        elif step.scroll_amount is None:
            raise MissingFieldError("scrollAmount", step_id=step.id, step_type=step.type)
        return await driver.run_step(step)

    async def _step_select_option(self, step, driver, variables) -> StepOutcome:
        self._require_selector(step)
        if step.option_value is None and step.option_index is None:
            raise MissingFieldError("optionValue", step_id=step.id, step_type=step.type)
        return await driver.run_step(step)

    async def _step_file_upload(self, step, driver, variables) -> StepOutcome:
        self._require_selector(step)
        if not step.file_path.strip():
            raise MissingFieldError("filePath", step_id=step.id, step_type=step.type)
        if not Path(step.file_path).expanduser().is_file():
            raise InvalidValueError(
                f"File not found: {step.file_path}",
                step_id=step.id,
                step_type=step.type,
            )
        return await driver.run_step(step)

    async def _step_wait(self, step, driver, variables) -> StepOutcome:
        raw = (step.duration or "").strip()
        if not _DURATION_PATTERN.match(raw):
            raise InvalidDurationError(step.duration, step_id=step.id)
        seconds = int(raw)
        await asyncio.sleep(seconds)
        return StepOutcome(success=True, data={"waited_seconds": seconds})

    async def _step_api_call(self, step, driver, variables) -> StepOutcome:
        """
        Perform an outbound HTTP request.

        A non-2xx status is a failure. On success the response body is
        stored under storeKey when one is set.
        """
        if not step.url.strip():
            raise MissingFieldError("url", step_id=step.id, step_type=step.type)

        content = step.body if step.method != "GET" else None
        try:
            async with httpx.AsyncClient(
                transport=self.http_transport,
                timeout=self.http_config.timeout_seconds,
                follow_redirects=self.http_config.follow_redirects,
            ) as client:
                response = await client.request(
                    method=step.method,
                    url=step.url,
                    headers=step.headers,
                    content=content,
                )
        except httpx.HTTPError as e:
            raise HttpFailureError(
                f"{step.method} {step.url} failed: {e}",
                url=step.url,
                step_id=step.id,
            ) from e

        if not response.is_success:
            raise HttpFailureError(
                f"{step.method} {step.url} returned {response.status_code}",
                url=step.url,
                status_code=response.status_code,
                step_id=step.id,
            )

        if step.store_key:
            variables.set(step.store_key, response.text)

        return StepOutcome(
            success=True,
            data={
                "status_code": response.status_code,
                "url": str(response.url),
                "body": response.text[:10000],
            },
        )

    async def _step_set_variable(self, step, driver, variables) -> StepOutcome:
        if not step.variable_name.strip():
            raise MissingFieldError("variableName", step_id=step.id, step_type=step.type)
        variables.set(step.variable_name, step.value)
        return StepOutcome(success=True, data={"name": step.variable_name})

    async def _step_modify_variable(self, step, driver, variables) -> StepOutcome:
        name = step.variable_name.strip()
        if not name:
            raise MissingFieldError("variableName", step_id=step.id, step_type=step.type)

        current = variables.get(name)
        if step.operation == "replace":
            updated = step.value
        elif step.operation == "append":
            updated = (current or "") + step.value
        elif step.operation == "prepend":
            updated = step.value + (current or "")
        else:
            updated = self._shift_number(step, current)

        variables.set(name, updated)
        return StepOutcome(success=True, data={"name": name, "operation": step.operation})

    @staticmethod
    def _shift_number(step, current: Optional[str]) -> str:
        """Integers stay exact; floats only when an operand is not integral."""
        try:
            base = _parse_number((current or "").strip() or "0")
            amount = _parse_number(step.value.strip() or "1")
        except ValueError:
            raise InvalidValueError(
                f"Cannot {step.operation} non-numeric variable {step.variable_name}",
                step_id=step.id,
                step_type=step.type,
            )
        result = base + amount if step.operation == "increment" else base - amount
        if isinstance(result, float) and result.is_integer():
            return str(int(result))
        return str(result)
