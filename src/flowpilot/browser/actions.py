"""
Playwright driver - BrowserDriver backed by a real Chromium page.

Steps arrive from the step library already interpolated and validated;
this module only maps each step type onto a page operation.
"""

from typing import Awaitable, Callable, Optional

import structlog

from ..core.config import BrowserConfig
from ..graph.steps import AutomationStep
from .context import PageContext
from .driver import BrowserDriver, StepOutcome
from .manager import BrowserManager

logger = structlog.get_logger()


class PlaywrightDriver(BrowserDriver):
    """
    Browser driver over a single persistent page.

    Steps without page interaction (wait, apiCall, variables) never
    reach the driver; asking it to run one is reported as a failure.
    """

    def __init__(
        self,
        manager: Optional[BrowserManager] = None,
        config: Optional[BrowserConfig] = None,
    ):
        self.config = config or (manager.config if manager else BrowserConfig())
        self.browser = manager or BrowserManager(self.config)
        self._context: Optional[PageContext] = None

        self._handlers: dict[str, Callable[[PageContext, AutomationStep], Awaitable[StepOutcome]]] = {
            "navigate": lambda ctx, s: ctx.navigate(s.url),
            "click": lambda ctx, s: ctx.click(s.selector),
            "hover": lambda ctx, s: ctx.hover(s.selector),
            "type": lambda ctx, s: ctx.fill(s.selector, s.text),
            "screenshot": lambda ctx, s: ctx.screenshot(s.save_path),
            "extract": lambda ctx, s: ctx.extract_text(s.selector),
            "extractWithLogic": lambda ctx, s: ctx.extract_text(s.selector),
            "scroll": self._scroll,
            "selectOption": lambda ctx, s: ctx.select(s.selector, s.option_value, s.option_index),
            "fileUpload": lambda ctx, s: ctx.upload(s.selector, s.file_path),
        }

    async def _get_context(self) -> PageContext:
        page = await self.browser.get_page()
        if self._context is None or self._context.page is not page:
            self._context = PageContext(
                page,
                default_timeout=self.config.default_timeout_ms,
                screenshot_dir=self.config.screenshot_dir,
                screenshot_on_error=self.config.screenshot_on_error,
            )
        return self._context

    async def run_step(self, step: AutomationStep) -> StepOutcome:
        handler = self._handlers.get(step.type)
        if handler is None:
            return StepOutcome(success=False, error=f"Browser cannot run step type: {step.type}")

        ctx = await self._get_context()
        logger.debug("browser_step", step_id=step.id, step_type=step.type)
        return await handler(ctx, step)

    async def element_exists(self, selector: str) -> bool:
        ctx = await self._get_context()
        return await ctx.element_exists(selector)

    async def extract_value(self, selector: str) -> Optional[str]:
        ctx = await self._get_context()
        return await ctx.value_of(selector)

    async def close(self) -> None:
        await self.browser.shutdown()
        self._context = None

    @staticmethod
    async def _scroll(ctx: PageContext, step) -> StepOutcome:
        if step.scroll_type == "toElement":
            return await ctx.scroll_to(step.selector)
        return await ctx.scroll_by(step.scroll_amount or 0)
