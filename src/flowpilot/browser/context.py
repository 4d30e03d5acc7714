"""
Page context - Playwright page operations returning StepOutcome.

Every operation catches Playwright errors and reports them as a failed
outcome, saving a screenshot of the page to disk first when enabled.
"""

import time
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import structlog
from playwright.async_api import Page

from .driver import StepOutcome

logger = structlog.get_logger()


class PageContext:
    """
    Wraps a Playwright page.

    Features:
    - Uniform StepOutcome results with timing
    - Failure screenshots written under screenshot_dir
    - Default screenshot paths for screenshot steps
    """

    def __init__(
        self,
        page: Page,
        default_timeout: int = 30000,
        screenshot_dir: str = "./data/screenshots",
        screenshot_on_error: bool = True,
    ):
        """
        Args:
            page: Playwright page instance
            default_timeout: Default timeout in milliseconds
            screenshot_dir: Where screenshots without an explicit path go
            screenshot_on_error: Capture the page when an operation fails
        """
        self.page = page
        self.default_timeout = default_timeout
        self.screenshot_dir = Path(screenshot_dir)
        self.screenshot_on_error = screenshot_on_error
        self._action_count = 0

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def action_count(self) -> int:
        return self._action_count

    async def _perform(
        self,
        action: str,
        operation: Callable[[], Awaitable[Optional[dict[str, Any]]]],
    ) -> StepOutcome:
        start_time = time.monotonic()
        try:
            data = await operation() or {}
        except Exception as e:
            screenshot = await self._capture_error_screenshot(action)
            logger.warning("page_action_failed", action=action, error=str(e))
            return StepOutcome(success=False, error=str(e), screenshot=screenshot)

        self._action_count += 1
        data.setdefault("action", action)
        data["duration_ms"] = round((time.monotonic() - start_time) * 1000, 2)
        return StepOutcome(success=True, data=data)

    async def navigate(self, url: str, wait_until: str = "domcontentloaded") -> StepOutcome:
        async def go():
            await self.page.goto(url, wait_until=wait_until, timeout=self.default_timeout)
            return {"url": self.page.url, "title": await self.page.title()}
        return await self._perform("navigate", go)

    async def click(self, selector: str) -> StepOutcome:
        async def click():
            await self.page.click(selector, timeout=self.default_timeout)
            return {"selector": selector}
        return await self._perform("click", click)

    async def hover(self, selector: str) -> StepOutcome:
        async def hover():
            await self.page.hover(selector, timeout=self.default_timeout)
            return {"selector": selector}
        return await self._perform("hover", hover)

    async def fill(self, selector: str, value: str) -> StepOutcome:
        """Fill an input. Only the text length is reported."""
        async def fill():
            await self.page.fill(selector, value, timeout=self.default_timeout)
            return {"selector": selector, "length": len(value)}
        return await self._perform("fill", fill)

    async def select(
        self,
        selector: str,
        value: Optional[str] = None,
        index: Optional[int] = None,
    ) -> StepOutcome:
        async def select():
            if value is not None:
                selected = await self.page.select_option(
                    selector, value=value, timeout=self.default_timeout
                )
            else:
                selected = await self.page.select_option(
                    selector, index=index, timeout=self.default_timeout
                )
            return {"selector": selector, "selected": selected}
        return await self._perform("select", select)

    async def upload(self, selector: str, file_path: str) -> StepOutcome:
        async def upload():
            await self.page.set_input_files(selector, file_path, timeout=self.default_timeout)
            return {"selector": selector, "file": Path(file_path).name}
        return await self._perform("upload", upload)

    async def scroll_by(self, amount: int) -> StepOutcome:
        async def scroll():
            await self.page.mouse.wheel(0, amount)
            return {"amount": amount}
        return await self._perform("scroll", scroll)

    async def scroll_to(self, selector: str) -> StepOutcome:
        async def scroll():
            await self.page.locator(selector).first.scroll_into_view_if_needed(
                timeout=self.default_timeout
            )
            return {"selector": selector}
        return await self._perform("scroll", scroll)

    async def extract_text(self, selector: str) -> StepOutcome:
        async def extract():
            element = await self.page.wait_for_selector(selector, timeout=self.default_timeout)
            return {"selector": selector, "text": (await element.inner_text()).strip()}
        return await self._perform("extract", extract)

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False) -> StepOutcome:
        target = Path(path) if path else self._default_screenshot_path("screenshot")

        async def capture():
            target.parent.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(target), full_page=full_page)
            return {"path": str(target)}

        outcome = await self._perform("screenshot", capture)
        if outcome.success:
            outcome.screenshot = str(target)
        return outcome

    async def element_exists(self, selector: str) -> bool:
        return await self.page.locator(selector).count() > 0

    async def value_of(self, selector: str) -> Optional[str]:
        """Input value for form fields, inner text otherwise; None when absent."""
        locator = self.page.locator(selector)
        if await locator.count() == 0:
            return None
        first = locator.first
        tag = await first.evaluate("el => el.tagName.toLowerCase()")
        if tag in ("input", "textarea", "select"):
            return await first.input_value()
        return (await first.inner_text()).strip()

    def _default_screenshot_path(self, prefix: str) -> Path:
        stamp = time.strftime("%Y%m%d-%H%M%S")
        return self.screenshot_dir / f"{prefix}-{stamp}-{uuid.uuid4().hex[:6]}.png"

    async def _capture_error_screenshot(self, action: str) -> Optional[str]:
        if not self.screenshot_on_error:
            return None

        target = self._default_screenshot_path(f"error-{action}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(target))
        except Exception as e:
            logger.debug("error_screenshot_failed", error=str(e))
            return None
        return str(target)
