"""Browser driver contract and the Playwright implementation."""

from .driver import BrowserDriver, StepOutcome

__all__ = ["BrowserDriver", "StepOutcome"]
