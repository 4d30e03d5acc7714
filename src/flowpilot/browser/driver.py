"""
Browser Driver contract.

The engine never touches a page directly. It hands fully resolved steps
to a BrowserDriver and asks it two questions for conditionals: does an
element exist, and what value does it hold.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ..graph.steps import AutomationStep


@dataclass
class StepOutcome:
    """Result of one step dispatch."""
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    screenshot: Optional[str] = None  # path on disk, if any


class BrowserDriver(ABC):
    """
    Executes concrete steps against a real page.

    Steps arrive with variables interpolated and credentials resolved.
    Implementations either return a failed StepOutcome or raise; both
    abort the run. Timeouts are the driver's concern.
    """

    @abstractmethod
    async def run_step(self, step: AutomationStep) -> StepOutcome:
        """Execute a browser step (navigate, click, type, ...)."""

    @abstractmethod
    async def element_exists(self, selector: str) -> bool:
        """True iff selector matches at least one element on the current page."""

    @abstractmethod
    async def extract_value(self, selector: str) -> Optional[str]:
        """Text (or input value) of the first match, None when nothing matches."""

    async def close(self) -> None:
        """Release browser resources. Optional."""
        return None
