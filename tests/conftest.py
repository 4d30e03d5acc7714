"""Shared fixtures: a scripted in-memory browser driver and graph builders."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from flowpilot.browser.driver import BrowserDriver, StepOutcome
from flowpilot.graph.editor import GraphEditor, new_automation


class ScriptedDriver(BrowserDriver):
    """
    Driver that answers from dictionaries instead of a page.

    ``exists`` and ``values`` map a selector to an answer, or to a list of
    answers consumed one per query (the last one repeats).
    """

    def __init__(self, exists=None, values=None, fail_on=(), raise_on=(), delay=0.0):
        self.exists = dict(exists or {})
        self.values = dict(values or {})
        self.fail_on = set(fail_on)
        self.raise_on = set(raise_on)
        self.delay = delay
        self.steps = []
        self.queries = []
        self.closed = False

    @staticmethod
    def _answer(table, selector, default):
        answer = table.get(selector, default)
        if isinstance(answer, list):
            return answer.pop(0) if len(answer) > 1 else (answer[0] if answer else default)
        return answer

    @property
    def step_ids(self):
        return [step.id for step in self.steps]

    async def run_step(self, step):
        self.steps.append(step)
        if self.delay:
            await asyncio.sleep(self.delay)
        if step.id in self.raise_on:
            raise RuntimeError(f"driver exploded on {step.id}")
        if step.id in self.fail_on:
            return StepOutcome(success=False, error="element not found", screenshot="error.png")
        if step.type in ("extract", "extractWithLogic"):
            return StepOutcome(success=True, data={"text": self._answer(self.values, step.selector, "")})
        if step.type == "screenshot":
            path = step.save_path or "shot.png"
            return StepOutcome(success=True, data={"path": path}, screenshot=path)
        return StepOutcome(success=True, data={"type": step.type})

    async def element_exists(self, selector):
        self.queries.append(selector)
        return bool(self._answer(self.exists, selector, False))

    async def extract_value(self, selector):
        self.queries.append(selector)
        return self._answer(self.values, selector, None)

    async def close(self):
        self.closed = True


@pytest.fixture
def scripted_driver():
    """Factory for ScriptedDriver instances."""
    return ScriptedDriver


@pytest.fixture
def branching_automation():
    """
    navigate -> elementExists(#a) -> if: click(#ok) / else: screenshot.

    Node ids: 1 navigate, 2 conditional, 3 click, 4 screenshot.
    """
    automation = new_automation("branching", automation_id="branching", start_url="https://x")
    editor = GraphEditor(automation)
    cond = editor.add_conditional("1", "elementExists", "#a")
    editor.add_step(cond, "click", handle="if", selector="#ok")
    editor.add_step(cond, "screenshot", handle="else")
    return automation
