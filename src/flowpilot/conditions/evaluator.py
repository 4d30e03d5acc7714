"""Conditional evaluation for graph branching."""

from typing import Any, Callable, Optional

import structlog

from ..browser.driver import BrowserDriver
from ..core.errors import EvaluationError
from ..core.variables import VariableStore

logger = structlog.get_logger()


def _as_number(value: Any) -> Optional[float]:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def _greater_than(actual: Any, expected: Any) -> bool:
    a, b = _as_number(actual), _as_number(expected)
    if a is None or b is None:
        return False
    return a > b


def _less_than(actual: Any, expected: Any) -> bool:
    a, b = _as_number(actual), _as_number(expected)
    if a is None or b is None:
        return False
    return a < b


class ConditionalEvaluator:
    """
    Resolves a conditional to a boolean via the Browser Driver.

    Supports:
    - elementExists: selector matches at least one element
    - valueMatches: extracted value compared with an operator
    - loopUntilFalse: same test as valueMatches when an operator and
      expected value are set, otherwise elementExists

    Operators:
    - equals (string equality)
    - contains (substring)
    - greaterThan / lessThan (numeric; non-numeric operands are False)
    """

    OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
        "equals": lambda a, b: str(a) == str(b),
        "contains": lambda a, b: str(b) in str(a),
        "greaterThan": _greater_than,
        "lessThan": _less_than,
    }

    CONDITION_TYPES = ("elementExists", "valueMatches", "loopUntilFalse")

    def __init__(self):
        self._custom_operators: dict[str, Callable[[Any, Any], bool]] = {}

    def register_operator(
        self,
        name: str,
        func: Callable[[Any, Any], bool],
    ) -> None:
        """Register a custom operator."""
        self._custom_operators[name] = func

    def compare(self, actual: Any, op: str, expected: Any) -> bool:
        """
        Apply a comparison operator.

        A missing actual value (element not found) never matches.
        Raises EvaluationError for an unknown operator.
        """
        op_func = self.OPERATORS.get(op) or self._custom_operators.get(op)
        if not op_func:
            raise EvaluationError(f"Unknown comparison operator: {op}")
        if actual is None:
            return False
        return bool(op_func(actual, expected))

    async def evaluate(
        self,
        condition_type: str,
        selector: str,
        driver: BrowserDriver,
        comparison_op: Optional[str] = None,
        expected_value: Optional[str] = None,
        variables: Optional[VariableStore] = None,
        node_id: Optional[str] = None,
    ) -> bool:
        """
        Evaluate one condition against the current page.

        Args:
            condition_type: elementExists | valueMatches | loopUntilFalse
            selector: CSS selector (interpolated when variables are given)
            driver: Browser driver to query
            comparison_op: Operator for value comparisons
            expected_value: Right-hand side (interpolated)
            variables: Run variable store
            node_id: Conditional node id, for error context

        Driver exceptions propagate unchanged.
        """
        if condition_type not in self.CONDITION_TYPES:
            raise EvaluationError(f"Unknown condition type: {condition_type}", node_id=node_id)

        if variables is not None:
            selector = variables.interpolate(selector or "")
            if expected_value is not None:
                expected_value = variables.interpolate(expected_value)

        if not selector:
            raise EvaluationError(
                f"Condition {condition_type} requires a selector",
                node_id=node_id,
            )

        compares = condition_type == "valueMatches" or (
            condition_type == "loopUntilFalse"
            and comparison_op is not None
            and expected_value is not None
        )

        if not compares:
            result = await driver.element_exists(selector)
        else:
            op = comparison_op or "equals"
            if expected_value is None:
                raise EvaluationError(
                    "valueMatches requires an expected value",
                    node_id=node_id,
                )
            if op not in self.OPERATORS and op not in self._custom_operators:
                raise EvaluationError(f"Unknown comparison operator: {op}", node_id=node_id)
            actual = await driver.extract_value(selector)
            result = self.compare(actual, op, expected_value)

        logger.debug(
            "condition_evaluated",
            node_id=node_id,
            condition_type=condition_type,
            result=result,
        )
        return bool(result)
