"""Conditional evaluator module."""

from .evaluator import ConditionalEvaluator

__all__ = ["ConditionalEvaluator"]
