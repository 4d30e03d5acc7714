"""Step library dispatch table."""

from .library import StepLibrary, interpolate_step

__all__ = ["StepLibrary", "interpolate_step"]
