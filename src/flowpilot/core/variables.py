"""Run-scoped variable store with {{name}} interpolation."""

import re
from typing import Any, Iterator, Mapping, Optional


TOKEN_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")


class VariableStore:
    """
    String-keyed variables for a single run.

    Created fresh for every run, optionally seeded by the caller.
    Values are stored as strings; interpolation replaces each
    {{name}} token with its value and leaves unknown tokens intact.
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._values: dict[str, str] = {}
        for name, value in (initial or {}).items():
            self.set(name, value)

    def get(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value if isinstance(value, str) else str(value)

    def delete(self, name: str) -> bool:
        return self._values.pop(name, None) is not None

    def interpolate(self, template: str) -> str:
        """
        Replace every {{name}} token with its stored value.

        Substitution is a single pass: a value that itself contains
        {{...}} is inserted literally. Never raises.
        """
        if not template or "{{" not in template:
            return template

        def replace(match: re.Match) -> str:
            value = self._values.get(match.group(1))
            return match.group(0) if value is None else value

        return TOKEN_PATTERN.sub(replace, template)

    def unresolved(self, template: str) -> list[str]:
        """Names referenced by template that have no value."""
        return [
            name for name in TOKEN_PATTERN.findall(template or "")
            if name not in self._values
        ]

    def snapshot(self) -> dict[str, str]:
        return dict(self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"VariableStore({sorted(self._values)})"
