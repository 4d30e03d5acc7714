"""
Automation document store.

One JSON document per automation, ``tree_<id>.json`` in a single folder.
Writes go to a temporary file in the same folder and are moved into
place, so a reader never sees a half-written document.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import jsonschema
import structlog
from pydantic import ValidationError

from ..core.errors import GraphError, StorageError
from ..graph.model import Automation
from ..graph.validator import validate_automation

logger = structlog.get_logger()

FILE_PREFIX = "tree_"

# Outer shape only; node and step fields are checked by the pydantic models.
AUTOMATION_DOCUMENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "nodes", "edges"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "status": {"enum": ["idle", "running", "paused"]},
        "nodes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "type", "data"],
                "properties": {
                    "id": {"type": "string"},
                    "type": {"enum": ["automationStep", "conditional"]},
                    "data": {"type": "object"},
                    "position": {
                        "type": "object",
                        "properties": {
                            "x": {"type": "number"},
                            "y": {"type": "number"},
                        },
                    },
                },
            },
        },
        "edges": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "source", "target"],
                "properties": {
                    "id": {"type": "string"},
                    "source": {"type": "string"},
                    "target": {"type": "string"},
                    "sourceHandle": {"type": ["string", "null"]},
                },
            },
        },
        "steps": {"type": "array"},
        "schedule": {"type": "object"},
        "linkedCredentials": {"type": "array", "items": {"type": "string"}},
        "lastRun": {"type": ["object", "null"]},
    },
}


def parse_document(data: Any, source: Optional[str] = None) -> Automation:
    """
    Validate a raw document and build the Automation.

    Raises StorageError for a bad shape and GraphError when the graph
    breaks a structural rule.
    """
    try:
        jsonschema.validate(data, AUTOMATION_DOCUMENT_SCHEMA)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise StorageError(f"Invalid automation document at {location}: {e.message}", path=source)

    try:
        automation = Automation.model_validate(data)
    except ValidationError as e:
        raise StorageError(f"Invalid automation document: {e}", path=source)

    validate_automation(automation)
    return automation


def load_document_file(path: Union[str, Path]) -> Automation:
    """Load an automation from an arbitrary JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise StorageError(f"Cannot read automation: {e}", path=str(path))
    except json.JSONDecodeError as e:
        raise StorageError(f"Invalid JSON: {e}", path=str(path))
    return parse_document(data, source=str(path))


class AutomationStore:
    """Folder of automation documents keyed by id."""

    def __init__(self, folder: str = "./data/.trees"):
        self.folder = Path(folder)

    def path_for(self, automation_id: str) -> Path:
        if not automation_id or "/" in automation_id or "\\" in automation_id:
            raise StorageError(f"Invalid automation id: {automation_id!r}")
        return self.folder / f"{FILE_PREFIX}{automation_id}.json"

    def save(self, automation: Automation) -> str:
        """Validate and write the document. Returns the automation id."""
        validate_automation(automation)
        path = self.path_for(automation.id)
        document = automation.to_document()

        try:
            self.folder.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.folder, prefix=".tree_", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write automation: {e}", path=str(path))

        logger.info("automation_saved", automation_id=automation.id, nodes=len(automation.nodes))
        return automation.id

    def load(self, automation_id: str) -> Optional[Automation]:
        """Load by id; None when no document exists."""
        path = self.path_for(automation_id)
        if not path.exists():
            return None
        return load_document_file(path)

    def exists(self, automation_id: str) -> bool:
        return self.path_for(automation_id).exists()

    def list(self) -> list[Automation]:
        """
        All readable automations, sorted by name.

        Documents that fail to load are skipped with a warning.
        """
        if not self.folder.exists():
            return []

        automations = []
        for path in sorted(self.folder.glob(f"{FILE_PREFIX}*.json")):
            try:
                automations.append(load_document_file(path))
            except (StorageError, GraphError) as e:
                logger.warning("automation_skipped", path=str(path), error=e.message)
        return sorted(automations, key=lambda a: (a.name.lower(), a.id))

    def delete(self, automation_id: str) -> bool:
        path = self.path_for(automation_id)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise StorageError(f"Cannot delete automation: {e}", path=str(path))
        logger.info("automation_deleted", automation_id=automation_id)
        return True
