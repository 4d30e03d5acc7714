"""
Credential store.

Credentials are kept in one JSON file as a list of documents. Values
are stored exactly as given; the step library resolves a reference to
a single secret at dispatch time.

Reference syntax:
    "<id>"          first of password, value, token, api_key, else first value
    "<id>#<field>"  that field only
"""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..core.errors import StorageError

logger = structlog.get_logger()

DEFAULT_SECRET_FIELDS = ("password", "value", "token", "api_key")


class Credential(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str = ""
    type: Literal["username_password", "api_key", "oauth_token", "custom"] = "custom"
    last_updated: Optional[datetime] = None
    encrypted_values: dict[str, str] = Field(default_factory=dict)

    def secret(self, field: Optional[str] = None) -> Optional[str]:
        if field:
            return self.encrypted_values.get(field)
        for name in DEFAULT_SECRET_FIELDS:
            if name in self.encrypted_values:
                return self.encrypted_values[name]
        return next(iter(self.encrypted_values.values()), None)


class CredentialStore:
    """Credentials keyed by id, optionally backed by a JSON file."""

    def __init__(
        self,
        path: Optional[str] = None,
        credentials: Optional[list[Credential]] = None,
    ):
        self.path = Path(path) if path else None
        self._credentials: dict[str, Credential] = {}
        if self.path and self.path.exists():
            self._load()
        for credential in credentials or []:
            self._credentials[credential.id] = credential

    def _load(self) -> None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            items = raw.get("credentials", []) if isinstance(raw, dict) else raw
            for item in items:
                credential = Credential.model_validate(item)
                self._credentials[credential.id] = credential
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StorageError(f"Cannot read credentials: {e}", path=str(self.path))
        logger.debug("credentials_loaded", count=len(self._credentials))

    def get(self, credential_id: str) -> Optional[Credential]:
        return self._credentials.get(credential_id)

    def list(self) -> list[Credential]:
        return list(self._credentials.values())

    def put(self, credential: Credential) -> None:
        self._credentials[credential.id] = credential.model_copy(
            update={"last_updated": datetime.now()}
        )
        self._save()

    def delete(self, credential_id: str) -> bool:
        removed = self._credentials.pop(credential_id, None) is not None
        if removed:
            self._save()
        return removed

    def resolve(self, ref: str) -> Optional[str]:
        """Secret for a credential reference, None when it cannot be found."""
        credential_id, _, field = ref.partition("#")
        credential = self._credentials.get(credential_id)
        if credential is None:
            return None
        return credential.secret(field or None)

    def _save(self) -> None:
        if self.path is None:
            return
        payload = [
            c.model_dump(mode="json", by_alias=True, exclude_none=True)
            for c in self._credentials.values()
        ]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write credentials: {e}", path=str(self.path))
