"""Configuration loading and validation."""

import json
import hashlib
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError


class BrowserConfig(BaseModel):
    """Playwright browser settings."""
    headless: bool = Field(default=True)
    viewport_width: int = Field(default=1280, ge=320)
    viewport_height: int = Field(default=720, ge=240)
    default_timeout_ms: int = Field(default=30000, ge=100)
    user_data_dir: str = Field(default="./data/browser")
    screenshot_dir: str = Field(default="./data/screenshots")
    screenshot_on_error: bool = Field(default=True)


class EngineConfig(BaseModel):
    """Graph walker settings."""
    step_timeout_seconds: float = Field(default=120.0, gt=0)
    max_loop_iterations: int = Field(default=100, ge=1, le=10000)


class HttpConfig(BaseModel):
    """Outbound HTTP settings for apiCall steps."""
    timeout_seconds: float = Field(default=30.0, gt=0)
    follow_redirects: bool = Field(default=True)


class StorageConfig(BaseModel):
    """Where automations, credentials and run history live."""
    automations_dir: str = Field(default="./data/.trees")
    credentials_path: str = Field(default="./data/credentials.json")
    history_db: str = Field(default="./data/history.db")


class LoggingConfig(BaseModel):
    """structlog output settings."""
    level: str = Field(default="INFO")
    format: Literal["console", "json"] = Field(default="console")


class FlowConfig(BaseModel):
    """Main configuration."""
    name: str = Field(default="flowpilot")
    version: str = Field(default="0.1.0")

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def config_hash(self) -> str:
        """Digest of the effective settings, for change detection."""
        return _digest(self.model_dump_json())

    def with_data_dir(self, data_dir: str) -> "FlowConfig":
        """Return a copy with every storage path rooted at data_dir."""
        root = Path(data_dir)
        storage = StorageConfig(
            automations_dir=str(root / ".trees"),
            credentials_path=str(root / "credentials.json"),
            history_db=str(root / "history.db"),
        )
        browser = self.browser.model_copy(update={
            "user_data_dir": str(root / "browser"),
            "screenshot_dir": str(root / "screenshots"),
        })
        return self.model_copy(update={"storage": storage, "browser": browser})


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()[:16]


_PARSERS = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.loads,
}


class ConfigLoader:
    """
    Reads flowpilot.yaml (or an explicit YAML/JSON file) into FlowConfig.

    Remembers a digest of every file it reads so callers can ask whether
    the file changed since.
    """

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self._digests: dict[str, str] = {}

    def load_config(self, path: Optional[str] = None) -> FlowConfig:
        source = Path(path) if path is not None else self.config_dir / "flowpilot.yaml"
        raw = self._read(source)
        try:
            return FlowConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid config: {e}", config_path=str(source))

    def has_config_changed(self, path: str) -> bool:
        source = Path(path)
        current = _digest(source.read_text()) if source.exists() else ""
        return current != self._digests.get(str(source))

    def _read(self, source: Path) -> dict[str, Any]:
        parser = _PARSERS.get(source.suffix)
        if parser is None:
            raise ConfigError(f"Unsupported config format: {source.suffix}", config_path=str(source))
        if not source.exists():
            raise ConfigError(f"Config file not found: {source}", config_path=str(source))

        text = source.read_text()
        self._digests[str(source)] = _digest(text)
        try:
            raw = parser(text)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot parse {source.name}: {e}", config_path=str(source))

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ConfigError("Config root must be a mapping", config_path=str(source))
        return raw
