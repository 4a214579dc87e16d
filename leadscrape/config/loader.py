"""Configuration loading helpers for LeadScrape."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml
from dotenv import load_dotenv

from ..errors import ConfigurationError
from .models import GlobalConfig, SourceConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "settings.yaml"
SOURCE_CONFIG_SUFFIX = ".yaml"
HOME_ENV_VAR = "LEADSCRAPE_HOME"


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve data, source and log directories from the project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    sources_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV_VAR)
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path.cwd()).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.sources_dir = (self.data_dir / "sources").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.sources_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME

    def env_file(self) -> Path:
        return self.project_root / ".env"

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else (self.project_root / path).resolve()


class ConfigRepository:
    """Repository encapsulating config IO, schema validation and credentials."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None
        env_file = self.locator.env_file()
        if env_file.exists():
            load_dotenv(env_file, override=False)

    # ------------------------------------------------------------------
    # Global configuration helpers
    # ------------------------------------------------------------------
    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is not None:
            return self._global_cache
        path = self.locator.global_config_path()
        if path.exists():
            payload = _read_file(path)
        else:
            payload = {}
            _write_file(path, GlobalConfig().model_dump(mode="json", exclude={"sources"}))
        overrides = dict(payload.get("sources") or {})
        for source_file in self.list_source_files():
            data = _read_file(source_file)
            name = data.get("name") or source_file.stem
            overrides[name] = {**overrides.get(name, {}), **data}
        payload["sources"] = overrides
        self._global_cache = GlobalConfig.model_validate(payload)
        return self._global_cache

    def save_global_config(self, config: GlobalConfig) -> None:
        path = self.locator.global_config_path()
        _write_file(path, config.model_dump(mode="json", exclude_none=True))
        self._global_cache = config

    def database_path(self) -> Path:
        return self.locator.resolve(self.load_global_config().database_path)

    # ------------------------------------------------------------------
    # Source configuration helpers
    # ------------------------------------------------------------------
    def source_path(self, source_name: str) -> Path:
        slug = _slugify(source_name)
        return self.locator.sources_dir / f"{slug}{SOURCE_CONFIG_SUFFIX}"

    def list_source_files(self) -> Iterable[Path]:
        for path in sorted(self.locator.sources_dir.glob("*")):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def list_sources(self) -> list[SourceConfig]:
        return list(self.load_global_config().sources.values())

    def source_config(self, name: str) -> SourceConfig:
        config = self.load_global_config().get_source(name)
        if config is None:
            raise ConfigurationError(f"Unknown source: {name}", config_key=f"sources.{name}")
        return config

    def save_source(self, config: SourceConfig) -> Path:
        path = self.source_path(config.name)
        _write_file(path, config.model_dump(mode="json", exclude_none=True))
        self._global_cache = None
        return path

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    def resolve_credential(self, config: SourceConfig) -> str:
        return resolve_credential(config)


def resolve_credential(config: SourceConfig) -> str:
    """Return the API key for a source, preferring the environment variable."""

    if config.api_key_env:
        value = os.environ.get(config.api_key_env, "").strip()
        if value:
            return value
    if config.api_key:
        return config.api_key
    key = config.api_key_env or f"sources.{config.name}.api_key"
    raise ConfigurationError(
        f"{config.name} API key not configured. Set {key} in your environment or .env file.",
        config_key=key,
    )


__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "CONFIG_EXTENSIONS",
    "HOME_ENV_VAR",
    "resolve_credential",
]
