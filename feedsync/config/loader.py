"""Configuration loading helpers for feedsync."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigError
from .models import SyncConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
CONFIG_FILENAME = "feedsync.yaml"

# Environment variable -> dotted config path.
ENV_OVERRIDES: dict[str, str] = {
    "OPML_PATH": "opml_path",
    "STATE_FILE": "state_file",
    "GLOBAL_TIMEOUT_MINUTES": "global_timeout_minutes",
    "LOG_LEVEL": "log_level",
    "CONCURRENCY": "fetch.concurrency",
    "FETCH_TIMEOUT_MS": "fetch.timeout_ms",
    "MAX_ARTICLE_AGE_DAYS": "fetch.max_article_age_days",
    "MAX_ARTICLES": "fetch.max_articles",
    "LINK_VALIDATE": "fetch.link_validate",
    "LINK_TIMEOUT_MS": "fetch.link_timeout_ms",
    "OPENAI_API_KEY": "ai.api_key",
    "OPENAI_BASE_URL": "ai.base_url",
    "AI_TRIAGE": "ai.triage",
    "AI_MODEL": "ai.model",
    "AI_MAX_TOKENS": "ai.max_tokens",
    "AI_BATCH_SIZE": "ai.batch_size",
    "AI_CONCURRENCY": "ai.concurrency",
    "AI_SUMMARY": "ai.summary",
    "AI_SUMMARY_MAX_TOKENS": "ai.summary_max_tokens",
    "AI_PROMPT_PATH": "ai.prompt_path",
    "BATCH_SIZE": "publish.batch_size",
    "REQUEST_DELAY_MS": "publish.request_delay_ms",
    "PRUNE_MAX_AGE_DAYS": "retention.prune_max_age_days",
    "PER_FEED_HARD_CAP": "retention.per_feed_hard_cap",
    "AUTO_DISABLE_THRESHOLD": "quality.threshold",
    "AUTO_DISABLE_MIN_SAMPLE": "quality.min_sample",
    "NOTION_TOKEN": "notion.token",
    "NOTION_DB_ID": "notion.database_id",
}


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")
    return data


def _assign(payload: dict, dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    node = payload
    for key in parents:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[leaf] = value


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from the project home."""

    project_root: Path | None = None
    data_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get("FEEDSYNC_HOME")
        if self.project_root is not None:
            root = Path(self.project_root).expanduser().resolve()
        elif env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = Path.cwd().resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def config_path(self) -> Path:
        for suffix in CONFIG_EXTENSIONS:
            candidate = self.data_dir / f"feedsync{suffix}"
            if candidate.exists():
                return candidate
        return self.data_dir / CONFIG_FILENAME

    def dotenv_path(self) -> Path:
        return self.project_root / ".env"


class ConfigRepository:
    """Repository layering config file, environment and CLI overrides."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()

    def load(self, overrides: Mapping[str, Any] | None = None) -> SyncConfig:
        load_dotenv(self.locator.dotenv_path(), override=False)
        path = self.locator.config_path()
        payload = _read_file(path) if path.exists() else {}
        for env_name, dotted in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value not in (None, ""):
                _assign(payload, dotted, value)
        for dotted, value in (overrides or {}).items():
            if value is not None:
                _assign(payload, dotted, value)
        try:
            config = SyncConfig.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc
        return self._anchor_paths(config)

    def save(self, config: SyncConfig) -> Path:
        path = self.locator.config_path()
        payload = config.model_dump(mode="json", exclude={"ai": {"api_key"}, "notion": {"token"}})
        with path.open("w", encoding="utf-8") as stream:
            if path.suffix in (".yaml", ".yml"):
                yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
            else:
                json.dump(payload, stream, indent=2, ensure_ascii=False)
        return path

    def _anchor_paths(self, config: SyncConfig) -> SyncConfig:
        root = self.locator.project_root
        update: dict[str, Any] = {"state_file": config.resolve(root, config.state_file)}
        if config.opml_path is not None:
            update["opml_path"] = config.resolve(root, config.opml_path)
        ai = config.ai.model_copy(update={"prompt_path": config.resolve(root, config.ai.prompt_path)})
        update["ai"] = ai
        return config.model_copy(update=update)


def require_sync_settings(config: SyncConfig) -> None:
    """Fail fast when a sync cannot possibly succeed."""

    missing: list[str] = []
    if config.opml_path is None:
        missing.append("OPML_PATH (--opml)")
    elif not config.opml_path.exists():
        raise ConfigError(f"OPML file not found: {config.opml_path}")
    if not config.notion.database_id:
        missing.append("NOTION_DB_ID (--db)")
    require_store_settings(config, missing)


def require_store_settings(config: SyncConfig, missing: list[str] | None = None) -> None:
    missing = list(missing or [])
    if not config.notion.token:
        missing.append("NOTION_TOKEN")
    if not config.notion.database_id and "NOTION_DB_ID (--db)" not in missing:
        missing.append("NOTION_DB_ID (--db)")
    if missing:
        raise ConfigError("Missing required configuration: " + ", ".join(missing))


__all__ = [
    "CONFIG_EXTENSIONS",
    "ConfigLocator",
    "ConfigRepository",
    "ENV_OVERRIDES",
    "require_store_settings",
    "require_sync_settings",
]
