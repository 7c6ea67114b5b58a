"""Load AppConfig from a TOML file, a .env file and KNOWLEDGE_* variables.

A config file may carry a ``[profiles.<name>]`` table per deployment; the
selected profile is deep-merged over the base tables. String values may
reference the environment as ``${VAR}`` or ``${VAR:-default}``.

Example config.toml:

    data_dir = "${KNOWLEDGE_HOME:-~/.knowledge}"

    [embedding]
    provider = "local"

    [profiles.server.vector_store]
    store_type = "chroma"
    persist_directory = "/var/lib/knowledge/chroma"
"""

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from knowledge.config.schema import AppConfig
from knowledge.observability.logging import get_logger

logger = get_logger(__name__)

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")

CONFIG_FILE_NAME = "config.toml"


def _resolve_reference(match: re.Match) -> str:
    name, has_default, default = match.group(1).partition(":-")
    name = name.strip()
    value = os.getenv(name)
    if value is not None:
        return value
    if has_default:
        return default
    # Left as written so validation reports the raw reference.
    logger.warning("env_var_not_found", var_name=name)
    return match.group(0)


def expand_env(value: Any) -> Any:
    """Replace ${VAR} / ${VAR:-default} in every string of a nested structure."""
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(_resolve_reference, value)
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return base with override applied; nested tables merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = deep_merge(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


def read_config_file(config_path: Path, profile: Optional[str] = None) -> dict[str, Any]:
    """Parse a TOML config file and apply one of its profiles."""
    with config_path.open("rb") as f:
        data = tomllib.load(f)
    logger.info("loaded_config_file", path=str(config_path))

    profiles = data.pop("profiles", {})
    if profile is not None:
        if profile not in profiles:
            logger.warning("profile_not_found", profile=profile, available=sorted(profiles))
        else:
            data = deep_merge(data, profiles[profile])
            logger.info("applied_profile", profile=profile)
    return expand_env(data)


def load_config(
    config_path: Optional[Path] = None,
    profile: Optional[str] = None,
    env_file: Optional[Path] = None,
) -> AppConfig:
    """Build the application configuration.

    Precedence, strongest first: KNOWLEDGE_* environment variables (including
    ones loaded from env_file), the config file with its profile, defaults.
    Missing files are skipped.

    Args:
        config_path: TOML config file
        profile: Profile name under ``[profiles]`` (e.g. "local", "server")
        env_file: .env file to load into the environment first
    """
    if env_file is not None and env_file.exists():
        load_dotenv(env_file)
        logger.info("loaded_env_file", path=str(env_file))

    file_values = read_config_file(config_path, profile) if config_path and config_path.exists() else {}
    config = AppConfig(**file_values)
    logger.info(
        "config_loaded",
        embedding_provider=config.embedding.provider.value,
        rerank_provider=config.rerank.provider.value,
        vector_store=config.vector_store.store_type.value,
        record_store=config.record_store.store_type.value,
        file_retrieval=config.file_retrieval.provider.value,
    )
    return config


def get_default_config_path() -> Path:
    """First existing of ./config.toml, ~/.knowledge/config.toml and
    /etc/knowledge/config.toml; the first candidate when none exists."""
    candidates = [
        Path.cwd() / CONFIG_FILE_NAME,
        Path.home() / ".knowledge" / CONFIG_FILE_NAME,
        Path("/etc/knowledge") / CONFIG_FILE_NAME,
    ]
    return next((path for path in candidates if path.exists()), candidates[0])
