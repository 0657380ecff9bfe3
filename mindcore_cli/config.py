"""
Settings loading for mindcore.

Settings live in ``$MINDCORE_HOME/settings.yaml`` (default ``~/.mindcore``);
API keys in ``$MINDCORE_HOME/.env``. Only the keys present in the YAML file
override the defaults below.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from mindcore.errors import ConfigurationError
from mindcore_constants import DEFAULT_MAX_MESSAGES, DEFAULT_SUMMARY_CHUNK_SIZE

logger = logging.getLogger(__name__)


def get_mindcore_home() -> Path:
    return Path(os.getenv("MINDCORE_HOME", Path.home() / ".mindcore"))


def get_settings_path() -> Path:
    return get_mindcore_home() / "settings.yaml"


def load_env(project_root: Optional[Path] = None) -> Optional[Path]:
    """Load ``.env`` from MINDCORE_HOME first, then the project root as dev fallback.

    Returns:
        The path that was loaded, or None when neither exists.
    """
    user_env = get_mindcore_home() / ".env"
    project_env = (project_root or Path.cwd()) / ".env"
    for env_path in (user_env, project_env):
        if not env_path.exists():
            continue
        try:
            load_dotenv(dotenv_path=env_path, encoding="utf-8")
        except UnicodeDecodeError:
            load_dotenv(dotenv_path=env_path, encoding="latin-1")
        logger.info("Loaded environment variables from %s", env_path)
        return env_path
    logger.info("No .env file found. Using system environment variables.")
    return None


@dataclass
class Settings:
    """Process-wide settings shared by every agent session."""

    # Profiles
    base_profile: str = "profiles/defaults/survival.json"
    defaults_profile: str = "profiles/defaults/_default.json"

    # Where per-agent session files and archives go
    bots_dir: str = "bots"

    # Conversation buffer
    max_messages: int = DEFAULT_MAX_MESSAGES
    summary_chunk_size: int = DEFAULT_SUMMARY_CHUNK_SIZE

    # Retrieval collaborators
    num_examples: int = 2
    relevant_docs_count: int = 5

    # Treat the raw context as the memory instead of the consolidated summary
    use_raw_context_memory: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown settings keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_yaml(cls, path: str) -> "Settings":
        """Load settings from a YAML file. Missing keys keep their defaults."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read settings from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must contain a mapping")
        return cls.from_dict(data)


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from ``path`` or the default location; defaults if absent."""
    settings_path = Path(path) if path else get_settings_path()
    if not settings_path.exists():
        if path:
            raise ConfigurationError(f"Settings file not found: {settings_path}")
        logger.debug("No settings file at %s, using defaults", settings_path)
        return Settings()
    return Settings.from_yaml(str(settings_path))
