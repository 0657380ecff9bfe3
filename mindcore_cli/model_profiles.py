"""
Agent profile resolution.

An agent profile is a JSON file. It is layered over a base profile, which is
layered over the shared defaults:

    per-agent profile > base profile > defaults

A key present in a higher layer wins; absent keys fall through. The merge
happens once per session and yields an immutable ResolvedProfile.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from mindcore.errors import ConfigurationError, PersistenceError
from mindcore_cli.config import Settings
from mindcore_cli.provider_registry import (
    Provider,
    infer_provider,
    normalize_provider_id,
    require_provider,
)

logger = logging.getLogger(__name__)

TEMPLATE_KEYS = ("conversing", "coding", "saving_memory", "bot_responder", "goal_setting")

# Providers with an embedding endpoint; everything else falls back to none
EMBEDDING_PROVIDERS = frozenset({
    Provider.GOOGLE, Provider.OPENAI, Provider.REPLICATE, Provider.OLLAMA,
    Provider.QWEN, Provider.MISTRAL, Provider.HUGGINGFACE, Provider.NOVITA,
})


@dataclass(frozen=True)
class ModelProfile:
    api: Provider
    model: str
    url: Optional[str] = None
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"api": self.api.value, "model": self.model}
        if self.url:
            data["url"] = self.url
        if self.params:
            data["params"] = dict(self.params)
        return data


@dataclass(frozen=True)
class ResolvedProfile:
    name: str
    chat_model: ModelProfile
    code_model: ModelProfile
    embedding: Mapping[str, Any]
    cooldown_ms: int
    max_tokens: Optional[int]
    templates: Mapping[str, str]
    conversation_examples: Tuple[Any, ...] = ()
    coding_examples: Tuple[Any, ...] = ()
    modes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    raw: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def template(self, key: str) -> str:
        return self.templates.get(key, "")


def merge_profile_layers(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Shallow-merge configuration layers, lowest priority first.

    ``None`` values count as absent so they never shadow a lower layer.
    """
    merged: Dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            if value is not None:
                merged[key] = value
    return merged


def select_model_profile(spec: Any) -> ModelProfile:
    """Turn a profile ``model`` entry (string or mapping) into a ModelProfile.

    Raises:
        ConfigurationError: The provider cannot be determined.
    """
    if isinstance(spec, str):
        spec = {"model": spec}
    if not isinstance(spec, Mapping):
        raise ConfigurationError(f"Invalid model entry: {spec!r}")

    model = str(spec.get("model") or "").strip()
    if spec.get("api"):
        api = require_provider(spec["api"])
    else:
        api = infer_provider(model)
    url = spec.get("url")
    if isinstance(url, str):
        url = url.strip() or None
    params = spec.get("params") or {}
    if not isinstance(params, Mapping):
        raise ConfigurationError(f"Model params must be a mapping, got {params!r}")
    return ModelProfile(api=api, model=model, url=url, params=MappingProxyType(dict(params)))


def resolve_embedding(embedding: Any, chat_model: ModelProfile) -> Dict[str, Any]:
    """Normalise the profile ``embedding`` entry.

    A string is shorthand for ``{"api": <string>}``. When unset, the chat
    provider is used unless it is ollama or has no embedding endpoint.
    """
    if embedding is None:
        if chat_model.api != Provider.OLLAMA and chat_model.api in EMBEDDING_PROVIDERS:
            embedding = {"api": chat_model.api.value}
        else:
            embedding = {"api": "none"}
    elif isinstance(embedding, str):
        embedding = {"api": embedding}
    else:
        embedding = dict(embedding)

    provider = normalize_provider_id(embedding.get("api"))
    if provider is None or provider not in EMBEDDING_PROVIDERS:
        if embedding.get("api") != "none":
            logger.warning(
                "Unsupported embedding: %s. Using word-overlap instead, expect reduced performance.",
                embedding.get("api") or "[NOT SPECIFIED]",
            )
        embedding["api"] = "none"
    else:
        embedding["api"] = provider.value
    return embedding


def load_profile_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Failed to load profile {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Profile {path} must contain a JSON object")
    return data


def build_resolved_profile(merged: Mapping[str, Any]) -> ResolvedProfile:
    """Build the immutable ResolvedProfile from an already merged mapping."""
    name = str(merged.get("name") or "").strip()
    if not name:
        raise ConfigurationError("Profile has no name")
    if not merged.get("model"):
        raise ConfigurationError(f"Profile {name!r} has no model")

    chat_model = select_model_profile(merged["model"])
    code_model = select_model_profile(merged["code_model"]) if merged.get("code_model") else chat_model

    cooldown = merged.get("cooldown") or 0
    try:
        cooldown_ms = int(cooldown)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid cooldown {cooldown!r}") from e

    templates = {key: str(merged.get(key) or "") for key in TEMPLATE_KEYS}
    for key, value in templates.items():
        if not value:
            logger.warning("Profile %s has no %r template", name, key)

    return ResolvedProfile(
        name=name,
        chat_model=chat_model,
        code_model=code_model,
        embedding=MappingProxyType(resolve_embedding(merged.get("embedding"), chat_model)),
        cooldown_ms=cooldown_ms,
        max_tokens=merged.get("max_tokens") or None,
        templates=MappingProxyType(templates),
        conversation_examples=tuple(merged.get("conversation_examples") or ()),
        coding_examples=tuple(merged.get("coding_examples") or ()),
        modes=MappingProxyType(dict(merged.get("modes") or {})),
        raw=MappingProxyType(dict(merged)),
    )


def resolve_profile(profile_path: str, settings: Settings) -> ResolvedProfile:
    """Load and merge defaults < base < agent profile and resolve models."""
    defaults = load_profile_file(Path(settings.defaults_profile))
    base = load_profile_file(Path(settings.base_profile))
    agent = load_profile_file(Path(profile_path))
    merged = merge_profile_layers(defaults, base, agent)
    profile = build_resolved_profile(merged)
    logger.info(
        "Resolved profile %s: chat=%s/%s code=%s/%s embedding=%s",
        profile.name,
        profile.chat_model.api.value, profile.chat_model.model,
        profile.code_model.api.value, profile.code_model.model,
        profile.embedding.get("api"),
    )
    return profile


def write_last_profile(profile: ResolvedProfile, bot_dir: Path) -> Path:
    """Write the merged profile next to the agent's session file for inspection."""
    bot_dir = Path(bot_dir)
    bot_dir.mkdir(parents=True, exist_ok=True)
    path = bot_dir / "last_profile.json"
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(dict(profile.raw), f, indent=4, ensure_ascii=False)
    except OSError as e:
        raise PersistenceError(f"Failed to save profile copy to {path}: {e}") from e
    logger.debug("Copy profile saved to %s", path)
    return path
