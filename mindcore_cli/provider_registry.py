"""
Central provider registry for mindcore model backends.

A closed table keyed by the ``Provider`` enum. Model-name inference, alias
normalisation, API key and base URL resolution all go through here so the
"unknown provider" failure lives in exactly one place.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from mindcore.errors import ConfigurationError
from mindcore_constants import OLLAMA_BASE_URL, OPENAI_BASE_URL, OPENROUTER_BASE_URL

EnvGetter = Callable[[str], Optional[str]]


class Provider(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    REPLICATE = "replicate"
    OLLAMA = "ollama"
    MISTRAL = "mistral"
    GROQ = "groq"
    HUGGINGFACE = "huggingface"
    NOVITA = "novita"
    QWEN = "qwen"
    XAI = "xai"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"


@dataclass(frozen=True)
class ProviderMeta:
    id: Provider
    label: str
    default_base_url: str = ""
    api_key_env_vars: Tuple[str, ...] = ()
    base_url_env_var: Optional[str] = None
    model_prefixes: Tuple[str, ...] = ()  # stripped before the request
    aliases: Tuple[str, ...] = ()
    requires_api_key: bool = True
    supports_openai_chat: bool = True


PROVIDERS: Dict[Provider, ProviderMeta] = {
    Provider.GOOGLE: ProviderMeta(
        id=Provider.GOOGLE,
        label="Google Gemini",
        default_base_url="https://generativelanguage.googleapis.com/v1beta/openai",
        api_key_env_vars=("GEMINI_API_KEY", "GOOGLE_API_KEY"),
        base_url_env_var="GEMINI_BASE_URL",
        aliases=("gemini",),
    ),
    Provider.OPENAI: ProviderMeta(
        id=Provider.OPENAI,
        label="OpenAI",
        default_base_url=OPENAI_BASE_URL,
        api_key_env_vars=("OPENAI_API_KEY",),
        base_url_env_var="OPENAI_BASE_URL",
        aliases=("gpt",),
    ),
    Provider.ANTHROPIC: ProviderMeta(
        id=Provider.ANTHROPIC,
        label="Anthropic",
        default_base_url="https://api.anthropic.com/v1",
        api_key_env_vars=("ANTHROPIC_API_KEY",),
        base_url_env_var="ANTHROPIC_BASE_URL",
        aliases=("claude",),
    ),
    Provider.REPLICATE: ProviderMeta(
        id=Provider.REPLICATE,
        label="Replicate",
        api_key_env_vars=("REPLICATE_API_KEY",),
        model_prefixes=("replicate/",),
        supports_openai_chat=False,
    ),
    Provider.OLLAMA: ProviderMeta(
        id=Provider.OLLAMA,
        label="Ollama (local)",
        default_base_url=OLLAMA_BASE_URL,
        base_url_env_var="OLLAMA_BASE_URL",
        aliases=("local",),
        requires_api_key=False,
    ),
    Provider.MISTRAL: ProviderMeta(
        id=Provider.MISTRAL,
        label="Mistral",
        default_base_url="https://api.mistral.ai/v1",
        api_key_env_vars=("MISTRAL_API_KEY",),
        base_url_env_var="MISTRAL_BASE_URL",
        model_prefixes=("mistralai/", "mistral/"),
    ),
    Provider.GROQ: ProviderMeta(
        id=Provider.GROQ,
        label="GroqCloud",
        default_base_url="https://api.groq.com/openai/v1",
        api_key_env_vars=("GROQCLOUD_API_KEY", "GROQ_API_KEY"),
        base_url_env_var="GROQ_BASE_URL",
        model_prefixes=("groq/", "groqcloud/"),
        aliases=("groqcloud",),
    ),
    Provider.HUGGINGFACE: ProviderMeta(
        id=Provider.HUGGINGFACE,
        label="Hugging Face",
        default_base_url="https://router.huggingface.co/v1",
        api_key_env_vars=("HUGGINGFACE_API_KEY", "HF_TOKEN"),
        base_url_env_var="HUGGINGFACE_BASE_URL",
        model_prefixes=("huggingface/",),
        aliases=("hf",),
    ),
    Provider.NOVITA: ProviderMeta(
        id=Provider.NOVITA,
        label="Novita AI",
        default_base_url="https://api.novita.ai/v3/openai",
        api_key_env_vars=("NOVITA_API_KEY",),
        base_url_env_var="NOVITA_BASE_URL",
        model_prefixes=("novita/",),
    ),
    Provider.QWEN: ProviderMeta(
        id=Provider.QWEN,
        label="Qwen (DashScope)",
        default_base_url="https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
        api_key_env_vars=("QWEN_API_KEY", "DASHSCOPE_API_KEY"),
        base_url_env_var="QWEN_BASE_URL",
    ),
    Provider.XAI: ProviderMeta(
        id=Provider.XAI,
        label="xAI Grok",
        default_base_url="https://api.x.ai/v1",
        api_key_env_vars=("XAI_API_KEY",),
        base_url_env_var="XAI_BASE_URL",
        aliases=("grok",),
    ),
    Provider.DEEPSEEK: ProviderMeta(
        id=Provider.DEEPSEEK,
        label="DeepSeek",
        default_base_url="https://api.deepseek.com",
        api_key_env_vars=("DEEPSEEK_API_KEY",),
        base_url_env_var="DEEPSEEK_BASE_URL",
    ),
    Provider.OPENROUTER: ProviderMeta(
        id=Provider.OPENROUTER,
        label="OpenRouter",
        default_base_url=OPENROUTER_BASE_URL,
        api_key_env_vars=("OPENROUTER_API_KEY",),
        base_url_env_var="OPENROUTER_BASE_URL",
        model_prefixes=("openrouter/",),
    ),
}

_ALIAS_TO_PROVIDER: Dict[str, Provider] = {}
for _pid, _meta in PROVIDERS.items():
    _ALIAS_TO_PROVIDER[_pid.value] = _pid
    for _alias in _meta.aliases:
        _ALIAS_TO_PROVIDER[_alias.lower()] = _pid

# Checked in order; openrouter/ must win over names it shares with others.
_MODEL_NAME_RULES: Tuple[Tuple[Tuple[str, ...], Provider], ...] = (
    (("gemini",), Provider.GOOGLE),
    (("openrouter/",), Provider.OPENROUTER),
    (("gpt", "o1", "o3"), Provider.OPENAI),
    (("claude",), Provider.ANTHROPIC),
    (("huggingface/",), Provider.HUGGINGFACE),
    (("replicate/",), Provider.REPLICATE),
    (("mistralai/", "mistral/"), Provider.MISTRAL),
    (("groq/", "groqcloud/"), Provider.GROQ),
    (("novita/",), Provider.NOVITA),
    (("qwen",), Provider.QWEN),
    (("grok",), Provider.XAI),
    (("deepseek",), Provider.DEEPSEEK),
    (("mistral",), Provider.MISTRAL),
    (("llama3",), Provider.OLLAMA),
)


def normalize_provider_id(provider_id: Optional[str]) -> Optional[Provider]:
    """Normalize a provider ID or alias to a Provider, or None if unknown."""
    if isinstance(provider_id, Provider):
        return provider_id
    if not provider_id:
        return None
    key = str(provider_id).strip().lower()
    return _ALIAS_TO_PROVIDER.get(key)


def require_provider(provider_id: Optional[str]) -> Provider:
    provider = normalize_provider_id(provider_id)
    if provider is None:
        known = ", ".join(list_provider_ids())
        raise ConfigurationError(f"Unknown API: {provider_id!r} (known: {known})")
    return provider


def get_provider(provider_id) -> Optional[ProviderMeta]:
    provider = normalize_provider_id(provider_id)
    return PROVIDERS.get(provider) if provider else None


def infer_provider(model: str) -> Provider:
    """Guess the provider from a model name.

    Raises:
        ConfigurationError: No rule matches the model name.
    """
    if not model:
        raise ConfigurationError("No model specified")
    for needles, provider in _MODEL_NAME_RULES:
        if any(needle in model for needle in needles):
            return provider
    raise ConfigurationError(f"Unknown model: {model!r}")


def strip_model_prefix(provider_id, model: str) -> str:
    """Remove routing prefixes (``groq/``, ``novita/``...) the provider API does not accept."""
    meta = get_provider(provider_id)
    if not meta:
        return model
    for prefix in meta.model_prefixes:
        if model.startswith(prefix):
            return model[len(prefix):]
    return model


def list_provider_ids(*, openai_chat_only: bool = False) -> List[str]:
    ids: List[str] = []
    for pid, meta in PROVIDERS.items():
        if openai_chat_only and not meta.supports_openai_chat:
            continue
        ids.append(pid.value)
    return ids


def iter_api_key_env_vars(provider_id) -> Iterable[str]:
    meta = get_provider(provider_id)
    if not meta:
        return ()
    return meta.api_key_env_vars


def resolve_provider_api_key(
    provider_id,
    *,
    env_get: EnvGetter = os.getenv,
    explicit_api_key: Optional[str] = None,
) -> Optional[str]:
    if explicit_api_key:
        return explicit_api_key
    for env_var in iter_api_key_env_vars(provider_id):
        value = env_get(env_var)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def resolve_provider_base_url(
    provider_id,
    *,
    env_get: EnvGetter = os.getenv,
    explicit_base_url: Optional[str] = None,
) -> Optional[str]:
    """
    Resolve a provider base URL.

    Order:
    1) explicit url from the model profile
    2) provider-specific base URL env override
    3) provider default base URL
    """
    if isinstance(explicit_base_url, str) and explicit_base_url.strip():
        return explicit_base_url.strip().rstrip("/")
    meta = get_provider(provider_id)
    if not meta:
        return None
    if meta.base_url_env_var:
        env_value = env_get(meta.base_url_env_var)
        if isinstance(env_value, str) and env_value.strip():
            return env_value.strip().rstrip("/")
    if meta.default_base_url:
        return meta.default_base_url.rstrip("/")
    return None
