"""
Model backends.

Every provider is consumed through the same capability: send the turns plus a
system prompt, get text back. Providers that expose an OpenAI-compatible chat
endpoint share ``OpenAIChatBackend``; the provider table decides base URL,
API key and model-name prefixes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from openai import AsyncOpenAI, OpenAIError

from mindcore.errors import BackendError, ConfigurationError
from mindcore.turns import Turn, turns_to_dicts
from mindcore_cli.model_profiles import ModelProfile
from mindcore_cli.provider_registry import (
    EnvGetter,
    get_provider,
    resolve_provider_api_key,
    resolve_provider_base_url,
    strip_model_prefix,
)

logger = logging.getLogger(__name__)


class ModelBackend(Protocol):
    """Uniform request/response contract implemented once per provider."""

    async def send_request(self, turns: Sequence[Turn], system_prompt: str) -> str:
        """Send ``turns`` after ``system_prompt`` and return the reply text.

        Raises:
            BackendError: Network or provider failure.
        """


class OpenAIChatBackend:
    """Chat backend for any OpenAI-compatible endpoint.

    Args:
        model: Model identifier as the endpoint expects it.
        base_url: Endpoint base URL.
        api_key: API key (may be a placeholder for local servers).
        params: Extra request options (temperature, max_tokens, ...).
        provider: Provider tag, for error reporting.
        client: Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        *,
        model: str,
        base_url: str,
        api_key: str,
        params: Optional[Dict[str, Any]] = None,
        provider: str = None,
        client: AsyncOpenAI = None,
    ):
        self.model = model
        self.base_url = base_url
        self.provider = provider
        self.params = dict(params or {})
        self.client = client or AsyncOpenAI(base_url=base_url, api_key=api_key)

    def _build_messages(self, turns: Sequence[Turn], system_prompt: str) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(turns_to_dicts(turns))
        return messages

    async def send_request(self, turns: Sequence[Turn], system_prompt: str) -> str:
        messages = self._build_messages(turns, system_prompt)
        logger.debug("Awaiting %s response from %s (%d messages)", self.provider, self.model, len(messages))
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **self.params,
            )
        except OpenAIError as e:
            logger.error("%s request to %s failed: %s", self.provider, self.model, e)
            raise BackendError(str(e), provider=self.provider, model=self.model) from e

        if not response.choices:
            raise BackendError("Empty response (no choices)", provider=self.provider, model=self.model)
        choice = response.choices[0]
        if choice.finish_reason == "length":
            logger.warning("%s response from %s hit the token limit", self.provider, self.model)
        return choice.message.content or ""


def create_backend(
    profile: ModelProfile,
    *,
    max_tokens: Optional[int] = None,
    env_get: EnvGetter = None,
) -> OpenAIChatBackend:
    """Build the backend for a resolved ModelProfile.

    Raises:
        ConfigurationError: The provider is unknown or has no chat endpoint
            this package can drive.
    """
    meta = get_provider(profile.api)
    if meta is None:
        raise ConfigurationError(f"Unknown API: {profile.api!r}")
    if not meta.supports_openai_chat:
        raise ConfigurationError(f"{meta.label} has no OpenAI-compatible chat endpoint")

    env_kwargs = {"env_get": env_get} if env_get is not None else {}
    base_url = resolve_provider_base_url(meta.id, explicit_base_url=profile.url, **env_kwargs)
    if not base_url:
        raise ConfigurationError(f"No base URL for provider {meta.id.value}")

    api_key = resolve_provider_api_key(meta.id, **env_kwargs)
    if not api_key:
        if meta.requires_api_key:
            logger.warning(
                "No API key for %s. Set one of: %s",
                meta.label, ", ".join(meta.api_key_env_vars),
            )
        # The client refuses an empty key; local servers ignore it
        api_key = "no-key"

    params = dict(profile.params)
    if max_tokens and "max_tokens" not in params:
        params["max_tokens"] = max_tokens

    return OpenAIChatBackend(
        model=strip_model_prefix(meta.id, profile.model),
        base_url=base_url,
        api_key=api_key,
        params=params,
        provider=meta.id.value,
    )
