"""Routing helpers for selecting the generation backend provider.

Every supported provider speaks the OpenAI-compatible chat completion API, so
the router only decides *which* endpoint, model and credential the
generation client should use. Selection stays unit-testable because the
environment mapping is injected.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional, Iterable, Set


@dataclass(frozen=True)
class ProviderSelection:
    """Returned details about the provider that should serve generation."""

    name: str
    model: str
    base_url: str
    api_key_env: Optional[str]
    requires_api_key: bool = True


class ModelRouter:
    """Priority-based provider selection for the two generation stages."""

    PROVIDER_CONFIG: Dict[str, Dict[str, Optional[str] | bool]] = {
        "mistral": {
            "api_key_env": "MISTRAL_API_KEY",
            "base_url_env": "MISTRAL_BASE_URL",
            "model_env": "MISTRAL_MODEL",
            "default_model": "mistral-tiny",
            "default_base_url": "https://api.mistral.ai/v1",
        },
        "openai": {
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o-mini",
            "default_base_url": "https://api.openai.com/v1",
        },
        "local": {
            "api_key_env": "LOCAL_API_KEY",
            "base_url_env": "LOCAL_BASE_URL",
            "model_env": "LOCAL_MODEL",
            "default_model": "llama3.2:latest",
            "default_base_url": "http://127.0.0.1:11434/v1",
            "requires_api_key": False,
        },
    }

    PRIORITY: tuple[str, ...] = ("mistral", "openai", "local")

    def __init__(
        self,
        env: Optional[Dict[str, str]] = None,
        allowed_providers: Optional[Iterable[str]] = None,
        preferred_provider: Optional[str] = None,
    ) -> None:
        self._env = os.environ if env is None else env
        self._allowed: Optional[Set[str]] = set(allowed_providers) if allowed_providers else None
        preferred = (preferred_provider or self._env.get("DEEPTHINK_MODEL_PROVIDER") or "").strip().lower()
        self._preferred_provider = preferred if preferred in self.PROVIDER_CONFIG else None

    def provider_available(self, provider: str) -> bool:
        cfg = self.PROVIDER_CONFIG.get(provider)
        if not cfg:
            return False
        if self._allowed is not None and provider not in self._allowed:
            return False
        if bool(cfg.get("requires_api_key", True)):
            api_key_env = cfg.get("api_key_env")
            return bool(api_key_env and (self._env.get(str(api_key_env)) or "").strip())
        # Keyless hosts must be switched on explicitly.
        return (self._env.get("DEEPTHINK_ENABLE_LOCAL_PROVIDER") or "").strip() == "1"

    def resolve_provider(self, provider: str) -> ProviderSelection:
        cfg = self.PROVIDER_CONFIG[provider]
        model_env = str(cfg.get("model_env") or "")
        base_url_env = str(cfg.get("base_url_env") or "")
        model = (self._env.get(model_env) or "").strip() or str(cfg.get("default_model") or "")
        base_url = (self._env.get(base_url_env) or "").strip() or str(cfg.get("default_base_url") or "")
        api_key_env = cfg.get("api_key_env")
        return ProviderSelection(
            name=provider,
            model=model,
            base_url=base_url.rstrip("/"),
            api_key_env=str(api_key_env) if api_key_env else None,
            requires_api_key=bool(cfg.get("requires_api_key", True)),
        )

    def select_provider(self) -> ProviderSelection:
        """Return the first available provider in priority order.

        Raises
        ------
        RuntimeError
            If no configured provider is currently available.
        """

        priority = list(self.PRIORITY)
        if self._preferred_provider:
            priority = [self._preferred_provider] + [p for p in priority if p != self._preferred_provider]
        for provider in priority:
            if self.provider_available(provider):
                return self.resolve_provider(provider)
        raise RuntimeError("No active model provider available for generation.")

    def maybe_select_provider(self) -> Optional[ProviderSelection]:
        """Like :meth:`select_provider` but returns ``None`` on failure."""

        try:
            return self.select_provider()
        except RuntimeError:
            return None

    def api_key_for(self, selection: ProviderSelection) -> Optional[str]:
        if not selection.api_key_env:
            return None
        return (self._env.get(selection.api_key_env) or "").strip() or None
