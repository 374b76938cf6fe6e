"""Process configuration, read once at startup.

Values come from the environment (optionally seeded from a ``.env`` file by
``load_dotenv`` in the API entrypoint). Backend credentials are not copied
here; the :class:`~src.deepthink.services.model_router.ModelRouter` resolves
them from the same environment mapping when a provider is selected.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple


DEFAULT_PORT = 5001
DEFAULT_HOST = "0.0.0.0"
DEFAULT_ALLOWED_ORIGINS = ("http://localhost:4200",)


def _split_csv(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    allowed_origins: Tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    temperature: float = 0.0
    preferred_provider: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        origins = _split_csv(env.get("DEEPTHINK_ALLOWED_ORIGINS") or "")
        try:
            port = int(env.get("PORT") or DEFAULT_PORT)
        except ValueError:
            port = DEFAULT_PORT
        try:
            temperature = float(env.get("DEEPTHINK_TEMPERATURE") or 0.0)
        except ValueError:
            temperature = 0.0
        preferred = (env.get("DEEPTHINK_MODEL_PROVIDER") or "").strip().lower()
        return cls(
            host=(env.get("DEEPTHINK_HOST") or DEFAULT_HOST).strip(),
            port=port,
            allowed_origins=origins or DEFAULT_ALLOWED_ORIGINS,
            temperature=max(0.0, temperature),
            preferred_provider=preferred or None,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
