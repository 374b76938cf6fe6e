from __future__ import annotations

from fastapi import APIRouter

from ...core.settings import get_settings
from ...services.model_router import ModelRouter

router = APIRouter(prefix="/diag", tags=["diagnostics"])


@router.get("/llm")
async def diag_llm():
    settings = get_settings()
    model_router = ModelRouter(preferred_provider=settings.preferred_provider)
    selection = model_router.maybe_select_provider()
    if selection is None:
        return {
            "provider": "none",
            "model": None,
            "base_url": None,
            "has_api_key": False,
            "temperature": settings.temperature,
            "ready": False,
        }
    has_key = model_router.api_key_for(selection) is not None
    return {
        "provider": selection.name,
        "model": selection.model,
        "base_url": selection.base_url,
        "has_api_key": has_key,
        "temperature": settings.temperature,
        "ready": has_key or not selection.requires_api_key,
    }
