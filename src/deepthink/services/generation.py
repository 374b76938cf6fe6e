from __future__ import annotations

import logging
from typing import AsyncIterator, Optional, Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_openai import ChatOpenAI

from .model_router import ModelRouter, ProviderSelection


LOG = logging.getLogger("deepthink.llm")


class GenerationUnavailable(RuntimeError):
    pass


class GenerationClient(Protocol):
    def stream(self, prompt: str) -> AsyncIterator[str]: ...


def _is_placeholder_key(k: Optional[str]) -> bool:
    if not k:
        return True
    val = k.strip()
    if not val:
        return True
    return val in {"__REDACTED__", "__REPLACE_WITH_YOUR_KEY__", "changeme", "your_api_key_here", "placeholder"}


class ChatGenerationClient:
    """Streams text fragments from an OpenAI-compatible chat model.

    The model is resolved lazily on the first ``stream`` call so a missing
    credential surfaces as a failure of that stream rather than at startup.

    Empty chunks (the parser commonly emits a leading ``""``) are dropped, so
    clients never receive an event with an empty fragment from this backend.
    """

    def __init__(self, router: Optional[ModelRouter] = None, temperature: float = 0.0) -> None:
        self._router = router or ModelRouter()
        self._temperature = temperature
        self._chain = None
        self.selection: Optional[ProviderSelection] = None

    def _build_chain(self):
        if self._chain is not None:
            return self._chain
        selection = self._router.maybe_select_provider()
        if selection is None:
            raise GenerationUnavailable("LLM not configured")
        api_key = self._router.api_key_for(selection)
        if selection.requires_api_key and _is_placeholder_key(api_key):
            raise GenerationUnavailable("LLM not configured")
        LOG.info(
            "Using LLM provider name=%s model=%s base_url=%s",
            selection.name,
            selection.model,
            selection.base_url,
        )
        llm = ChatOpenAI(
            api_key=api_key or "not-needed",
            base_url=selection.base_url,
            model=selection.model,
            temperature=self._temperature,
            streaming=True,
        )
        self.selection = selection
        self._chain = llm | StrOutputParser()
        return self._chain

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        chain = self._build_chain()
        iterator = chain.astream(prompt)
        try:
            async for chunk in iterator:
                if chunk:
                    yield chunk
        finally:
            closer = getattr(iterator, "aclose", None)
            if closer is not None:
                await closer()
