from __future__ import annotations

import logging
from typing import AsyncIterator, Iterable, Mapping, Optional, Union

from ..domain.errors import GenerationFailure
from .generation import GenerationClient
from .prompts import render
from .streaming import iter_as_async


LOG = logging.getLogger("deepthink.llm")


class FragmentStream:
    """Pull-based view over one stage's fragments.

    Fragments are handed over one at a time in arrival order. Any exception
    raised by the backend sequence is re-raised as :class:`GenerationFailure`.
    ``aclose`` is the cancellation hook: it stops the backend call and is safe
    to call more than once.
    """

    def __init__(self, stage: str, source: Union[AsyncIterator[str], Iterable[str]]) -> None:
        self.stage = stage
        if hasattr(source, "__aiter__"):
            self._iterator = source.__aiter__()
        else:
            self._iterator = iter_as_async(source)
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def __aiter__(self) -> "FragmentStream":
        return self

    async def __anext__(self) -> str:
        if self._done:
            raise StopAsyncIteration
        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            self._done = True
            raise
        except Exception as exc:
            self._done = True
            raise GenerationFailure(self.stage, exc) from exc

    async def aclose(self) -> None:
        if self._done:
            return
        self._done = True
        closer = getattr(self._iterator, "aclose", None)
        if closer is not None:
            await closer()


class StageChain:
    """One prompt-render-then-generate unit."""

    def __init__(self, template_id: str, client: GenerationClient, name: Optional[str] = None) -> None:
        self.template_id = template_id
        self.name = name or template_id
        self._client = client

    def run(self, fields: Mapping[str, str]) -> FragmentStream:
        prompt = render(self.template_id, fields)
        LOG.debug("stage_submit", extra={"stage": self.name, "prompt_chars": len(prompt)})
        return FragmentStream(self.name, self._client.stream(prompt))
