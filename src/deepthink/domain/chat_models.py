from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel


EventName = Literal["deep-thinking", "final-response", "error", "end"]

DEEP_THINKING: EventName = "deep-thinking"
FINAL_RESPONSE: EventName = "final-response"
ERROR: EventName = "error"
END: EventName = "end"

GENERIC_ERROR_MESSAGE = "Error processing request"
QUERY_ACCEPTED_MESSAGE = "Query received, processing started."


class ChatQueryCreate(BaseModel):
    query: Optional[str] = None


class ChatAck(BaseModel):
    message: str


class StreamEvent(BaseModel):
    event: EventName
    data: Any = None

    @classmethod
    def fragment(cls, event: EventName, text: str) -> "StreamEvent":
        return cls(event=event, data=text)

    @classmethod
    def error(cls, message: str = GENERIC_ERROR_MESSAGE) -> "StreamEvent":
        return cls(event=ERROR, data={"message": message})

    @classmethod
    def end(cls) -> "StreamEvent":
        return cls(event=END, data=None)
