from __future__ import annotations


class DeepThinkError(Exception):
    """Base class for errors answered synchronously with a JSON ``{message}`` body."""

    status_code = 400
    message = "Bad request"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class QueryRequired(DeepThinkError):
    message = "Query is required"


class NoQueryAvailable(DeepThinkError):
    message = "No query available, send a query first."


class GenerationFailure(RuntimeError):
    """A stage's fragment sequence raised mid-stream."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} stage failed: {cause}")
        self.stage = stage
        self.cause = cause


class ChannelFailure(RuntimeError):
    """The client went away; nothing more is written to the channel."""
