"""
Typed content segments of a message.

A message body is an ordered list of parts. Order is significant: the UI
renders parts in sequence and tool results follow their invocations.
'MessagePart' is a discriminated union on 'type' so persisted JSON round-trips
back into the right model.

Streaming deltas are parts too. 'append_part_delta' folds a delta into an
existing part list: text and reasoning deltas extend a trailing part of the
same kind, anything else starts a new part.
"""

from typing import Annotated, Any, Literal, Sequence

from pydantic import BaseModel, Field


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolInvocationPart(BaseModel):
    """A tool call requested by the model."""

    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    """The result returned for an earlier 'ToolInvocationPart'."""

    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    result: Any = None


class AttachmentPart(BaseModel):
    """Reference to an uploaded file. The file itself lives elsewhere."""

    type: Literal["attachment"] = "attachment"
    url: str
    name: str
    media_type: str


class ErrorPart(BaseModel):
    """Marks a turn whose generation failed. Kept so the failure stays visible."""

    type: Literal["error"] = "error"
    reason: str


MessagePart = Annotated[
    TextPart | ReasoningPart | ToolInvocationPart | ToolResultPart | AttachmentPart | ErrorPart,
    Field(discriminator="type"),
]


def append_part_delta(parts: Sequence[MessagePart], delta: MessagePart) -> list[MessagePart]:
    """Return a new part list with 'delta' folded in. 'parts' is not modified."""
    merged = list(parts)
    if merged and isinstance(delta, (TextPart, ReasoningPart)) and type(merged[-1]) is type(delta):
        last = merged[-1]
        merged[-1] = last.model_copy(update={"text": last.text + delta.text})  # type: ignore[union-attr]
    else:
        merged.append(delta.model_copy())
    return merged


def text_parts(content: str | Sequence[MessagePart]) -> list[MessagePart]:
    """Normalise user input (plain text or ready-made parts) to a part list."""
    if isinstance(content, str):
        return [TextPart(text=content)]
    return [part.model_copy() for part in content]
