"""
Deterministic generation sources.

They stand in for a real model provider in tests and in the demo. Both sleep
between deltas so a stop request has something to interrupt.
"""

import asyncio
from collections.abc import AsyncGenerator

from conversation_tree.conversation_database.data_models.parts import MessagePart, TextPart
from conversation_tree.llms.base import GenerationSource, LLMMessage, Roles


class ScriptedGenerationSource(GenerationSource):
    """
    Replays a fixed list of text chunks.

    Attributes:
        chunks: Text deltas yielded in order.
        delay: Seconds to wait before each chunk.
        error: If set, raised after the last chunk to simulate a provider failure.
    """

    def __init__(self, chunks: list[str], delay: float = 0.0, error: Exception | None = None) -> None:
        self.chunks = chunks
        self.delay = delay
        self.error = error
        self.calls: list[list[LLMMessage]] = []

    async def generate_stream(self, history: list[LLMMessage]) -> AsyncGenerator[MessagePart, None]:
        self.calls.append(list(history))
        for chunk in self.chunks:
            await asyncio.sleep(self.delay)
            yield TextPart(text=chunk)
        if self.error is not None:
            raise self.error


class EchoGenerationSource(GenerationSource):
    """Answers with the text of the last user turn, split into 'chunk_size' pieces."""

    def __init__(self, chunk_size: int = 4, delay: float = 0.0) -> None:
        self.chunk_size = chunk_size
        self.delay = delay

    async def generate_stream(self, history: list[LLMMessage]) -> AsyncGenerator[MessagePart, None]:
        last_user = next((m.content for m in reversed(history) if m.role == Roles.USER), "")
        answer = f"You said: {last_user}"
        for start in range(0, len(answer), self.chunk_size):
            await asyncio.sleep(self.delay)
            yield TextPart(text=answer[start : start + self.chunk_size])
