"""
Roles and the generation source boundary.

The model provider layer is an external collaborator. All this package needs
from it is an async stream of content-part deltas for the assistant message
being produced: normal exhaustion of the stream means the turn completed, a
raised exception means it failed, and cancelling the consuming task is how a
stop request reaches the provider.

Concrete implementations: 'ScriptedGenerationSource', 'EchoGenerationSource'.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from enum import StrEnum

from pydantic import BaseModel

from conversation_tree.conversation_database.data_models.parts import MessagePart


class Roles(StrEnum):
    """Author of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class LLMMessage(BaseModel):
    """A single history entry handed to a generation source."""

    content: str = ""
    role: Roles = Roles.ASSISTANT


class GenerationSource(ABC):
    """
    Abstract base class for model backends that produce assistant turns.

    'history' is the linear thread ending with the turn being answered, oldest
    first. Each yielded part is one delta and is applied in arrival order.
    """

    @abstractmethod
    def generate_stream(self, history: list[LLMMessage]) -> AsyncGenerator[MessagePart, None]:
        """Yield content-part deltas as they are produced."""
        pass
