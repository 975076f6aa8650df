"""
Message data model and storage interface.

Messages form a tree within a chat via 'parent_id'. Editing a user turn or
regenerating an assistant turn never changes an existing message: it adds a
sibling under the same parent, so every earlier version stays reachable.

A persisted message is immutable except for one transition: an assistant
message created with 'is_partial=True' while streaming may have its parts
extended and is then finalized once ('is_partial=False', 'finish_reason' set).

The 'MessageDatabase' ABC is the pluggable persistence backend. Concrete
implementations: 'InMemoryMessageDatabase'.
"""

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Sequence

from pydantic import BaseModel, Field

from conversation_tree.conversation_database.data_models.parts import MessagePart, TextPart
from conversation_tree.llms.base import Roles


class FinishReason(StrEnum):
    """How an assistant turn ended."""

    STOP = "stop"
    CANCELLED = "cancelled"
    ERROR = "error"


class Message(BaseModel):
    """
    A single message within a chat.

    'parent_id' is None only for the first message of a chat (or the first
    message of an edited first turn). 'create_timestamp' orders siblings; the
    newest sibling is the branch shown by default. 'selected_model' and
    'selected_tool' are provenance metadata and play no part in tree logic.
    """

    id: str
    chat_id: str
    role: Roles
    parts: list[MessagePart] = Field(default_factory=list)
    create_timestamp: int
    parent_id: str | None = None
    is_partial: bool = False
    finish_reason: FinishReason | None = None
    user_id: str | None = None
    selected_model: str | None = None
    selected_tool: str | None = None

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))


class MessageDatabase(ABC):
    """Abstract repository for 'Message' records. Append-only: there is no delete."""

    @abstractmethod
    async def create_message(self, message: Message) -> Message:
        pass

    @abstractmethod
    async def get_messages_by_chat_id(self, chat_id: str) -> list[Message]:
        """Return every message of the chat in no particular order."""
        pass

    @abstractmethod
    async def get_message_by_id(self, message_id: str) -> Message | None:
        pass

    @abstractmethod
    async def update_partial_message(
        self,
        message_id: str,
        parts: Sequence[MessagePart],
        is_partial: bool,
        finish_reason: FinishReason | None = None,
    ) -> Message:
        """Replace the parts of a still-partial message, optionally finalizing it."""
        pass
