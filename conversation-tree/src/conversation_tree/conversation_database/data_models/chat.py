"""
Chat data model and storage interface.

A chat is the container that owns a message tree. Only its identity matters
to the tree logic; title, visibility and pinning are carried for the
surrounding application.

Concrete implementations: 'InMemoryChatDatabase'.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel


class Visibility(StrEnum):
    PRIVATE = "private"
    PUBLIC = "public"


class Chat(BaseModel):
    """A single chat owned by a user."""

    id: str
    user_id: str
    title: str
    create_timestamp: int
    update_timestamp: int
    visibility: Visibility = Visibility.PRIVATE
    is_pinned: bool = False


class ChatDatabase(ABC):
    """Abstract repository for 'Chat' records."""

    @abstractmethod
    async def create_chat(self, chat: Chat) -> Chat:
        pass

    @abstractmethod
    async def get_chats_by_user_id(self, user_id: str) -> list[Chat]:
        pass

    @abstractmethod
    async def get_chat_by_id(self, chat_id: str) -> Chat | None:
        pass

    @abstractmethod
    async def update_chat(self, chat: Chat) -> Chat:
        pass
