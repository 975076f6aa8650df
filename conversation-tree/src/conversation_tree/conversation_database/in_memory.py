"""
In-memory implementations of the storage interfaces.

Useful for tests, the demo, and single-process deployments. Records are
copied on the way in and on the way out so callers can never mutate stored
state behind the repository's back.
"""

from typing import Sequence

from loguru import logger

from conversation_tree.conversation_database.data_models.chat import Chat, ChatDatabase
from conversation_tree.conversation_database.data_models.message import FinishReason, Message, MessageDatabase
from conversation_tree.conversation_database.data_models.parts import MessagePart


class InMemoryMessageDatabase(MessageDatabase):
    def __init__(self) -> None:
        self.messages: dict[str, Message] = {}

    async def create_message(self, message: Message) -> Message:
        if message.id in self.messages:
            raise ValueError(f"Message with id {message.id} already exists")
        self.messages[message.id] = message.model_copy(deep=True)
        logger.debug(f"Persisted message {message.id} (chat={message.chat_id}, partial={message.is_partial})")
        return message.model_copy(deep=True)

    async def get_messages_by_chat_id(self, chat_id: str) -> list[Message]:
        return [m.model_copy(deep=True) for m in self.messages.values() if m.chat_id == chat_id]

    async def get_message_by_id(self, message_id: str) -> Message | None:
        message = self.messages.get(message_id)
        return message.model_copy(deep=True) if message else None

    async def update_partial_message(
        self,
        message_id: str,
        parts: Sequence[MessagePart],
        is_partial: bool,
        finish_reason: FinishReason | None = None,
    ) -> Message:
        stored = self.messages.get(message_id)
        if stored is None:
            raise ValueError(f"Message with id {message_id} not found")
        if not stored.is_partial:
            raise ValueError(f"Message {message_id} is final and can no longer be updated")
        updated = stored.model_copy(
            update={
                "parts": [part.model_copy() for part in parts],
                "is_partial": is_partial,
                "finish_reason": finish_reason,
            },
            deep=True,
        )
        self.messages[message_id] = updated
        return updated.model_copy(deep=True)


class InMemoryChatDatabase(ChatDatabase):
    def __init__(self) -> None:
        self.chats: dict[str, Chat] = {}

    async def create_chat(self, chat: Chat) -> Chat:
        if chat.id in self.chats:
            raise ValueError(f"Chat with id {chat.id} already exists")
        self.chats[chat.id] = chat.model_copy()
        return chat.model_copy()

    async def get_chats_by_user_id(self, user_id: str) -> list[Chat]:
        chats = [c.model_copy() for c in self.chats.values() if c.user_id == user_id]
        return sorted(chats, key=lambda c: c.update_timestamp, reverse=True)

    async def get_chat_by_id(self, chat_id: str) -> Chat | None:
        chat = self.chats.get(chat_id)
        return chat.model_copy() if chat else None

    async def update_chat(self, chat: Chat) -> Chat:
        if chat.id not in self.chats:
            raise ValueError(f"Chat with id {chat.id} not found")
        self.chats[chat.id] = chat.model_copy()
        return chat.model_copy()
