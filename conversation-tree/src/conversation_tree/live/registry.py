"""
One live store per chat.

Stores of different chats share nothing, so several chats can generate at
the same time. Within a chat the store itself enforces a single generation
in flight; the registry only guarantees there is exactly one store to ask.
"""

from conversation_tree.live.state import IN_FLIGHT
from conversation_tree.live.store import LiveConversationStore


class ChatStoreRegistry:
    def __init__(self) -> None:
        self._stores: dict[str, LiveConversationStore] = {}

    def get_or_create(self, chat_id: str) -> LiveConversationStore:
        store = self._stores.get(chat_id)
        if store is None:
            store = LiveConversationStore(chat_id)
            self._stores[chat_id] = store
        return store

    def get(self, chat_id: str) -> LiveConversationStore | None:
        return self._stores.get(chat_id)

    def discard(self, chat_id: str) -> None:
        """Forget the store of a chat. Refused while that chat is generating."""
        store = self._stores.get(chat_id)
        if store is not None and store.generation_status in IN_FLIGHT:
            raise RuntimeError(f"Cannot discard chat {chat_id} while a generation is in flight")
        self._stores.pop(chat_id, None)

    def streaming_chat_ids(self) -> list[str]:
        return sorted(chat_id for chat_id, store in self._stores.items() if store.generation_status in IN_FLIGHT)

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._stores
