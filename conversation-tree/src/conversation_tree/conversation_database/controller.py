"""
Conversation controller (Facade).

'ConversationController' ties the pieces together for one process: it owns
the per-chat live stores, talks to the persistence backends and drives the
generation source. Each public coroutine performs one user action end to end:

    'send_message'   - new user turn below the active leaf, then an answer.
    'edit_message'   - edited sibling of an earlier turn, then an answer if it
                       was a user turn.
    'regenerate'     - new answer as a sibling of an earlier answer.
    'stop_generation'- cooperative stop of the answer being streamed.

The generation is consumed in its own task so that a stop can cancel it while
it waits on the provider. Deltas are applied to the store in arrival order;
the partial answer is persisted on its first delta and every
'PARTIAL_PERSIST_INTERVAL' deltas after that. Once the turn ends, however it
ends, the final state is persisted and the chat is re-fetched and reconciled
so the optimistic messages are confirmed.

Generation failures never propagate to the caller: the answer is kept with an
error marker and the store moves to 'error'. When the user message cannot be
persisted it is dropped from the store, which returns to 'idle', and the
error propagates.
"""

import asyncio
from collections.abc import Sequence

from loguru import logger

from conversation_tree import config
from conversation_tree.conversation_database.data_models.chat import Chat, ChatDatabase
from conversation_tree.conversation_database.data_models.message import Message, MessageDatabase
from conversation_tree.conversation_database.data_models.parts import MessagePart, TextPart
from conversation_tree.live.registry import ChatStoreRegistry
from conversation_tree.live.store import LiveConversationStore
from conversation_tree.llms.base import GenerationSource, LLMMessage, Roles
from conversation_tree.tree.resolver import thread_to_node
from conversation_tree.utils.database import generate_uid
from conversation_tree.utils.time import get_current_timestamp


class ConversationController:
    def __init__(
        self,
        chat_db: ChatDatabase,
        message_db: MessageDatabase,
        generation_source: GenerationSource,
        registry: ChatStoreRegistry | None = None,
    ):
        self.chat_db = chat_db
        self.message_db = message_db
        self.generation_source = generation_source
        self.registry = registry or ChatStoreRegistry()

    async def load_chat(self, chat_id: str) -> LiveConversationStore:
        """Fetch every persisted message of the chat into its live store."""
        chat = await self.chat_db.get_chat_by_id(chat_id)
        if chat is None:
            raise ValueError(f"Chat with id {chat_id} not found")
        store = self.registry.get_or_create(chat_id)
        store.load_snapshot(await self.message_db.get_messages_by_chat_id(chat_id))
        return store

    async def get_chats_by_user_id(self, user_id: str) -> list[Chat]:
        return await self.chat_db.get_chats_by_user_id(user_id)

    async def send_message(
        self,
        content: str | Sequence[MessagePart],
        user_id: str,
        chat_id: str | None = None,
        parent_id: str | None = None,
        selected_model: str | None = None,
        selected_tool: str | None = None,
    ) -> Message | None:
        """
        Add a user turn and generate its answer.

        Without 'chat_id' a new chat is created. 'parent_id' defaults to the
        active leaf of the chat. Returns the finalized answer, or None when the
        turn was stopped before any content arrived.
        """
        chat = await self._setup_chat(content, user_id, chat_id)
        store = await self._store_for(chat.id)

        message = store.submit_user_message(
            content,
            parent_id,
            user_id=user_id,
            selected_model=selected_model,
            selected_tool=selected_tool,
        )
        await self._persist_user_turn(store, message)
        logger.info(f"User {user_id} sent message {message.id} in chat {chat.id}")
        return await self._run_generation(store, generate_uid())

    async def edit_message(
        self,
        chat_id: str,
        message_id: str,
        content: str | Sequence[MessagePart],
    ) -> Message:
        """
        Create an edited sibling of 'message_id'.

        For a user turn the new answer is generated before returning. Returns
        the edited message.
        """
        store = await self._store_for(chat_id)
        message = store.edit_message(message_id, content)
        if message.role == Roles.USER:
            await self._persist_user_turn(store, message)
            logger.info(f"Edited message {message_id} as {message.id} in chat {chat_id}")
            await self._run_generation(store, generate_uid())
        else:
            try:
                await self.message_db.create_message(message)
            except Exception:
                store.discard_optimistic(message.id)
                raise
            logger.info(f"Edited message {message_id} as {message.id} in chat {chat_id}")
            await self._reconcile(store)
        return message

    async def regenerate(self, chat_id: str, assistant_message_id: str) -> Message | None:
        """Generate a new answer next to 'assistant_message_id'. The original stays."""
        store = await self._store_for(chat_id)
        message = store.regenerate(assistant_message_id)
        try:
            await self.message_db.create_message(message)
        except Exception:
            self._abort(store, message)
            raise
        logger.info(f"Regenerating {assistant_message_id} as {message.id} in chat {chat_id}")
        return await self._run_generation(store, message.id)

    def stop_generation(self, chat_id: str) -> bool:
        """Ask the chat's in-flight generation to stop. Safe to call repeatedly."""
        store = self.registry.get(chat_id)
        if store is None:
            return False
        return store.stop_generation()

    async def _setup_chat(self, content: str | Sequence[MessagePart], user_id: str, chat_id: str | None) -> Chat:
        if chat_id is not None:
            chat = await self.chat_db.get_chat_by_id(chat_id)
            if chat is None:
                raise ValueError(f"Chat with id {chat_id} not found")
            if chat.user_id != user_id:
                raise ValueError(f"User {user_id} does not have access to chat {chat_id}")
            return chat

        if isinstance(content, str):
            text = content
        else:
            text = "".join(part.text for part in content if isinstance(part, TextPart))
        title = text.strip()[: config.TITLE_MAX_LENGTH] or config.DEFAULT_CHAT_TITLE
        create_time = get_current_timestamp()
        chat = await self.chat_db.create_chat(
            Chat(
                id=generate_uid(),
                user_id=user_id,
                title=title,
                create_timestamp=create_time,
                update_timestamp=create_time,
            )
        )
        logger.info(f"Created chat {chat.id} for user {user_id}")
        return chat

    async def _store_for(self, chat_id: str) -> LiveConversationStore:
        store = self.registry.get(chat_id)
        if store is None:
            store = await self.load_chat(chat_id)
        return store

    async def _persist_user_turn(self, store: LiveConversationStore, message: Message) -> None:
        try:
            await self.message_db.create_message(message)
        except Exception:
            self._abort(store, message)
            raise

    @staticmethod
    def _cancel(store: LiveConversationStore) -> None:
        store.stop_generation()
        store.acknowledge_stop()

    def _abort(self, store: LiveConversationStore, message: Message) -> None:
        self._cancel(store)
        store.discard_optimistic(message.id)

    def _history(self, store: LiveConversationStore) -> list[LLMMessage]:
        thread = thread_to_node(store.tree, store.generation_parent_id)
        return [LLMMessage(role=m.role, content=m.text) for m in thread if m.text]

    async def _run_generation(self, store: LiveConversationStore, assistant_id: str) -> Message | None:
        pump = asyncio.create_task(self._pump(store, assistant_id, self._history(store)))
        unsubscribe = store.on_stop(pump.cancel)
        try:
            await asyncio.wait({pump})
        except asyncio.CancelledError:
            pump.cancel()
            self._cancel(store)
            raise
        finally:
            unsubscribe()

        if pump.cancelled():
            final = store.acknowledge_stop()
            logger.info(f"Generation stopped in chat {store.chat_id}")
        elif (error := pump.exception()) is not None:
            logger.opt(exception=error).error(f"Generation of {assistant_id} failed in chat {store.chat_id}")
            final = store.finalize_generation(assistant_id, error_reason=str(error) or type(error).__name__)
        else:
            final = store.finalize_generation(assistant_id)

        if final is not None:
            await self._persist_final(final)
        await self._touch_chat(store.chat_id)
        await self._reconcile(store)
        return final

    async def _pump(self, store: LiveConversationStore, assistant_id: str, history: list[LLMMessage]) -> None:
        persisted = await self.message_db.get_message_by_id(assistant_id) is not None
        since_persist = 0
        async for delta in self.generation_source.generate_stream(history):
            if not store.append_stream_delta(assistant_id, delta):
                continue
            message = store.get_message(assistant_id)
            if message is None:
                continue
            since_persist += 1
            if not persisted:
                await self.message_db.create_message(message)
                persisted = True
                since_persist = 0
            elif since_persist >= config.PARTIAL_PERSIST_INTERVAL:
                await self.message_db.update_partial_message(assistant_id, message.parts, is_partial=True)
                since_persist = 0

    async def _persist_final(self, message: Message) -> None:
        if await self.message_db.get_message_by_id(message.id) is None:
            await self.message_db.create_message(message)
        else:
            await self.message_db.update_partial_message(
                message.id, message.parts, is_partial=False, finish_reason=message.finish_reason
            )

    async def _touch_chat(self, chat_id: str) -> None:
        chat = await self.chat_db.get_chat_by_id(chat_id)
        if chat is not None:
            await self.chat_db.update_chat(chat.model_copy(update={"update_timestamp": get_current_timestamp()}))

    async def _reconcile(self, store: LiveConversationStore) -> None:
        store.load_snapshot(await self.message_db.get_messages_by_chat_id(store.chat_id))
