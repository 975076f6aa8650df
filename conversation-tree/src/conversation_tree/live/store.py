"""
Live conversation store.

'LiveConversationStore' is the per-chat state machine behind the chat view. It
owns the local message bag, the displayed thread, the active leaf and the
generation status, and it is the only thing allowed to change them. User
actions (send, edit, regenerate, switch branch, stop) and stream events
(deltas, finalization) are applied through its methods; persisted snapshots
are folded in through 'load_snapshot', which defers to the reconciler.

The store is synchronous and is meant to be driven from a single event loop.
Generation itself happens elsewhere: a driver (see 'ConversationController')
feeds deltas in with 'append_stream_delta' and ends the turn with
'finalize_generation'. Stopping is cooperative: 'stop_generation' moves to
'stopping' and fires the 'on_stop' callbacks, deltas already in flight are
still accepted, and the driver calls 'acknowledge_stop' once the source has
actually stopped.

Listeners registered with 'subscribe' are called after every mutation.
"""

from collections.abc import Callable, Iterable, Sequence

from loguru import logger

from conversation_tree.conversation_database.data_models.message import FinishReason, Message
from conversation_tree.conversation_database.data_models.parts import (
    ErrorPart,
    MessagePart,
    append_part_delta,
    text_parts,
)
from conversation_tree.live.reconciler import merge
from conversation_tree.live.state import GenerationStatus, LiveState
from conversation_tree.llms.base import Roles
from conversation_tree.tree.builder import MessageTree, SiblingInfo, build_tree
from conversation_tree.tree.resolver import (
    Direction,
    default_thread,
    newest_leaf_under,
    sibling_leaf,
    thread_to_node,
)
from conversation_tree.utils.database import generate_uid
from conversation_tree.utils.time import get_current_timestamp

Listener = Callable[["LiveConversationStore"], None]


class LiveConversationStore:
    """
    Per-chat state machine holding what the chat view renders.

    Attributes:
        chat_id: The chat this store belongs to. Messages of other chats are
            never accepted.
    """

    def __init__(self, chat_id: str, messages: Iterable[Message] | None = None) -> None:
        self.chat_id = chat_id
        self._state = LiveState(chat_id=chat_id)
        self._tree = build_tree([])
        self._listeners: list[Listener] = []
        self._stop_callbacks: list[Callable[[], None]] = []
        if messages is not None:
            self.load_snapshot(messages)

    # Read access

    @property
    def state(self) -> LiveState:
        return self._state.model_copy(deep=True)

    @property
    def tree(self) -> MessageTree:
        """The current tree. Treat as read-only."""
        return self._tree

    @property
    def thread(self) -> list[Message]:
        return list(self._state.thread)

    @property
    def active_leaf_id(self) -> str | None:
        return self._state.active_leaf_id

    @property
    def generation_status(self) -> GenerationStatus:
        return self._state.generation_status

    @property
    def streaming_message_id(self) -> str | None:
        return self._state.streaming_message_id

    @property
    def generation_parent_id(self) -> str | None:
        return self._state.generation_parent_id

    def get_message(self, message_id: str) -> Message | None:
        return self._state.messages.get(message_id)

    def sibling_info(self, message_id: str) -> SiblingInfo | None:
        return self._tree.sibling_info(message_id)

    def has_siblings(self, message_id: str) -> bool:
        return self._tree.has_siblings(message_id)

    # Observers

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call 'listener' after every mutation. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def on_stop(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call 'callback' when a stop is requested. Returns an unsubscribe function."""
        self._stop_callbacks.append(callback)
        return lambda: self._stop_callbacks.remove(callback) if callback in self._stop_callbacks else None

    # Snapshots

    def load_snapshot(self, persisted_messages: Iterable[Message]) -> None:
        """
        Fold a persisted snapshot into the store.

        The reconciler keeps the in-flight message and the branch in view,
        extended down to any descendants that arrived with the snapshot.
        Branches added elsewhere become siblings and never replace the view.
        A store with nothing in view shows the default thread.
        """
        self._commit(merge(self._state, persisted_messages))
        logger.debug(f"Loaded snapshot for chat {self.chat_id}: {len(self._state.thread)} messages in thread")

    # User actions

    def submit_user_message(
        self,
        content: str | Sequence[MessagePart],
        parent_id: str | None = None,
        *,
        message_id: str | None = None,
        user_id: str | None = None,
        selected_model: str | None = None,
        selected_tool: str | None = None,
    ) -> Message:
        """
        Append an optimistic user message and open a generation for its answer.

        'parent_id' defaults to the active leaf, so on a chat that already has
        messages the new turn always continues an existing thread. A second
        root can only come from editing the first message. The assistant reply
        is created lazily by the first delta and attached below the new user
        message; it is shown only if the user is still viewing that turn.
        """
        self._ensure_can_generate()
        parent_id = parent_id if parent_id is not None else self._state.active_leaf_id
        if parent_id is not None and parent_id not in self._tree:
            raise ValueError(f"Parent message {parent_id} not found in chat {self.chat_id}")

        message = Message(
            id=message_id or generate_uid(),
            chat_id=self.chat_id,
            role=Roles.USER,
            parts=text_parts(content),
            create_timestamp=self._next_timestamp(parent_id),
            parent_id=parent_id,
            user_id=user_id,
            selected_model=selected_model,
            selected_tool=selected_tool,
        )
        self._start_generation(self._with_local(message), parent_id=message.id, active_leaf_id=message.id)
        logger.debug(f"Submitted user message {message.id} in chat {self.chat_id}")
        return message

    def edit_message(
        self,
        message_id: str,
        new_content: str | Sequence[MessagePart],
        *,
        new_message_id: str | None = None,
    ) -> Message:
        """
        Create an edited version of 'message_id' as a new sibling and show it.

        Editing a user message also opens a generation for the new answer.
        """
        self._ensure_can_generate()
        original = self._tree.get(message_id)
        if original is None:
            raise ValueError(f"Message {message_id} not found in chat {self.chat_id}")

        message = Message(
            id=new_message_id or generate_uid(),
            chat_id=self.chat_id,
            role=original.role,
            parts=text_parts(new_content),
            create_timestamp=self._next_timestamp(original.parent_id),
            parent_id=original.parent_id,
            user_id=original.user_id,
            selected_model=original.selected_model,
            selected_tool=original.selected_tool,
        )
        state = self._with_local(message)
        if message.role == Roles.USER:
            self._start_generation(state, parent_id=message.id, active_leaf_id=message.id)
        else:
            self._commit(state.model_copy(update={"active_leaf_id": message.id}))
        logger.debug(f"Edited message {message_id} as {message.id} in chat {self.chat_id}")
        return message

    def regenerate(self, assistant_message_id: str, *, new_message_id: str | None = None) -> Message:
        """Start a new answer as a sibling of 'assistant_message_id'. The original is kept."""
        self._ensure_can_generate()
        original = self._tree.get(assistant_message_id)
        if original is None:
            raise ValueError(f"Message {assistant_message_id} not found in chat {self.chat_id}")
        if original.role != Roles.ASSISTANT:
            raise ValueError(f"Only assistant messages can be regenerated, {assistant_message_id} is {original.role}")

        message = Message(
            id=new_message_id or generate_uid(),
            chat_id=self.chat_id,
            role=Roles.ASSISTANT,
            create_timestamp=self._next_timestamp(original.parent_id),
            parent_id=original.parent_id,
            is_partial=True,
            selected_model=original.selected_model,
            selected_tool=original.selected_tool,
        )
        state = self._with_local(message).model_copy(update={"streaming_message_id": message.id})
        self._start_generation(state, parent_id=original.parent_id, active_leaf_id=message.id)
        logger.debug(f"Regenerating {assistant_message_id} as {message.id} in chat {self.chat_id}")
        return message

    def switch_to_leaf(self, message_id: str) -> bool:
        """Show the thread ending at 'message_id'. Returns False if it cannot be resolved."""
        if not thread_to_node(self._tree, message_id):
            logger.warning(f"Cannot switch chat {self.chat_id} to unresolvable message {message_id}")
            return False
        self._commit(self._state.model_copy(update={"active_leaf_id": message_id}))
        return True

    def navigate_to_sibling(self, message_id: str, direction: Direction) -> bool:
        """Show the neighbouring branch of 'message_id'. Returns False at either end."""
        leaf = sibling_leaf(self._tree, message_id, direction)
        if leaf is None:
            return False
        return self.switch_to_leaf(leaf.id)

    def stop_generation(self) -> bool:
        """Request the in-flight generation to stop. No-op unless streaming."""
        if self._state.generation_status != GenerationStatus.STREAMING:
            logger.debug(f"Stop ignored for chat {self.chat_id} in status {self._state.generation_status}")
            return False
        self._commit(self._state.model_copy(update={"generation_status": GenerationStatus.STOPPING}))
        logger.debug(f"Stop requested for chat {self.chat_id}")
        for callback in list(self._stop_callbacks):
            callback()
        return True

    def discard_optimistic(self, message_id: str) -> bool:
        """
        Drop a local message that never reached the database.

        Only pending messages without children can be dropped, and never while
        a generation is in flight. If the message was in view, the view moves
        to the newest branch below its parent. Returns whether it was dropped.
        """
        self._ensure_can_generate()
        message = next((m for m in self._state.pending_optimistic_messages if m.id == message_id), None)
        if message is None:
            logger.warning(f"Cannot discard {message_id}: not a pending message of chat {self.chat_id}")
            return False
        if self._tree.children(message_id):
            logger.warning(f"Cannot discard {message_id}: it has replies in chat {self.chat_id}")
            return False

        messages = {k: v for k, v in self._state.messages.items() if k != message_id}
        update = {
            "messages": messages,
            "pending_optimistic_messages": [
                m for m in self._state.pending_optimistic_messages if m.id != message_id
            ],
        }
        if self._state.active_leaf_id == message_id:
            leaf = None
            if message.parent_id is not None:
                leaf = newest_leaf_under(build_tree(messages.values()), message.parent_id)
            update["active_leaf_id"] = leaf.id if leaf is not None else None
        self._commit(self._state.model_copy(update=update))
        logger.debug(f"Discarded unsaved message {message_id} in chat {self.chat_id}")
        return True

    # Stream events

    def append_stream_delta(self, message_id: str, delta: MessagePart) -> bool:
        """
        Apply one content delta to the streaming assistant message.

        The message is created on the first delta as a partial child of the
        generation parent. Deltas for any other message, or arriving when no
        generation is in flight, are dropped. Returns whether it was applied.
        """
        state = self._streaming_state(message_id)
        if state is None:
            return False
        current = state.messages[message_id]
        updated = current.model_copy(update={"parts": append_part_delta(current.parts, delta)})
        self._commit(self._put(state, updated))
        return True

    def finalize_generation(
        self,
        message_id: str,
        final_parts: Sequence[MessagePart] | None = None,
        error_reason: str | None = None,
    ) -> Message | None:
        """
        End the in-flight generation.

        On success the message becomes final with 'final_parts' (or the parts
        accumulated so far) and the store returns to 'idle'. With
        'error_reason' the message is kept, annotated with an 'ErrorPart', and
        the store moves to 'error'. A turn that was being stopped is marked
        'cancelled'. Returns the finalized message, or None if ignored.
        """
        state = self._streaming_state(message_id)
        if state is None:
            return None
        current = state.messages[message_id]
        parts = list(final_parts) if final_parts is not None else list(current.parts)

        if error_reason is not None:
            parts.append(ErrorPart(reason=error_reason))
            finish_reason, status = FinishReason.ERROR, GenerationStatus.ERROR
        elif state.generation_status == GenerationStatus.STOPPING:
            finish_reason, status = FinishReason.CANCELLED, GenerationStatus.IDLE
        else:
            finish_reason, status = FinishReason.STOP, GenerationStatus.IDLE

        finalized = current.model_copy(update={"parts": parts, "is_partial": False, "finish_reason": finish_reason})
        self._commit(
            self._put(state, finalized).model_copy(
                update={
                    "generation_status": status,
                    "streaming_message_id": None,
                    "generation_parent_id": None,
                    "error_reason": error_reason,
                }
            )
        )
        logger.debug(f"Finalized {message_id} in chat {self.chat_id} ({finish_reason})")
        return finalized

    def acknowledge_stop(self) -> Message | None:
        """
        The generation source has stopped. Finalize whatever was streamed as a
        truncated message and return to 'idle'.
        """
        if self._state.generation_status != GenerationStatus.STOPPING:
            return None
        if self._state.streaming_message_id is None:
            self._commit(
                self._state.model_copy(
                    update={"generation_status": GenerationStatus.IDLE, "generation_parent_id": None}
                )
            )
            return None
        return self.finalize_generation(self._state.streaming_message_id)

    # Internals

    def _ensure_can_generate(self) -> None:
        if self._state.is_generating:
            raise RuntimeError(f"A generation is already in flight for chat {self.chat_id}")

    def _next_timestamp(self, parent_id: str | None) -> int:
        # a new branch must sort after every existing sibling
        timestamp = get_current_timestamp()
        siblings = self._tree.children(parent_id)
        if siblings:
            timestamp = max(timestamp, siblings[-1].create_timestamp + 1)
        parent = self._tree.get(parent_id)
        if parent is not None:
            timestamp = max(timestamp, parent.create_timestamp + 1)
        return timestamp

    def _with_local(self, message: Message) -> LiveState:
        return self._state.model_copy(
            update={
                "messages": {**self._state.messages, message.id: message},
                "pending_optimistic_messages": [*self._state.pending_optimistic_messages, message],
            }
        )

    @staticmethod
    def _put(state: LiveState, message: Message) -> LiveState:
        return state.model_copy(
            update={
                "messages": {**state.messages, message.id: message},
                "pending_optimistic_messages": [
                    message if m.id == message.id else m for m in state.pending_optimistic_messages
                ],
            }
        )

    def _start_generation(self, state: LiveState, parent_id: str | None, active_leaf_id: str) -> None:
        self._commit(
            state.model_copy(
                update={
                    "generation_status": GenerationStatus.STREAMING,
                    "generation_parent_id": parent_id,
                    "active_leaf_id": active_leaf_id,
                    "error_reason": None,
                }
            )
        )

    def _streaming_state(self, message_id: str) -> LiveState | None:
        """State in which 'message_id' is the streaming message, creating it if needed."""
        state = self._state
        if not state.is_generating:
            logger.warning(f"Dropped event for {message_id}: no generation in flight in chat {self.chat_id}")
            return None
        if state.streaming_message_id is not None:
            if state.streaming_message_id != message_id:
                logger.warning(
                    f"Dropped event for {message_id}: chat {self.chat_id} is streaming {state.streaming_message_id}"
                )
                return None
            return state
        if message_id in state.messages:
            logger.warning(f"Dropped event for {message_id}: id already used in chat {self.chat_id}")
            return None

        message = Message(
            id=message_id,
            chat_id=self.chat_id,
            role=Roles.ASSISTANT,
            create_timestamp=self._next_timestamp(state.generation_parent_id),
            parent_id=state.generation_parent_id,
            is_partial=True,
        )
        update = {"streaming_message_id": message.id}
        if state.active_leaf_id == state.generation_parent_id:
            update["active_leaf_id"] = message.id
        return self._with_local(message).model_copy(update=update)

    def _commit(self, state: LiveState) -> None:
        tree = build_tree(state.messages.values())
        thread = thread_to_node(tree, state.active_leaf_id) or default_thread(tree)
        self._tree = tree
        self._state = state.model_copy(
            update={"thread": thread, "active_leaf_id": thread[-1].id if thread else None}
        )
        for listener in list(self._listeners):
            listener(self)
