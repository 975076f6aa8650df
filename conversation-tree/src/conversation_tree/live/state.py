"""
State held by a live conversation store.

'LiveState' is a plain value. The store replaces it wholesale on every
mutation and the reconciler produces new instances from old ones, so a
'LiveState' handed out to a caller never changes underneath them.
"""

from enum import StrEnum

from pydantic import BaseModel, Field

from conversation_tree.conversation_database.data_models.message import Message


class GenerationStatus(StrEnum):
    """
    Generation lifecycle of one chat.

    idle -> streaming -> idle | error, or streaming -> stopping -> idle when the
    user stops a turn. 'error' behaves like 'idle' for starting the next turn.
    """

    IDLE = "idle"
    STREAMING = "streaming"
    STOPPING = "stopping"
    ERROR = "error"


IN_FLIGHT = frozenset({GenerationStatus.STREAMING, GenerationStatus.STOPPING})


class LiveState(BaseModel):
    """
    Snapshot of what a chat currently shows.

    Attributes:
        chat_id: The chat this state belongs to.
        messages: Every message known locally, persisted or not, by id.
        thread: Root-to-leaf messages currently displayed.
        active_leaf_id: Last message of 'thread'.
        generation_status: See 'GenerationStatus'.
        pending_optimistic_messages: Locally created messages not yet confirmed
            by a persisted snapshot, in creation order.
        streaming_message_id: The partial assistant message being generated,
            None before its first delta arrives.
        generation_parent_id: Parent of the assistant message being generated.
        error_reason: Reason of the last failed generation while in 'error'.
    """

    chat_id: str
    messages: dict[str, Message] = Field(default_factory=dict)
    thread: list[Message] = Field(default_factory=list)
    active_leaf_id: str | None = None
    generation_status: GenerationStatus = GenerationStatus.IDLE
    pending_optimistic_messages: list[Message] = Field(default_factory=list)
    streaming_message_id: str | None = None
    generation_parent_id: str | None = None
    error_reason: str | None = None

    @property
    def is_generating(self) -> bool:
        return self.generation_status in IN_FLIGHT
