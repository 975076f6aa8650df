"""
Reconciliation of persisted snapshots with live local state.

A fetch can complete at any moment: before the server has seen an optimistic
message, halfway through a stream, or after another session added a branch.
'merge' folds such a snapshot into a 'LiveState' without losing anything the
client knows that the server does not yet know:

- a persisted copy replaces the local copy of the same id and confirms it,
  so it leaves 'pending_optimistic_messages';
- the message being streamed keeps its local content while a generation is
  in flight;
- a local message that is already final is not replaced by an older partial
  persisted copy;
- local messages missing from the snapshot are kept, history is additive;
- persisted branches the client did not know about are added as siblings
  without moving the user's view.

The view is kept on the branch the user is looking at and extended down to
any descendants that arrived with the snapshot. Only when the active leaf
cannot be resolved does the view fall back to the default thread.

'merge' is pure and idempotent, and it never changes 'generation_status'.
"""

from collections.abc import Iterable

from loguru import logger

from conversation_tree.conversation_database.data_models.message import Message
from conversation_tree.live.state import LiveState
from conversation_tree.tree.builder import MessageTree, build_tree
from conversation_tree.tree.resolver import default_thread, newest_leaf_under, thread_to_node


def _keeps_local(local: Message, persisted: Message | None, in_flight_id: str | None) -> bool:
    if persisted is None or local.id == in_flight_id:
        return True
    return persisted.is_partial and not local.is_partial


def resolve_view(tree: MessageTree, active_leaf_id: str | None) -> list[Message]:
    """The viewed branch extended to its newest leaf, or the default thread."""
    if active_leaf_id is not None and thread_to_node(tree, active_leaf_id):
        leaf = newest_leaf_under(tree, active_leaf_id)
        if leaf is not None:
            return thread_to_node(tree, leaf.id)
    return default_thread(tree)


def merge(state: LiveState, snapshot: Iterable[Message]) -> LiveState:
    """Return 'state' with the persisted 'snapshot' folded in."""
    foreign = 0
    own: list[Message] = []
    for message in snapshot:
        if message.chat_id == state.chat_id:
            own.append(message)
        else:
            foreign += 1
    if foreign:
        logger.warning(f"Ignored {foreign} snapshot messages from other chats (chat={state.chat_id})")
    persisted = build_tree(own).nodes_by_id

    in_flight_id = state.streaming_message_id if state.is_generating else None
    messages: dict[str, Message] = {}
    for message_id, local in state.messages.items():
        remote = persisted.get(message_id)
        messages[message_id] = local if _keeps_local(local, remote, in_flight_id) else remote  # type: ignore[assignment]
    added = 0
    for message_id, remote in persisted.items():
        if message_id not in messages:
            messages[message_id] = remote
            added += 1

    pending = [
        messages.get(m.id, m)
        for m in state.pending_optimistic_messages
        if _keeps_local(m, persisted.get(m.id), in_flight_id)
    ]
    confirmed = len(state.pending_optimistic_messages) - len(pending)

    tree = build_tree(messages.values())
    thread = resolve_view(tree, state.active_leaf_id)
    if confirmed or added:
        logger.debug(
            f"Merged snapshot into chat {state.chat_id}: {confirmed} confirmed, {added} new, {len(pending)} pending"
        )

    return state.model_copy(
        update={
            "messages": messages,
            "pending_optimistic_messages": pending,
            "thread": thread,
            "active_leaf_id": thread[-1].id if thread else None,
        }
    )
