"""
Tree construction from an unordered bag of messages.

'build_tree' indexes the messages of one chat by id and by parent id. It is
deliberately forgiving: the input may come from a fetch that raced with a
stream, so duplicates, several roots, and messages whose parent has not
arrived yet are all expected. None of these raise. Duplicates collapse to one
version, extra roots are kept, and orphans are set aside where thread
resolution cannot reach them.

The builder is pure. Building the same messages in any order yields an equal
tree.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

from loguru import logger
from pydantic import BaseModel

from conversation_tree.conversation_database.data_models.message import Message


class SiblingInfo(BaseModel):
    """Position of a message among the alternative branches of its parent."""

    siblings: list[str]
    index: int


def sibling_sort_key(message: Message) -> tuple[int, str]:
    """Oldest first; equal timestamps fall back to id so the order is total."""
    return message.create_timestamp, message.id


def _version_key(message: Message) -> tuple[bool, int, int, str]:
    # final beats partial, then newer, then longer, then a content tiebreak
    return (not message.is_partial, message.create_timestamp, len(message.parts), message.model_dump_json())


@dataclass
class MessageTree:
    """
    Id-indexed view of one chat's messages.

    Attributes:
        nodes_by_id: Every distinct message, orphans included.
        children_by_parent_id: Parent id to children sorted by 'sibling_sort_key'.
            The key 'None' holds the roots.
        roots: Messages without a parent, oldest first. Normally one.
        orphans: Messages whose parent is not in the tree, oldest first.
    """

    nodes_by_id: dict[str, Message] = field(default_factory=dict)
    children_by_parent_id: dict[str | None, list[Message]] = field(default_factory=dict)
    roots: list[Message] = field(default_factory=list)
    orphans: list[Message] = field(default_factory=list)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self.nodes_by_id

    def __len__(self) -> int:
        return len(self.nodes_by_id)

    def get(self, message_id: str | None) -> Message | None:
        if message_id is None:
            return None
        return self.nodes_by_id.get(message_id)

    def children(self, message_id: str | None) -> list[Message]:
        return list(self.children_by_parent_id.get(message_id, []))

    def siblings(self, message_id: str) -> list[Message]:
        """All children of the message's parent, the message itself included."""
        message = self.nodes_by_id.get(message_id)
        if message is None:
            return []
        return self.children(message.parent_id)

    def has_siblings(self, message_id: str) -> bool:
        return len(self.siblings(message_id)) > 1

    def sibling_info(self, message_id: str) -> SiblingInfo | None:
        siblings = [m.id for m in self.siblings(message_id)]
        if not siblings:
            return None
        return SiblingInfo(siblings=siblings, index=siblings.index(message_id))


def build_tree(messages: Iterable[Message]) -> MessageTree:
    """Index 'messages' by id and by parent. Never raises on malformed input."""
    latest: dict[str, Message] = {}
    duplicates = 0
    for message in messages:
        current = latest.get(message.id)
        if current is not None:
            duplicates += 1
        if current is None or _version_key(message) > _version_key(current):
            latest[message.id] = message
    if duplicates:
        logger.debug(f"Collapsed {duplicates} duplicate message versions")

    ordered = sorted(latest.values(), key=sibling_sort_key)
    nodes_by_id = {message.id: message for message in ordered}

    children_by_parent_id: dict[str | None, list[Message]] = {}
    for message in ordered:
        children_by_parent_id.setdefault(message.parent_id, []).append(message)

    roots = list(children_by_parent_id.get(None, []))
    orphans = [m for m in ordered if m.parent_id is not None and m.parent_id not in nodes_by_id]
    if len(roots) > 1:
        logger.debug(f"Tree has {len(roots)} roots, the newest one is used for the default thread")
    if orphans:
        logger.debug(f"Tree has {len(orphans)} orphaned messages: {[m.id for m in orphans]}")

    return MessageTree(
        nodes_by_id=nodes_by_id,
        children_by_parent_id=children_by_parent_id,
        roots=roots,
        orphans=orphans,
    )


def check_invariants(tree: MessageTree) -> list[str]:
    """Describe every steady-state invariant the tree violates. Empty when healthy."""
    problems: list[str] = []
    if tree.nodes_by_id and len(tree.roots) != 1:
        problems.append(f"expected exactly one root, found {len(tree.roots)}")
    for orphan in tree.orphans:
        problems.append(f"message {orphan.id} references missing parent {orphan.parent_id}")
    reached: set[str] = set()
    pending = [*tree.roots, *tree.orphans]
    while pending:
        message = pending.pop()
        if message.id not in reached:
            reached.add(message.id)
            pending.extend(tree.children(message.id))
    unreachable = [message_id for message_id in tree.nodes_by_id if message_id not in reached]
    if unreachable:
        problems.append(f"messages unreachable through a parent cycle: {unreachable}")
    partial = [m.id for m in tree.nodes_by_id.values() if m.is_partial]
    if len(partial) > 1:
        problems.append(f"more than one partial message: {partial}")
    chat_ids = {m.chat_id for m in tree.nodes_by_id.values()}
    if len(chat_ids) > 1:
        problems.append(f"messages belong to several chats: {sorted(chat_ids)}")
    return problems
