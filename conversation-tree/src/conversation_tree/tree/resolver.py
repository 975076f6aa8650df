"""
Thread resolution: turning the message tree into the linear conversation a
user sees.

Two linearizations exist. 'default_thread' follows the newest branch at every
fork, because the latest edit or regeneration is what a user expects to see
after a reload. 'thread_to_node' is the path to one specific message and
backs explicit branch switching.

Every function here is pure and never raises. An unresolvable request
(unknown id, broken parent chain) yields an empty thread or None so the
caller always has something to render.
"""

from typing import Literal

from conversation_tree.conversation_database.data_models.message import Message
from conversation_tree.tree.builder import MessageTree, sibling_sort_key

Direction = Literal["prev", "next"]


def _descend_newest(tree: MessageTree, start: Message) -> list[Message]:
    path = [start]
    seen = {start.id}
    children = tree.children_by_parent_id.get(start.id)
    while children:
        newest = children[-1]
        if newest.id in seen:
            break
        path.append(newest)
        seen.add(newest.id)
        children = tree.children_by_parent_id.get(newest.id)
    return path


def default_thread(tree: MessageTree) -> list[Message]:
    """Root to leaf, taking the most recently created child at every fork."""
    if not tree.roots:
        return []
    root = max(tree.roots, key=sibling_sort_key)
    return _descend_newest(tree, root)


def thread_to_node(tree: MessageTree, target_id: str | None) -> list[Message]:
    """Root to 'target_id', or an empty list if the target cannot be reached from a root."""
    current = tree.get(target_id)
    path: list[Message] = []
    seen: set[str] = set()
    while current is not None:
        if current.id in seen:
            return []
        seen.add(current.id)
        path.append(current)
        if current.parent_id is None:
            path.reverse()
            return path
        current = tree.nodes_by_id.get(current.parent_id)
    return []


def newest_leaf_under(tree: MessageTree, message_id: str) -> Message | None:
    """The leaf reached from 'message_id' by always taking the newest child."""
    start = tree.get(message_id)
    if start is None:
        return None
    return _descend_newest(tree, start)[-1]


def sibling_leaf(tree: MessageTree, message_id: str, direction: Direction) -> Message | None:
    """
    Leaf of the neighbouring branch.

    Moves one position left ('prev') or right ('next') among the siblings of
    'message_id' and descends along the newest branch below that sibling.
    Returns None when there is no sibling in that direction.
    """
    info = tree.sibling_info(message_id)
    if info is None:
        return None
    target = info.index - 1 if direction == "prev" else info.index + 1
    if target < 0 or target >= len(info.siblings):
        return None
    return newest_leaf_under(tree, info.siblings[target])


def thread_depth(tree: MessageTree, message_id: str) -> int | None:
    """Number of ancestors of a reachable message, None otherwise."""
    thread = thread_to_node(tree, message_id)
    return len(thread) - 1 if thread else None
