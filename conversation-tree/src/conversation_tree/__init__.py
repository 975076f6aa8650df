"""
Branching conversation trees for chat applications.

Messages of a chat form a tree: edits and regenerations add siblings instead
of overwriting history. This package builds that tree, resolves the linear
thread shown to the user, and keeps a live, streaming, optimistic view of it
consistent with what has been persisted.

    from conversation_tree import (
        build_tree, default_thread, thread_to_node,
        LiveConversationStore, merge,
    )
"""

from conversation_tree.conversation_database.data_models.chat import Chat, Visibility
from conversation_tree.conversation_database.data_models.message import FinishReason, Message
from conversation_tree.conversation_database.data_models.parts import (
    AttachmentPart,
    ErrorPart,
    MessagePart,
    ReasoningPart,
    TextPart,
    ToolInvocationPart,
    ToolResultPart,
)
from conversation_tree.live.reconciler import merge
from conversation_tree.live.registry import ChatStoreRegistry
from conversation_tree.live.state import GenerationStatus, LiveState
from conversation_tree.live.store import LiveConversationStore
from conversation_tree.llms.base import Roles
from conversation_tree.tree.builder import MessageTree, SiblingInfo, build_tree, check_invariants
from conversation_tree.tree.resolver import default_thread, newest_leaf_under, sibling_leaf, thread_to_node

__all__ = [
    "AttachmentPart",
    "Chat",
    "ChatStoreRegistry",
    "ErrorPart",
    "FinishReason",
    "GenerationStatus",
    "LiveConversationStore",
    "LiveState",
    "Message",
    "MessagePart",
    "MessageTree",
    "ReasoningPart",
    "Roles",
    "SiblingInfo",
    "TextPart",
    "ToolInvocationPart",
    "ToolResultPart",
    "Visibility",
    "build_tree",
    "check_invariants",
    "default_thread",
    "merge",
    "newest_leaf_under",
    "sibling_leaf",
    "thread_to_node",
]
