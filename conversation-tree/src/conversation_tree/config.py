"""
Runtime configuration.

Every setting is a module-level constant that can be overridden through an
environment variable of the same name prefixed with 'CONVERSATION_TREE_'.
Values are read once at import time.
"""

import os

PARTIAL_PERSIST_INTERVAL = int(os.environ.get("CONVERSATION_TREE_PARTIAL_PERSIST_INTERVAL", "8"))
DEFAULT_CHAT_TITLE = os.environ.get("CONVERSATION_TREE_DEFAULT_CHAT_TITLE", "New Chat")
TITLE_MAX_LENGTH = int(os.environ.get("CONVERSATION_TREE_TITLE_MAX_LENGTH", "40"))
LOG_LEVEL = os.environ.get("CONVERSATION_TREE_LOG_LEVEL", "INFO")
