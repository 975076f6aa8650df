"""
Branching chat walkthrough.

Runs one scripted session against the in-memory databases and logs the
thread after every step, so the effect of each operation on the tree is
visible without a UI.

Steps at a glance:
    1  send()        - first question and its streamed answer
    2  edit()        - edit the question, which branches and answers again
    3  regenerate()  - regenerate the answer on the edited branch
    4  stop()        - send a follow-up and stop it mid-stream
    5  switch()      - go back to the original branch

Usage:
    python -m conversation_tree.demo

    Override the first question or slow the stream down:
        PROMPT="What is a rope?" DELTA_DELAY=0.05 python -m conversation_tree.demo
"""

import asyncio
import os
import sys

from loguru import logger

from conversation_tree import config
from conversation_tree.conversation_database.controller import ConversationController
from conversation_tree.conversation_database.in_memory import InMemoryChatDatabase, InMemoryMessageDatabase
from conversation_tree.live.store import LiveConversationStore
from conversation_tree.llms.scripted import EchoGenerationSource

PROMPT = os.environ.get("PROMPT", "How do branching chats work?")
DELTA_DELAY = float(os.environ.get("DELTA_DELAY", "0.01"))
USER_ID = "demo-user"


def log_thread(label: str, store: LiveConversationStore) -> None:
    logger.info(f"------ {label} ({store.generation_status}) -------")
    for message in store.thread:
        branch = store.sibling_info(message.id)
        marker = f"[{branch.index + 1}/{len(branch.siblings)}]" if branch and len(branch.siblings) > 1 else ""
        logger.info(f"{message.role:>9} {marker:>5} {message.text!r}")


async def main() -> None:
    logger.remove()
    logger.add(sys.stderr, level=config.LOG_LEVEL)

    controller = ConversationController(
        chat_db=InMemoryChatDatabase(),
        message_db=InMemoryMessageDatabase(),
        generation_source=EchoGenerationSource(chunk_size=6, delay=DELTA_DELAY),
    )

    first_answer = await controller.send_message(PROMPT, USER_ID)
    if first_answer is None:
        logger.warning("No answer was generated")
        return
    chat_id = first_answer.chat_id
    store = controller.registry.get_or_create(chat_id)
    log_thread("After send", store)

    question = store.thread[0]
    await controller.edit_message(chat_id, question.id, f"{PROMPT} Answer briefly.")
    log_thread("After edit", store)

    await controller.regenerate(chat_id, store.thread[-1].id)
    log_thread("After regenerate", store)

    follow_up = asyncio.create_task(controller.send_message("And how is the default branch chosen?", USER_ID, chat_id))
    while not store.streaming_message_id and not follow_up.done():
        await asyncio.sleep(DELTA_DELAY)
    controller.stop_generation(chat_id)
    await follow_up
    log_thread("After stop", store)

    store.switch_to_leaf(first_answer.id)
    log_thread("Original branch", store)


if __name__ == "__main__":
    asyncio.run(main())
