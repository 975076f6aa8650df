import pytest

from conversation_tree.conversation_database.data_models.chat import Chat
from conversation_tree.conversation_database.data_models.message import FinishReason, Message
from conversation_tree.conversation_database.data_models.parts import TextPart
from conversation_tree.conversation_database.in_memory import InMemoryChatDatabase, InMemoryMessageDatabase
from conversation_tree.llms.base import Roles


def _msg(message_id: str, partial: bool = False) -> Message:
    return Message(
        id=message_id,
        chat_id="c1",
        role=Roles.ASSISTANT,
        parts=[TextPart(text="Hel")],
        create_timestamp=1,
        parent_id="u1",
        is_partial=partial,
    )


class TestInMemoryMessageDatabase:
    @pytest.mark.asyncio
    async def test_create_and_fetch(self):
        db = InMemoryMessageDatabase()
        await db.create_message(_msg("a1"))
        await db.create_message(_msg("b1").model_copy(update={"chat_id": "c2"}))
        assert [m.id for m in await db.get_messages_by_chat_id("c1")] == ["a1"]
        assert (await db.get_message_by_id("a1")).text == "Hel"
        assert await db.get_message_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_rejected(self):
        db = InMemoryMessageDatabase()
        await db.create_message(_msg("a1"))
        with pytest.raises(ValueError, match="already exists"):
            await db.create_message(_msg("a1"))

    @pytest.mark.asyncio
    async def test_partial_update_then_finalize(self):
        db = InMemoryMessageDatabase()
        await db.create_message(_msg("a1", partial=True))
        await db.update_partial_message("a1", [TextPart(text="Hello")], is_partial=True)
        final = await db.update_partial_message(
            "a1", [TextPart(text="Hello!")], is_partial=False, finish_reason=FinishReason.STOP
        )
        assert final.text == "Hello!"
        assert final.finish_reason == FinishReason.STOP
        assert final.parent_id == "u1"

    @pytest.mark.asyncio
    async def test_final_messages_are_immutable(self):
        db = InMemoryMessageDatabase()
        await db.create_message(_msg("a1"))
        with pytest.raises(ValueError, match="final"):
            await db.update_partial_message("a1", [], is_partial=False)
        with pytest.raises(ValueError, match="not found"):
            await db.update_partial_message("nope", [], is_partial=False)

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        db = InMemoryMessageDatabase()
        await db.create_message(_msg("a1"))
        fetched = await db.get_message_by_id("a1")
        fetched.parts.append(TextPart(text="tampered"))
        assert (await db.get_message_by_id("a1")).text == "Hel"


class TestInMemoryChatDatabase:
    @pytest.mark.asyncio
    async def test_chats_by_user_newest_first(self):
        db = InMemoryChatDatabase()
        await db.create_chat(Chat(id="c1", user_id="u", title="a", create_timestamp=1, update_timestamp=1))
        await db.create_chat(Chat(id="c2", user_id="u", title="b", create_timestamp=2, update_timestamp=5))
        await db.create_chat(Chat(id="c3", user_id="other", title="c", create_timestamp=3, update_timestamp=3))
        assert [c.id for c in await db.get_chats_by_user_id("u")] == ["c2", "c1"]

    @pytest.mark.asyncio
    async def test_update_unknown_chat(self):
        db = InMemoryChatDatabase()
        with pytest.raises(ValueError):
            await db.update_chat(Chat(id="c1", user_id="u", title="a", create_timestamp=1, update_timestamp=1))
