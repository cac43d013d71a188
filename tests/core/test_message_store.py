"""MessageStore 测试 -- 发送、回复、编辑、墓碑删除、表情、输入提示、分页"""

import asyncio

import pytest

from synergysync.core.config import DELETED_MESSAGE_CONTENT
from synergysync.core.exceptions import AuthorizationError, MutationValidationError, StaleEditError
from synergysync.core.models import (
    Domain,
    PresenceKind,
    PresenceSignal,
    ReactionOutcome,
    RecordVerb,
)
from synergysync.core.codec import decode, encode


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
async def discussion(message_store, fake_api, records):
    fake_api.seed(
        Domain.MESSAGES,
        "p-1",
        records.message("m1", content="Kickoff at 10", author_id="u-2"),
        records.message("m2", content="Sounds good", author_id="u-1", parent_id="m1"),
        records.message("m3", content="Ping @Me", author_id="u-3", mentions=["u-1"]),
    )
    await message_store.refresh()
    return message_store


class TestMessageViews:
    """派生视图"""

    async def test_roots_and_threads(self, discussion):
        assert [m.id for m in discussion.root_messages] == ["m3", "m1"]
        assert [m.id for m in discussion.messages] == ["m1", "m2", "m3"]
        thread = discussion.open_thread("m1")
        assert [m.id for m in thread.replies] == ["m2"]
        discussion.close_thread()
        assert discussion.current_thread is None

    async def test_queries(self, discussion):
        assert [m.id for m in discussion.with_mentions()] == ["m3"]
        assert [m.id for m in discussion.by_author("u-2")] == ["m1"]
        assert [m.id for m in discussion.search("KICKOFF")] == ["m1"]
        discussion.set_filters(author_id="u-3")
        assert [m.id for m in discussion.messages] == ["m3"]
        discussion.clear_filters()
        assert len(discussion.messages) == 3

    async def test_orphan_reply(self, discussion, records):
        name, data = encode(
            Domain.MESSAGES,
            RecordVerb.CREATE,
            "m9",
            record=records.message("m9", parent_id="m-unloaded"),
        )
        discussion.apply_push(decode(name, data))
        assert [m.id for m in discussion.orphans] == ["m9"]


class TestDrafts:
    """撰写草稿"""

    async def test_set_merges_and_get_returns_copy(self, discussion):
        calls = []
        discussion.subscribe(lambda: calls.append(1))
        discussion.set_draft(content="half a thought")
        draft = discussion.set_draft(mentions=["u-2"])
        assert draft.content == "half a thought"
        assert draft.mentions == ["u-2"]
        assert len(calls) == 2

        copy = discussion.get_draft()
        copy.mentions.append("u-3")
        assert discussion.get_draft().mentions == ["u-2"]

        discussion.clear_draft()
        assert discussion.get_draft().content == ""
        assert discussion.get_draft().parent_id is None

    async def test_empty_draft_is_allowed(self, discussion):
        assert discussion.set_draft(content="").content == ""

    async def test_send_draft_clears_on_success(self, discussion, fake_api):
        discussion.set_draft(content="  Ship it  ")
        message = await discussion.send_draft()
        assert message.content == "Ship it"
        assert discussion.get_draft().content == ""

    async def test_send_draft_as_reply(self, discussion, fake_api):
        discussion.set_draft(content="On it", parent_id="m2")
        reply = await discussion.send_draft()
        assert reply.parent_id == "m2"
        assert reply.thread_id == "m1"
        assert discussion.get_draft().parent_id is None

    async def test_draft_kept_when_send_fails(self, discussion, fake_api):
        discussion.set_draft(content="important")
        fake_api.fail("create", AuthorizationError())
        with pytest.raises(AuthorizationError):
            await discussion.send_draft()
        assert discussion.get_draft().content == "important"

    async def test_other_message_leaves_draft(self, discussion):
        discussion.set_draft(content="later")
        await discussion.post_message("now")
        assert discussion.get_draft().content == "later"


class TestPosting:
    """发送与回复"""

    async def test_post_resolves_mentions(self, discussion, fake_api):
        message = await discussion.post_message("Hi @Bob and @alice chen")
        assert message.id == "srv-1"
        assert message.author_id == "u-1"
        assert message.mentions == ["u-3", "u-2"]
        (args, kwargs), = fake_api.calls_to("create")
        assert args[2]["mentions"] == ["u-3", "u-2"]
        assert kwargs["op_id"]
        assert discussion.root_messages[0].id == "srv-1"

    async def test_optimistic_placeholder(self, discussion, fake_api):
        gate = fake_api.hold("create")
        pending = asyncio.create_task(discussion.post_message("draft"))
        await _settle()
        placeholder = discussion.root_messages[0]
        assert placeholder.id.startswith("tmp-")
        assert placeholder.thread_id == placeholder.id
        assert placeholder.author.name == "Me"
        gate.set()
        await pending
        assert discussion.get(placeholder.id).id == "srv-1"

    async def test_reply_to_unconfirmed_parent_waits(self, discussion, fake_api):
        gate = fake_api.hold("create")
        root_task = asyncio.create_task(discussion.post_message("Agenda"))
        await _settle()
        placeholder = discussion.root_messages[0]
        reply_task = asyncio.create_task(discussion.reply(placeholder.id, "first!"))
        await _settle()

        # 回复已乐观显示，网络上只发出了父消息的创建
        assert len(fake_api.calls_to("create")) == 1
        (optimistic,) = [m for m in discussion.messages if m.parent_id == placeholder.id]
        assert optimistic.thread_id == placeholder.id

        gate.set()
        root = await root_task
        reply = await reply_task
        assert root.id == "srv-1"
        assert (reply.id, reply.parent_id, reply.thread_id) == ("srv-2", "srv-1", "srv-1")
        _, (args, _) = fake_api.calls_to("create")
        assert args[2]["parentId"] == "srv-1"
        assert args[2]["threadId"] == "srv-1"
        assert [m.id for m in discussion.open_thread("srv-1").replies] == ["srv-2"]
        assert not any(m.id.startswith("tmp-") for m in discussion.messages)

    async def test_reply_fails_with_parent(self, discussion, fake_api):
        gate = fake_api.hold("create")
        fake_api.fail("create", AuthorizationError())
        root_task = asyncio.create_task(discussion.post_message("Agenda"))
        await _settle()
        placeholder = discussion.root_messages[0]
        reply_task = asyncio.create_task(discussion.reply(placeholder.id, "first!"))
        await _settle()

        gate.set()
        with pytest.raises(AuthorizationError):
            await root_task
        with pytest.raises(AuthorizationError):
            await reply_task
        assert len(fake_api.calls_to("create")) == 1
        assert not any(m.id.startswith("tmp-") for m in discussion.messages)
        assert len(discussion.pending) == 0

    async def test_reply_resolves_thread(self, discussion, fake_api):
        reply = await discussion.reply("m2", "nested")
        assert reply.parent_id == "m2"
        assert reply.thread_id == "m1"
        (args, _), = fake_api.calls_to("create")
        assert args[2]["threadId"] == "m1"
        thread = discussion.open_thread("m1")
        assert [m.id for m in thread.replies] == ["m2", reply.id]

    async def test_reply_to_deleted_parent(self, discussion):
        await discussion.delete_message("m2")
        with pytest.raises(MutationValidationError):
            await discussion.reply("m2", "hello?")

    async def test_content_validation(self, discussion, fake_api):
        with pytest.raises(MutationValidationError):
            await discussion.post_message("x" * 2001)
        with pytest.raises(MutationValidationError):
            await discussion.post_message("   ")
        assert fake_api.calls_to("create") == []


class TestEditAndDelete:
    """编辑与墓碑删除"""

    async def test_edit(self, discussion, fake_api):
        edited = await discussion.edit_message("m2", "Sounds great @Bob")
        assert edited.content == "Sounds great @Bob"
        assert edited.is_edited
        assert edited.mentions == ["u-3"]
        (args, _), = fake_api.calls_to("update")
        assert args[2] == {"content": "Sounds great @Bob", "mentions": ["u-3"]}

    async def test_stale_edit_rolls_back(self, discussion, fake_api):
        fake_api.fail("update", StaleEditError("m2"))
        with pytest.raises(StaleEditError):
            await discussion.edit_message("m2", "too late")
        message = discussion.get("m2")
        assert message.content == "Sounds good"
        assert not message.is_edited

    async def test_delete_shows_tombstone_immediately(self, discussion, fake_api):
        gate = fake_api.hold("delete")
        pending = asyncio.create_task(discussion.delete_message("m1"))
        await _settle()
        tombstone = discussion.get("m1")
        assert tombstone.is_deleted
        assert tombstone.content == DELETED_MESSAGE_CONTENT
        # 线程仍然保留，回复可见
        assert [m.id for m in discussion.open_thread("m1").replies] == ["m2"]
        gate.set()
        await pending
        assert discussion.get("m1").is_deleted
        assert len(discussion.pending) == 0

    async def test_delete_twice_is_noop(self, discussion, fake_api):
        await discussion.delete_message("m1")
        await discussion.delete_message("m1")
        assert len(fake_api.calls_to("delete")) == 1

    async def test_edit_deleted(self, discussion):
        await discussion.delete_message("m2")
        with pytest.raises(MutationValidationError):
            await discussion.edit_message("m2", "revive")

    async def test_remote_delete_tombstones(self, discussion):
        name, data = encode(Domain.MESSAGES, RecordVerb.DELETE, "m3")
        assert discussion.apply_push(decode(name, data)) is True
        assert discussion.get("m3").content == DELETED_MESSAGE_CONTENT


class TestReactions:
    """表情切换"""

    async def test_toggle(self, discussion):
        assert await discussion.toggle_reaction("m1", "👍") == ReactionOutcome.ADDED
        (reaction,) = discussion.get("m1").reactions
        assert reaction.user_id == "u-1"
        assert reaction.id.startswith("rx-")
        assert await discussion.toggle_reaction("m1", "👍") == ReactionOutcome.REMOVED
        assert discussion.get("m1").reactions == []

    async def test_failed_toggle_rolls_back(self, discussion, fake_api):
        fake_api.fail("react", MutationValidationError("bad emoji"))
        with pytest.raises(MutationValidationError):
            await discussion.toggle_reaction("m1", "🎉")
        assert discussion.get("m1").reactions == []


class TestTypingAndPaging:
    """输入提示与分页"""

    async def test_typing(self, message_store, clock, config):
        calls: list[int] = []
        message_store.subscribe(lambda: calls.append(1))
        signal = PresenceSignal(kind=PresenceKind.TYPING, user_id="u-2", user_name="Alice Chen")
        assert message_store.handle_presence(signal) is True
        assert [e.user_name for e in message_store.typing_users()] == ["Alice Chen"]
        message_store.handle_typing("u-1")
        assert len(message_store.typing_users()) == 1
        clock.advance(config.typing_timeout_s)
        assert message_store.typing_users() == []
        assert calls == [1]
        assert message_store.records == []

    async def test_load_older(self, message_store, fake_api, records):
        m1, m2, m3 = (records.message(f"m{i}") for i in (1, 2, 3))
        fake_api.set_page(Domain.MESSAGES, "p-1", [m3, m2], has_more=True, next_cursor="m2")
        fake_api.set_page(Domain.MESSAGES, "p-1", [m1], cursor="m2")
        await message_store.refresh()
        assert message_store.has_more
        outcome = await message_store.load_older()
        assert outcome.applied == 1
        assert not message_store.has_more
        assert [m.id for m in message_store.messages] == ["m1", "m2", "m3"]
        assert (await message_store.load_older()).applied == 0
        assert len(fake_api.calls_to("list_records")) == 2
        # 回看之后刷新不重置游标
        await message_store.refresh()
        assert not message_store.has_more
