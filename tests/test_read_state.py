import asyncio
from datetime import datetime, timedelta, timezone

from bson import ObjectId


async def _counts(read_state, conversation_id):
    doc = await read_state.collection.find_one({"_id": ObjectId(conversation_id)})
    return doc["unread_counts"]


async def _backdate(read_state, conversation_id, days=1):
    stale = datetime.now(timezone.utc) - timedelta(days=days)
    # stored datetimes keep millisecond precision
    stale = stale.replace(microsecond=stale.microsecond // 1000 * 1000)
    await read_state.collection.update_one({"_id": ObjectId(conversation_id)}, {"$set": {"updated_at": stale}})
    return stale.replace(tzinfo=None)


async def _updated_at(read_state, conversation_id):
    doc = await read_state.collection.find_one({"_id": ObjectId(conversation_id)})
    return doc["updated_at"].replace(tzinfo=None)


class TestIncrementUnread:

    async def test_increments_everyone_but_the_sender(self, read_state, group, alice, bob, carol):
        await read_state.increment_unread(group["_id"], [alice, bob, carol], alice)

        assert await _counts(read_state, group["_id"]) == {alice: 0, bob: 1, carol: 1}

    async def test_sender_only_is_a_no_op(self, read_state, group, alice, bob, carol):
        await read_state.increment_unread(group["_id"], [alice], alice)

        assert await _counts(read_state, group["_id"]) == {alice: 0, bob: 0, carol: 0}

    async def test_repeated_ids_count_once(self, read_state, group, alice, bob):
        await read_state.increment_unread(group["_id"], [bob, bob], alice)

        counts = await _counts(read_state, group["_id"])
        assert counts[bob] == 1

    async def test_malformed_conversation_id_is_ignored(self, read_state, alice, bob):
        await read_state.increment_unread("nope", [alice, bob], alice)


class TestResetUnread:

    async def test_reset_then_increment_leaves_one(self, read_state, group, alice, bob, carol):
        await read_state.increment_unread(group["_id"], [alice, bob, carol], carol)
        await read_state.increment_unread(group["_id"], [alice, bob, carol], carol)

        await read_state.reset_unread(group["_id"], alice)
        await read_state.increment_unread(group["_id"], [alice], bob)

        counts = await _counts(read_state, group["_id"])
        assert counts[alice] == 1
        assert counts[bob] == 2

    async def test_concurrent_reset_and_increments_on_other_users(self, read_state, group, alice, bob, carol):
        await read_state.increment_unread(group["_id"], [alice, bob, carol], carol)

        await asyncio.gather(
            read_state.reset_unread(group["_id"], alice),
            read_state.increment_unread(group["_id"], [bob], alice),
            read_state.increment_unread(group["_id"], [bob, carol], alice),
        )
        await read_state.increment_unread(group["_id"], [alice], bob)

        counts = await _counts(read_state, group["_id"])
        assert counts == {alice: 1, bob: 3, carol: 1}

    async def test_reset_for_non_member_matches_nothing(self, read_state, group, dave):
        assert await read_state.reset_unread(group["_id"], dave) is False
        assert dave not in await _counts(read_state, group["_id"])

    async def test_reset_reports_match_for_member(self, read_state, group, bob):
        assert await read_state.reset_unread(group["_id"], bob) is True


class TestUpdatedAt:

    async def test_reset_bumps_updated_at(self, read_state, group, bob):
        stale = await _backdate(read_state, group["_id"])

        await read_state.reset_unread(group["_id"], bob)

        assert await _updated_at(read_state, group["_id"]) > stale

    async def test_increment_bumps_updated_at(self, read_state, group, alice, bob, carol):
        stale = await _backdate(read_state, group["_id"])

        await read_state.increment_unread(group["_id"], [alice, bob, carol], alice)

        assert await _updated_at(read_state, group["_id"]) > stale

    async def test_non_member_reset_leaves_updated_at(self, read_state, group, dave):
        stale = await _backdate(read_state, group["_id"])

        await read_state.reset_unread(group["_id"], dave)

        assert await _updated_at(read_state, group["_id"]) == stale

    async def test_mark_read_moves_conversation_to_the_top(self, conversation_service, read_state, alice, bob, carol):
        first = await conversation_service.create_conversation(alice, "PRIVATE", [bob])
        second = await conversation_service.create_conversation(alice, "PRIVATE", [carol])
        await _backdate(read_state, first["_id"], days=2)
        await _backdate(read_state, second["_id"], days=1)

        await conversation_service.mark_conversation_as_read(first["_id"], alice)

        items = await conversation_service.get_user_conversations(alice)
        assert [c["_id"] for c in items] == [first["_id"], second["_id"]]
