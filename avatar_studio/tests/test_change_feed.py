"""
Tests for the change feed fan-out
"""

import asyncio

import pytest

from avatar_studio.core.change_feed import ChangeFeed
from avatar_studio.data.models.attachments import KnowledgeRow
from avatar_studio.data.storage.notifier import ChangeNotifier
from avatar_studio.models.wizard_types import ChangeSource
from avatar_studio.utils.errors import NotAvailable


class GatedNotifier(ChangeNotifier):
    """Change source whose handshake waits until the test opens the gate"""

    def __init__(self):
        super().__init__()
        self.gate = None

    async def subscribe_to_changes(self, profile_id, callback):
        await self.gate.wait()
        return await super().subscribe_to_changes(profile_id, callback)


class TestChangeFeed:

    def test_update_reaches_every_view(self, feed, profiles, valid_fields):
        detail_view, wizard_view = [], []

        async def scenario():
            profile_id = await profiles.create(valid_fields)
            await feed.subscribe(profile_id, detail_view.append)
            await feed.subscribe(profile_id, wizard_view.append)
            await profiles.update(profile_id, {"name": "New"})

        asyncio.run(scenario())
        assert [change.fields for change in detail_view] == [{"name": "New"}]
        assert [change.fields for change in wizard_view] == [{"name": "New"}]

    def test_one_source_watch_per_profile(self, feed, profiles, knowledge_table):
        async def scenario():
            first = await feed.subscribe("p1", lambda change: None)
            second = await feed.subscribe("p1", lambda change: None)
            counts = [(profiles.listener_count("p1"), knowledge_table.listener_count("p1"))]
            first.release()
            counts.append((profiles.listener_count("p1"), knowledge_table.listener_count("p1")))
            second.release()
            counts.append((profiles.listener_count("p1"), knowledge_table.listener_count("p1")))
            return counts

        assert asyncio.run(scenario()) == [(1, 1), (1, 1), (0, 0)]
        assert feed.subscriber_count() == 0

    def test_unsubscribe_is_idempotent(self, feed):
        async def scenario():
            subscription = await feed.subscribe("p1", lambda change: None)
            feed.unsubscribe(subscription)
            feed.unsubscribe(subscription)
            subscription.release()
            return subscription

        subscription = asyncio.run(scenario())
        assert subscription.active is False
        assert feed.subscriber_count("p1") == 0

    def test_failing_subscriber_does_not_block_others(self, feed, profiles, valid_fields):
        received = []

        def broken(change):
            raise RuntimeError("view crashed")

        async def async_view(change):
            received.append(change.fields)

        async def scenario():
            profile_id = await profiles.create(valid_fields)
            await feed.subscribe(profile_id, broken)
            await feed.subscribe(profile_id, async_view)
            await profiles.update(profile_id, {"backstory": "Rewritten."})

        asyncio.run(scenario())
        assert received == [{"backstory": "Rewritten."}]

    def test_no_replay_for_late_subscribers(self, feed, profiles, valid_fields):
        received = []

        async def scenario():
            profile_id = await profiles.create(valid_fields)
            await profiles.update(profile_id, {"name": "Before"})
            await feed.subscribe(profile_id, received.append)

        asyncio.run(scenario())
        assert received == []

    def test_knowledge_rows_are_delivered(self, feed, knowledge_table):
        received = []

        async def scenario():
            await feed.subscribe("p1", received.append)
            await knowledge_table.insert(KnowledgeRow(
                profile_id="p1", display_name="spec.pdf", storage_key="o/p1/spec.pdf", size_bytes=3
            ))
            await knowledge_table.insert(KnowledgeRow(
                profile_id="p2", display_name="other.pdf", storage_key="o/p2/other.pdf", size_bytes=3
            ))

        asyncio.run(scenario())
        assert len(received) == 1
        assert received[0].source == ChangeSource.KNOWLEDGE
        assert received[0].fields["display_name"] == "spec.pdf"

    def test_scoped_subscriptions(self, feed):
        async def scenario():
            async with feed.watch("p1", lambda change: None):
                inside = feed.subscriber_count("p1")
            with await feed.subscribe("p2", lambda change: None):
                inside_with = feed.subscriber_count("p2")
            return inside, inside_with

        assert asyncio.run(scenario()) == (1, 1)
        assert feed.subscriber_count() == 0

    def test_closed_feed_refuses_subscriptions(self, feed, profiles):
        asyncio.run(feed.subscribe("p1", lambda change: None))
        feed.close()

        assert feed.subscriber_count() == 0
        assert profiles.listener_count() == 0
        with pytest.raises(NotAvailable):
            asyncio.run(feed.subscribe("p1", lambda change: None))

    def test_close_during_handshake_releases_late_watches(self):
        eager, gated = ChangeNotifier(), GatedNotifier()
        feed = ChangeFeed([eager, gated])

        async def scenario():
            gated.gate = asyncio.Event()
            pending = asyncio.create_task(feed.subscribe("p1", lambda change: None))
            await asyncio.sleep(0)
            assert eager.listener_count("p1") == 1
            feed.close()
            gated.gate.set()
            subscription = await pending
            return subscription

        subscription = asyncio.run(scenario())
        assert not subscription.active
        assert eager.listener_count() == 0
        assert gated.listener_count() == 0
        assert feed.subscriber_count() == 0
