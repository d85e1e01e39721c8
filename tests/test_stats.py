"""
Tests for statistics.

Tests cover:
- Empty collections return zeros
- Counts by status add up to the total
- Response rate rounding, capping and the zero-sent case
- GET /stats response shape
- Per-day series: empty days, UTC day boundaries, status split
"""

import itertools
from datetime import date, datetime, timedelta, timezone

import pytest

from fastapi.testclient import TestClient

from outreach import stats
from outreach.main import create_app
from outreach.repository import InMemoryRepository
from outreach.schemas import Message, MessageStatus, Reply
from outreach.store import MessageStore

from .conftest import START


_ids = itertools.count(1)


def make_message(status: MessageStatus, created_at: datetime = START) -> Message:
    return Message(
        id=f"m{next(_ids)}",
        owner_id="owner",
        content="Hello",
        recipients=["+1234567890"],
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )


def make_replies(message: Message, count: int) -> list[Reply]:
    return [
        Reply(
            id=f"r{next(_ids)}",
            message_id=message.id,
            sender_id="+1234567890",
            content="Thanks",
            timestamp=START,
            created_at=START,
        )
        for _ in range(count)
    ]


class TestCompute:
    """Test the pure aggregation."""

    def test_empty(self):
        result = stats.compute([], [])

        assert result.total_messages == 0
        assert result.sent_messages == 0
        assert result.scheduled_messages == 0
        assert result.failed_messages == 0
        assert result.total_replies == 0
        assert result.response_rate == 0

    def test_counts_by_status(self):
        messages = (
            [make_message(MessageStatus.SENT) for _ in range(3)]
            + [make_message(MessageStatus.SCHEDULED) for _ in range(2)]
            + [make_message(MessageStatus.FAILED)]
        )

        result = stats.compute(messages, [])

        assert result.sent_messages == 3
        assert result.scheduled_messages == 2
        assert result.failed_messages == 1
        assert result.total_messages == (
            result.sent_messages + result.scheduled_messages + result.failed_messages
        )

    def test_no_sent_messages_means_zero_rate(self):
        scheduled = make_message(MessageStatus.SCHEDULED)

        result = stats.compute([scheduled], make_replies(scheduled, 4))

        assert result.total_replies == 4
        assert result.response_rate == 0

    def test_accepts_generators(self):
        sent = make_message(MessageStatus.SENT)

        result = stats.compute((m for m in [sent]), (r for r in make_replies(sent, 1)))

        assert result.total_messages == 1
        assert result.total_replies == 1


class TestResponseRate:
    """Test the response rate formula."""

    @pytest.mark.parametrize(
        "replies, sent, expected",
        [
            (0, 0, 0),
            (5, 0, 0),
            (0, 4, 0),
            (1, 2, 50),
            (1, 3, 33),
            (2, 3, 67),
            (1, 8, 13),  # 12.5 rounds half up
            (3, 8, 38),  # 37.5 rounds half up
            (2, 1, 100),
            (10, 3, 100),
        ],
    )
    def test_formula(self, replies, sent, expected):
        assert stats.response_rate(replies, sent) == expected


class TestStoreStats:
    """Test stats computed from the store."""

    def test_two_replies(self, store):
        message = store.create("Hello", ["+1234567890", "+0987654321"])
        store.correlator.record_reply(message.id, "+1234567890", "one")
        store.correlator.record_reply(message.id, "+0987654321", "two")

        result = store.stats()

        assert result.total_replies == 2
        assert result.sent_messages == 1
        assert result.response_rate == 100
        assert store.get(message.id).reply_count == 2

    def test_mixed_statuses(self, store, clock):
        store.create("Now", ["+1"])
        store.create("Later", ["+2"], scheduled_time=clock.now + timedelta(days=1))
        failed = store.create("Broken", ["+3"])
        store.update(failed.id, {"status": "failed"})

        result = store.stats()

        assert (result.total_messages, result.sent_messages,
                result.scheduled_messages, result.failed_messages) == (3, 1, 1, 1)

    def test_scoped_to_owner(self, store):
        mine = store.create("Mine", ["+1"], owner_id="alice")
        theirs = store.create("Theirs", ["+2"], owner_id="bob")
        store.correlator.record_reply(theirs.id, "+2", "hi")

        result = store.stats("alice")

        assert result.total_messages == 1
        assert result.total_replies == 0
        assert store.get(mine.id).reply_count == 0

    def test_repeatable(self, store):
        message = store.create("Hello", ["+1"])
        store.correlator.record_reply(message.id, "+1", "hi")

        assert store.stats() == store.stats()


class TestStatsEndpoint:
    """Test GET /stats."""

    def test_empty(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        assert response.json() == {
            "totalMessages": 0,
            "sentMessages": 0,
            "scheduledMessages": 0,
            "failedMessages": 0,
            "totalReplies": 0,
            "responseRate": 0,
        }

    def test_counts(self, client):
        client.post("/messages", json={"content": "Hello", "recipients": ["+1234567890"]})
        client.post("/messages", json={"content": "Hi", "recipients": ["+1234567890"]})

        data = client.get("/stats").json()

        assert data["totalMessages"] == 2
        assert data["sentMessages"] == 2
        assert data["responseRate"] == 0

    def test_other_owner(self, client):
        client.post("/messages", json={"content": "Hello", "recipients": ["+1"], "owner_id": "alice"})

        assert client.get("/stats", params={"owner_id": "bob"}).json()["totalMessages"] == 0
        assert client.get("/stats", params={"owner_id": "alice"}).json()["totalMessages"] == 1


class TestDaily:
    """Test the per-day message series."""

    def test_empty_range_has_every_day(self):
        days = stats.daily([], 7, START)

        assert [d.day for d in days] == [date(2025, 1, 9) + timedelta(days=i) for i in range(7)]
        assert all((d.messages, d.sent, d.scheduled, d.failed) == (0, 0, 0, 0) for d in days)

    @pytest.mark.parametrize("name, length", [("7d", 7), ("30d", 30), ("90d", 90)])
    def test_range_lengths(self, name, length):
        days = stats.daily([], stats.DAILY_RANGES[name], START)

        assert len(days) == length
        assert days[-1].day == START.date()

    def test_status_split(self):
        messages = (
            [make_message(MessageStatus.SENT) for _ in range(2)]
            + [make_message(MessageStatus.SCHEDULED), make_message(MessageStatus.FAILED)]
            + [make_message(MessageStatus.SENT, START - timedelta(days=2))]
        )

        days = {d.day: d for d in stats.daily(messages, 7, START)}

        today = days[date(2025, 1, 15)]
        assert (today.messages, today.sent, today.scheduled, today.failed) == (4, 2, 1, 1)
        earlier = days[date(2025, 1, 13)]
        assert (earlier.messages, earlier.sent) == (1, 1)
        assert sum(d.messages for d in days.values()) == len(messages)

    def test_day_boundaries(self):
        midnight = datetime(2025, 1, 15, tzinfo=timezone.utc)
        messages = [
            make_message(MessageStatus.SENT, midnight),
            make_message(MessageStatus.SENT, midnight - timedelta(microseconds=1)),
            make_message(MessageStatus.SENT, datetime(2025, 1, 9, tzinfo=timezone.utc)),
            make_message(MessageStatus.SENT, datetime(2025, 1, 8, 23, 59, tzinfo=timezone.utc)),
        ]

        days = {d.day: d.messages for d in stats.daily(messages, 7, START)}

        assert days[date(2025, 1, 15)] == 1
        assert days[date(2025, 1, 14)] == 1
        assert days[date(2025, 1, 9)] == 1
        assert date(2025, 1, 8) not in days

    def test_offset_timestamps_bucketed_by_utc_day(self):
        # 01:00 at +05:00 is 20:00 UTC the previous day
        local = datetime(2025, 1, 15, 1, 0, tzinfo=timezone(timedelta(hours=5)))

        days = {d.day: d.messages for d in stats.daily([make_message(MessageStatus.SENT, local)], 7, START)}

        assert days[date(2025, 1, 14)] == 1
        assert days[date(2025, 1, 15)] == 0

    def test_days_must_be_positive(self):
        with pytest.raises(ValueError):
            stats.daily([], 0, START)

    def test_store_series_scoped_to_owner(self, store, clock):
        store.create("Mine", ["+1"], owner_id="alice")
        clock.advance(days=1)
        store.create("Mine too", ["+1"], owner_id="alice")
        store.create("Theirs", ["+2"], owner_id="bob")

        days = store.daily_stats("alice", 7)

        assert [d.messages for d in days[-2:]] == [1, 1]
        assert days[-1].day == clock.now.date()


class TestDailyEndpoint:
    """Test GET /stats/daily."""

    @pytest.fixture
    def clocked_client(self, settings, clock, id_factory):
        store = MessageStore(InMemoryRepository(), clock=clock, id_factory=id_factory)
        with TestClient(create_app(settings, store=store)) as test_client:
            yield test_client

    def test_default_range(self, clocked_client):
        clocked_client.post("/messages", json={"content": "Hello", "recipients": ["+1"]})

        data = clocked_client.get("/stats/daily").json()

        assert data["range"] == "7d"
        assert len(data["data"]) == 7
        assert data["data"][-1] == {
            "day": "2025-01-15",
            "messages": 1,
            "sent": 1,
            "scheduled": 0,
            "failed": 0,
        }

    def test_thirty_days(self, clocked_client):
        data = clocked_client.get("/stats/daily", params={"range": "30d"}).json()

        assert len(data["data"]) == 30
        assert data["data"][0]["day"] == "2024-12-17"

    def test_unknown_range(self, clocked_client):
        response = clocked_client.get("/stats/daily", params={"range": "1y"})

        assert response.status_code == 422
