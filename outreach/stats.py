"""
Summary statistics over messages and replies.

Nothing here is cached: every call rescans both collections, so the
numbers can never drift from the store contents.
"""

import math
from datetime import datetime, timedelta
from typing import Iterable

from outreach.schemas import DailyCount, Message, MessageStatus, Reply, Stats
from outreach.utils import as_utc

MAX_RESPONSE_RATE = 100

# Range names accepted by the daily series, in days
DAILY_RANGES = {"7d": 7, "30d": 30, "90d": 90}


def response_rate(total_replies: int, sent_messages: int) -> int:
    """
    Replies per sent message as a whole percentage, rounded half up and
    capped at 100. Zero when nothing has been sent.
    """
    if sent_messages <= 0:
        return 0
    rate = total_replies / sent_messages * 100
    return min(MAX_RESPONSE_RATE, math.floor(rate + 0.5))


def compute(messages: Iterable[Message], replies: Iterable[Reply]) -> Stats:
    counts = {status: 0 for status in MessageStatus}
    total_messages = 0
    for message in messages:
        counts[message.status] += 1
        total_messages += 1

    total_replies = sum(1 for _ in replies)
    sent = counts[MessageStatus.SENT]

    return Stats(
        total_messages=total_messages,
        sent_messages=sent,
        scheduled_messages=counts[MessageStatus.SCHEDULED],
        failed_messages=counts[MessageStatus.FAILED],
        total_replies=total_replies,
        response_rate=response_rate(total_replies, sent),
    )


def daily(messages: Iterable[Message], days: int, now: datetime) -> list[DailyCount]:
    """
    Message counts per UTC day for the `days` days ending on now's date,
    oldest first. Days without messages are present with zero counts.
    Messages are placed by created_at.
    """
    if days < 1:
        raise ValueError("days must be at least 1")

    last_day = as_utc(now).date()
    first_day = last_day - timedelta(days=days - 1)
    buckets = {
        first_day + timedelta(days=offset): {status: 0 for status in MessageStatus}
        for offset in range(days)
    }
    for message in messages:
        counts = buckets.get(as_utc(message.created_at).date())
        if counts is not None:
            counts[message.status] += 1

    return [
        DailyCount(
            day=day,
            messages=sum(counts.values()),
            sent=counts[MessageStatus.SENT],
            scheduled=counts[MessageStatus.SCHEDULED],
            failed=counts[MessageStatus.FAILED],
        )
        for day, counts in buckets.items()
    ]
