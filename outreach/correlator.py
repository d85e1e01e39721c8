"""
Reply correlation: attach inbound replies to the message they answer.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Collection, Optional

from pydantic import ValidationError as SchemaError

from outreach.errors import ValidationError
from outreach.metrics import record_reply_outcome
from outreach.repository import MessageRepository
from outreach.schemas import Reply
from outreach.utils import as_utc, new_id, now_utc

logger = logging.getLogger(__name__)


class ReplyCorrelator:
    """
    Records replies against existing messages and answers reply lookups.

    Reply arrival is asynchronous relative to message deletion, so a reply
    for an unknown message id is dropped without raising.
    """

    def __init__(
        self,
        repository: MessageRepository,
        clock: Callable[[], datetime] = now_utc,
        id_factory: Callable[[], str] = new_id,
    ):
        self.repository = repository
        self._clock = clock
        self._id_factory = id_factory

    def record_reply(
        self,
        message_id: str,
        sender_id: str,
        content: str,
        timestamp: Optional[datetime] = None,
        source: str = "simulated",
    ) -> Optional[Reply]:
        """
        Append a reply for message_id.

        Returns:
            The stored Reply, or None when message_id matches no message.
        """
        if self.repository.get_message(message_id) is None:
            logger.warning(f"Ignoring reply for unknown message: {message_id}")
            record_reply_outcome(source, "ignored")
            return None

        now = self._clock()
        try:
            reply = Reply(
                id=self._id_factory(),
                message_id=message_id,
                sender_id=sender_id,
                content=content,
                timestamp=as_utc(timestamp) if timestamp is not None else now,
                created_at=now,
            )
        except SchemaError as e:
            raise ValidationError(f"Invalid reply: {e}") from e

        self.repository.insert_reply(reply)
        record_reply_outcome(source, "recorded")
        logger.info(f"Reply recorded: id={reply.id}, message_id={message_id}, sender={sender_id}")
        return reply

    def replies_for(self, message_id: str) -> list[Reply]:
        """
        All replies to one message, oldest first. Replies left behind by a
        deleted message are not returned.
        """
        if self.repository.get_message(message_id) is None:
            return []
        return self.repository.list_replies([message_id])

    def replies_for_messages(self, message_ids: Collection[str]) -> list[Reply]:
        return self.repository.list_replies(message_ids)

    def reply_counts(self, message_ids: Collection[str]) -> Counter:
        return Counter(reply.message_id for reply in self.repository.list_replies(message_ids))
