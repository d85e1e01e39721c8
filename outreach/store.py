"""
Message store: the lifecycle rules for outbound messages.

The store validates and normalizes input, assigns identity and timestamps,
and derives reply_count from the reply set on every read. Collections live
in the injected MessageRepository; there is no module-level state.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from pydantic import ValidationError as SchemaError

from outreach import stats as stats_aggregator
from outreach.correlator import ReplyCorrelator
from outreach.errors import NotFoundError, ValidationError
from outreach.metrics import record_message_created
from outreach.repository import MessageRepository
from outreach.schemas import DailyCount, Message, MessageStatus, Reply, Stats
from outreach.simulator import LinkClient
from outreach.utils import as_utc, new_id, normalize_recipients, now_utc

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"content", "recipients", "status", "scheduled_time", "sent_time"})


class MessageStore:
    """Create, update, delete and list messages for an owner."""

    def __init__(
        self,
        repository: MessageRepository,
        link_client: Optional[LinkClient] = None,
        clock: Callable[[], datetime] = now_utc,
        id_factory: Callable[[], str] = new_id,
        default_owner_id: str = "demo-user-123",
        max_content_length: int = 1000,
        cascade_delete_replies: bool = False,
    ):
        self.repository = repository
        self.link_client = link_client
        self.correlator = ReplyCorrelator(repository, clock=clock, id_factory=id_factory)
        self.default_owner_id = default_owner_id
        self.max_content_length = max_content_length
        self.cascade_delete_replies = cascade_delete_replies
        self._clock = clock
        self._id_factory = id_factory

    # =========================================================================
    # Validation helpers
    # =========================================================================

    def _clean_content(self, content: Optional[str]) -> str:
        content = (content or "").strip()
        if not content:
            raise ValidationError("content must not be empty")
        if len(content) > self.max_content_length:
            raise ValidationError(
                f"content exceeds {self.max_content_length} characters"
            )
        return content

    def _clean_recipients(self, recipients: Union[str, Iterable[str], None]) -> list[str]:
        normalized = normalize_recipients(recipients or [])
        if not normalized:
            raise ValidationError("at least one recipient is required")
        return normalized

    def _owner(self, owner_id: Optional[str]) -> str:
        return owner_id or self.default_owner_id

    def _require(self, message_id: str) -> Message:
        message = self.repository.get_message(message_id)
        if message is None:
            raise NotFoundError("message", message_id)
        return message

    def _with_reply_count(self, message: Message) -> Message:
        counts = self.correlator.reply_counts([message.id])
        return message.model_copy(update={"reply_count": counts[message.id]})

    # =========================================================================
    # Operations
    # =========================================================================

    def create(
        self,
        content: str,
        recipients: Union[str, Iterable[str]],
        scheduled_time: Optional[datetime] = None,
        owner_id: Optional[str] = None,
    ) -> Message:
        """
        Create a message.

        Without scheduled_time the message is sent immediately (status sent,
        sent_time now) and handed to the link client. With scheduled_time,
        which must be in the future, the message is stored as scheduled.

        Raises:
            ValidationError: empty content, no recipients or past schedule
        """
        content = self._clean_content(content)
        recipients = self._clean_recipients(recipients)
        now = self._clock()

        if scheduled_time is not None:
            scheduled_time = as_utc(scheduled_time)
            if scheduled_time <= now:
                raise ValidationError("scheduled_time must be in the future")
            status = MessageStatus.SCHEDULED
            sent_time = None
        else:
            status = MessageStatus.SENT
            sent_time = now

        message = Message(
            id=self._id_factory(),
            owner_id=self._owner(owner_id),
            content=content,
            recipients=recipients,
            status=status,
            scheduled_time=scheduled_time,
            sent_time=sent_time,
            created_at=now,
            updated_at=now,
        )
        self.repository.insert_message(message)
        record_message_created(status.value)
        logger.info(
            f"Message created: id={message.id}, status={status.value}, "
            f"recipients={len(recipients)}"
        )

        if status is MessageStatus.SENT and self.link_client is not None:
            # Fire and forget; replies arrive later through the correlator
            self.link_client.send(message)

        return message

    def get(self, message_id: str) -> Message:
        return self._with_reply_count(self._require(message_id))

    def update(self, message_id: str, fields: Mapping[str, Any]) -> Message:
        """
        Merge fields into an existing message and refresh updated_at.

        Concurrent updates are last-write-wins. Moving a message to sent
        stamps sent_time unless one is given, and a sent message never
        loses its sent_time.

        Raises:
            NotFoundError: no message with this id
            ValidationError: unknown/non-updatable fields or invalid values
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"fields cannot be updated: {', '.join(sorted(unknown))}")

        message = self._require(message_id)
        now = self._clock()
        changes = dict(fields)

        if "content" in changes:
            changes["content"] = self._clean_content(changes["content"])
        if "recipients" in changes:
            changes["recipients"] = self._clean_recipients(changes["recipients"])
        if "status" in changes:
            try:
                status = MessageStatus(changes["status"])
            except ValueError:
                raise ValidationError(f"unknown status: {changes['status']}") from None
            changes["status"] = status
            if (
                status is MessageStatus.SENT
                and message.status is not MessageStatus.SENT
                and changes.get("sent_time") is None
            ):
                changes["sent_time"] = now
        if (
            changes.get("status", message.status) is MessageStatus.SENT
            and changes.get("sent_time", message.sent_time) is None
        ):
            # A sent message always keeps a send time
            changes["sent_time"] = message.sent_time or now
        for key in ("scheduled_time", "sent_time"):
            if isinstance(changes.get(key), datetime):
                changes[key] = as_utc(changes[key])
        changes["updated_at"] = now

        try:
            updated = Message.model_validate({**message.model_dump(), **changes})
        except SchemaError as e:
            raise ValidationError(f"Invalid update: {e}") from e

        self.repository.replace_message(updated)
        logger.info(f"Message updated: id={message_id}, fields={sorted(fields)}")
        return self._with_reply_count(updated)

    def delete(self, message_id: str) -> None:
        """
        Remove a message. Its replies stay unless cascade_delete_replies is set;
        they are unreachable from owner listings either way.

        Raises:
            NotFoundError: no message with this id
        """
        if not self.repository.delete_message(message_id):
            raise NotFoundError("message", message_id)
        if self.cascade_delete_replies:
            self.repository.delete_replies(message_id)
        logger.info(f"Message deleted: id={message_id}")

    def messages(self, owner_id: Optional[str] = None) -> list[Message]:
        """Owner's messages, newest first, each with a fresh reply_count."""
        messages = self.repository.list_messages(self._owner(owner_id))
        counts = self.correlator.reply_counts([m.id for m in messages])
        return [m.model_copy(update={"reply_count": counts[m.id]}) for m in messages]

    def replies(self, owner_id: Optional[str] = None) -> list[Reply]:
        """Replies to the owner's live messages, oldest first."""
        messages = self.repository.list_messages(self._owner(owner_id))
        return self.correlator.replies_for_messages([m.id for m in messages])

    def stats(self, owner_id: Optional[str] = None) -> Stats:
        messages = self.repository.list_messages(self._owner(owner_id))
        replies = self.correlator.replies_for_messages([m.id for m in messages])
        return stats_aggregator.compute(messages, replies)

    def daily_stats(self, owner_id: Optional[str] = None, days: int = 7) -> list[DailyCount]:
        """Owner's messages per day over the last `days` days, oldest first."""
        messages = self.repository.list_messages(self._owner(owner_id))
        return stats_aggregator.daily(messages, days, self._clock())
