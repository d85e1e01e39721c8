"""
Collection ownership for messages and replies.

MessageRepository is the seam between the store/correlator logic and the
place records actually live. InMemoryRepository keeps both collections in
process memory (lost on restart); storage.SqlRepository keeps them in a
SQLAlchemy database behind the same interface.
"""

import logging
from abc import ABC, abstractmethod
from typing import Collection, Optional

from outreach.schemas import Message, Reply

logger = logging.getLogger(__name__)


class MessageRepository(ABC):
    """Raw CRUD over the message and reply collections. No validation."""

    @abstractmethod
    def insert_message(self, message: Message) -> None:
        """Insert at the front: listing order is newest first."""

    @abstractmethod
    def get_message(self, message_id: str) -> Optional[Message]:
        ...

    @abstractmethod
    def replace_message(self, message: Message) -> None:
        ...

    @abstractmethod
    def delete_message(self, message_id: str) -> bool:
        """Return False when no message had that id."""

    @abstractmethod
    def list_messages(self, owner_id: str) -> list[Message]:
        ...

    @abstractmethod
    def insert_reply(self, reply: Reply) -> None:
        ...

    @abstractmethod
    def list_replies(self, message_ids: Optional[Collection[str]] = None) -> list[Reply]:
        """Replies in arrival order, optionally restricted to some message ids."""

    @abstractmethod
    def delete_replies(self, message_id: str) -> int:
        ...

    def check_health(self) -> bool:
        return True


class InMemoryRepository(MessageRepository):
    """
    Both collections as plain lists owned by this object.

    Records are copied on the way in and out so callers can never mutate
    stored state without going through the store.
    """

    def __init__(self):
        self._messages: list[Message] = []
        self._replies: list[Reply] = []

    def insert_message(self, message: Message) -> None:
        self._messages.insert(0, message.model_copy(deep=True))

    def get_message(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message.model_copy(deep=True)
        return None

    def replace_message(self, message: Message) -> None:
        for index, existing in enumerate(self._messages):
            if existing.id == message.id:
                self._messages[index] = message.model_copy(deep=True)
                return
        raise KeyError(message.id)

    def delete_message(self, message_id: str) -> bool:
        remaining = [m for m in self._messages if m.id != message_id]
        deleted = len(remaining) != len(self._messages)
        self._messages = remaining
        return deleted

    def list_messages(self, owner_id: str) -> list[Message]:
        return [m.model_copy(deep=True) for m in self._messages if m.owner_id == owner_id]

    def insert_reply(self, reply: Reply) -> None:
        self._replies.append(reply.model_copy(deep=True))

    def list_replies(self, message_ids: Optional[Collection[str]] = None) -> list[Reply]:
        if message_ids is None:
            return [r.model_copy(deep=True) for r in self._replies]
        wanted = set(message_ids)
        return [r.model_copy(deep=True) for r in self._replies if r.message_id in wanted]

    def delete_replies(self, message_id: str) -> int:
        before = len(self._replies)
        self._replies = [r for r in self._replies if r.message_id != message_id]
        removed = before - len(self._replies)
        logger.debug(f"Removed {removed} replies for message {message_id}")
        return removed
