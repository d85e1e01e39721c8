"""
Link clients: the boundary between the service and a phone-based chat client.

LinkClient is the interface a real protocol client implements. The
SimulatedLinkClient stands in for it: device linking produces a random
pairing code and succeeds on request, and sending a message produces a few
canned replies after a short random delay.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional, Sequence

from outreach.errors import NotFoundError
from outreach.schemas import Connection, ConnectionStatus, InboundReply, Message
from outreach.utils import new_id, now_utc

logger = logging.getLogger(__name__)

ReplyHandler = Callable[[InboundReply], None]

CANNED_REPLIES = (
    "Thanks for the message!",
    "Got it, will get back to you soon.",
    "Received 👍",
    "Thank you for reaching out!",
    "Ok, understood.",
    "Perfect timing!",
    "Will do, thanks!",
    "Appreciate the update 🙏",
)

MAX_SIMULATED_REPLIERS = 3


class LinkClient(ABC):
    """What the service needs from a chat-linking client."""

    def __init__(self):
        self._handlers: list[ReplyHandler] = []

    @abstractmethod
    def connect(self, owner_id: str) -> Connection:
        """Start (or restart) device linking for owner_id."""

    @abstractmethod
    def send(self, message: Message) -> None:
        """Dispatch a sent message. Must not block."""

    def on_message(self, handler: ReplyHandler) -> None:
        self._handlers.append(handler)

    def cancel_pending(self) -> None:
        """Drop outstanding deliveries on shutdown. Nothing to do by default."""

    def _dispatch(self, inbound: InboundReply) -> None:
        for handler in self._handlers:
            try:
                handler(inbound)
            except Exception:
                # Best effort: one failing handler must not stop the rest
                logger.warning(
                    f"Reply handler failed for message {inbound.message_id}",
                    exc_info=True,
                )


def generate_link_code(rng: random.Random, clock: Callable[[], datetime] = now_utc) -> str:
    """Pairing payload: client id, server token, public key, timestamp (ms)."""
    client_id = rng.randbytes(16).hex()
    server_token = rng.randbytes(32).hex()
    public_key = rng.randbytes(32).hex()
    timestamp_ms = int(clock().timestamp() * 1000)
    return f"{client_id},{server_token},{public_key},{timestamp_ms}"


class SimulatedLinkClient(LinkClient):
    """In-process stand-in for a linked phone client."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = now_utc,
        min_delay: float = 1.0,
        max_delay: float = 3.0,
    ):
        super().__init__()
        self.rng = rng or random.Random()
        self.min_delay = min_delay
        self.max_delay = max(min_delay, max_delay)
        self._clock = clock
        self._sessions: dict[str, Connection] = {}
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # Device linking
    # =========================================================================

    def get_connection(self, owner_id: str) -> Optional[Connection]:
        return self._sessions.get(owner_id)

    def connect(self, owner_id: str) -> Connection:
        now = self._clock()
        qr_code = generate_link_code(self.rng, self._clock)
        session = self._sessions.get(owner_id)
        if session is None:
            session = Connection(
                id=new_id(),
                owner_id=owner_id,
                qr_code=qr_code,
                created_at=now,
                updated_at=now,
            )
        else:
            session = session.model_copy(update={
                "qr_code": qr_code,
                "status": ConnectionStatus.PENDING,
                "updated_at": now,
            })
        self._sessions[owner_id] = session
        logger.info(f"Link session pending: owner={owner_id}, session={session.id}")
        return session

    def _transition(self, owner_id: str, status: ConnectionStatus, **extra) -> Connection:
        session = self._sessions.get(owner_id)
        if session is None:
            raise NotFoundError("connection", owner_id)
        session = session.model_copy(update={
            "status": status,
            "updated_at": self._clock(),
            **extra,
        })
        self._sessions[owner_id] = session
        logger.info(f"Link session {status.value}: owner={owner_id}, session={session.id}")
        return session

    def complete(self, owner_id: str) -> Connection:
        """Pretend the phone scanned the code."""
        return self._transition(owner_id, ConnectionStatus.LINKED, linked_at=self._clock())

    def disconnect(self, owner_id: str) -> Connection:
        return self._transition(owner_id, ConnectionStatus.DISCONNECTED)

    # =========================================================================
    # Simulated replies
    # =========================================================================

    def generate_replies(self, message_id: str, recipients: Sequence[str]) -> list[InboundReply]:
        """
        Between 1 and 3 recipients reply, always the first ones in the list,
        each with one canned response chosen uniformly.
        """
        count = self.rng.randint(1, MAX_SIMULATED_REPLIERS)
        now = self._clock()
        return [
            InboundReply(
                message_id=message_id,
                sender_id=recipient,
                content=self.rng.choice(CANNED_REPLIES),
                timestamp=now,
            )
            for recipient in recipients[:count]
        ]

    async def deliver_replies(
        self,
        message_id: str,
        recipients: Sequence[str],
        delay: Optional[float] = None,
    ) -> list[InboundReply]:
        if delay is None:
            delay = self.rng.uniform(self.min_delay, self.max_delay)
        await asyncio.sleep(delay)
        replies = self.generate_replies(message_id, recipients)
        for inbound in replies:
            self._dispatch(inbound)
        logger.debug(f"Delivered {len(replies)} simulated replies for message {message_id}")
        return replies

    def send(self, message: Message) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, skipping simulated replies for {message.id}")
            return
        task = loop.create_task(self.deliver_replies(message.id, list(message.recipients)))
        # Keep a reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled reply injection to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
