"""
Pydantic schemas for domain records and request/response validation.

This module contains:
- Domain records (Message, Reply, Stats, Connection)
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# =============================================================================
# Domain Records
# =============================================================================

class MessageStatus(str, Enum):
    SENT = "sent"
    SCHEDULED = "scheduled"
    FAILED = "failed"


class Message(BaseModel):
    """
    An outbound message with one or more recipients.

    reply_count is derived: the store recomputes it from the reply set on
    every read and never accepts it from callers.
    """
    id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    recipients: list[str] = Field(..., min_length=1)
    status: MessageStatus
    scheduled_time: Optional[datetime] = None
    sent_time: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    reply_count: int = Field(default=0, ge=0)


class Reply(BaseModel):
    """An inbound reply correlated to a message by id."""
    id: str = Field(..., min_length=1)
    message_id: str = Field(..., min_length=1)
    sender_id: str = Field(..., min_length=1)
    content: str
    timestamp: datetime
    created_at: datetime


class Stats(BaseModel):
    """
    Summary counts derived from the store. Serialized with camelCase keys
    (totalMessages, responseRate, ...).
    """
    total_messages: int = Field(default=0, ge=0)
    sent_messages: int = Field(default=0, ge=0)
    scheduled_messages: int = Field(default=0, ge=0)
    failed_messages: int = Field(default=0, ge=0)
    total_replies: int = Field(default=0, ge=0)
    response_rate: int = Field(default=0, ge=0, le=100)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class DailyCount(BaseModel):
    """Messages created on one UTC day, split by status."""
    day: date
    messages: int = Field(default=0, ge=0)
    sent: int = Field(default=0, ge=0)
    scheduled: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


class InboundReply(BaseModel):
    """A reply as delivered by a link client, before correlation."""
    message_id: str
    sender_id: str
    content: str
    timestamp: datetime


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    LINKED = "linked"
    DISCONNECTED = "disconnected"


class Connection(BaseModel):
    """Device link session between the service and a phone client."""
    id: str
    owner_id: str
    qr_code: str
    status: ConnectionStatus = ConnectionStatus.PENDING
    created_at: datetime
    updated_at: datetime
    linked_at: Optional[datetime] = None


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreateRequest(BaseModel):
    """
    Body of POST /messages.

    Content and recipient checks (non-empty, prefix normalization, future
    schedule) are enforced by the store so that every caller gets them.
    """
    content: str = Field(..., description="Message body")
    recipients: list[str] = Field(..., description="Destination addresses, e.g. +14155550100")
    scheduled_time: Optional[datetime] = Field(
        None,
        alias="scheduledTime",
        description="Future send time; omit to send immediately",
    )
    owner_id: Optional[str] = Field(None, description="Owning account; defaults to DEFAULT_OWNER_ID")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "content": "Hello",
                    "recipients": ["+1234567890", "+0987654321"],
                }
            ]
        }
    }


class MessageUpdateRequest(BaseModel):
    """Body of PATCH /messages/{id}. Only the fields present are merged."""
    content: Optional[str] = None
    recipients: Optional[list[str]] = None
    status: Optional[MessageStatus] = None
    scheduled_time: Optional[datetime] = Field(None, alias="scheduledTime")
    sent_time: Optional[datetime] = Field(None, alias="sentTime")

    model_config = {
        "populate_by_name": True,
        "extra": "forbid",  # reply_count, id, owner_id are not updatable
    }


class WebhookRequest(BaseModel):
    """
    Inbound reply delivered by the link client.

    Validates:
    - message_id: non-empty string
    - from: E.164-like format (starts with +, then digits only)
    - text: max 4096 characters
    """
    message_id: str = Field(..., min_length=1, description="Id of the message being replied to")
    # 'from' is a reserved word in Python, so we use alias
    from_msisdn: str = Field(..., alias="from", description="Sender phone number in E.164 format")
    text: str = Field("", max_length=4096, description="Reply text")
    ts: Optional[datetime] = Field(None, description="Receipt time; defaults to server time")

    @field_validator("from_msisdn")
    @classmethod
    def validate_e164_format(cls, v: str) -> str:
        """Validate E.164-like phone number format: starts with +, then digits only."""
        if not v.startswith("+"):
            raise ValueError("from must start with '+'")
        if len(v) < 2:
            raise ValueError("from must have at least one digit after '+'")
        if not v[1:].isdigit():
            raise ValueError("from must contain only digits after '+'")
        return v

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "message_id": "3f2c9c0e8b5d4b53a1c0f1f9e3d2a7b4",
                    "from": "+14155550100",
                    "text": "Thanks for the message!",
                }
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for webhook processing."""
    status: str = Field(default="ok", description="Operation status")
    result: str = Field(..., description="recorded or ignored")
    reply_id: Optional[str] = Field(None, description="Id of the stored reply")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessagesListResponse(BaseModel):
    """Messages for one owner, newest first."""
    data: list[Message] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class RepliesListResponse(BaseModel):
    """Replies in arrival order, oldest first."""
    data: list[Reply] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class DailyStatsResponse(BaseModel):
    """Per-day message counts over a range, oldest day first."""
    range: str = Field(..., description="7d, 30d or 90d")
    data: list[DailyCount] = Field(default_factory=list)
