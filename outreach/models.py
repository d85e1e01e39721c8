"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions used by the SQL
repository. For the Pydantic domain records, see schemas.py.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from outreach.storage import Base


class MessageRecord(Base):
    """
    Table: messages
    seq gives the insertion order; listings read it descending (newest first).
    """
    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    recipients = Column(JSON, nullable=False)
    status = Column(String, nullable=False, index=True)
    scheduled_time = Column(DateTime(timezone=True), nullable=True)
    sent_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ReplyRecord(Base):
    """
    Table: replies
    message_id is a weak reference (no foreign key): replies may outlive
    their message. Indexed for correlation lookups.
    """
    __tablename__ = "replies"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False)
    message_id = Column(String, nullable=False, index=True)
    sender_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
