"""SQLAlchemy ORM models for issues, comments, users and conversations.

Timestamps are epoch milliseconds stored as BIGINT. JSON columns hold
URL lists, conversation messages and the conversation context document.
"""

from sqlalchemy import JSON, BigInteger, Boolean, Column, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    """Read-only view of the user collaborator — only the display name is used."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(320), unique=True)


class IssueRow(Base):
    __tablename__ = "issues"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(200), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="open", index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=False)
    upload_urls = Column(JSON, nullable=False, default=list)
    upvotes = Column(Integer, nullable=False, default=0)
    resolution_message = Column(Text)
    resolution_upload_urls = Column(JSON, nullable=False, default=list)
    resolved_at = Column(BigInteger)
    created_at = Column(BigInteger, nullable=False, index=True)
    updated_at = Column(BigInteger, nullable=False)

    __table_args__ = (Index("idx_issues_location", "latitude", "longitude"),)


class IssueUpvoteRow(Base):
    """One row per (issue, voter) — the primary key enforces vote uniqueness."""

    __tablename__ = "issue_upvotes"

    issue_id = Column(String(64), ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(64), primary_key=True)
    created_at = Column(BigInteger, nullable=False)


class CommentRow(Base):
    __tablename__ = "comments"

    id = Column(String(64), primary_key=True)
    issue_id = Column(String(64), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    comment = Column(Text, nullable=False)
    upload_urls = Column(JSON, nullable=False, default=list)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(BigInteger, nullable=False)


class ConversationRow(Base):
    __tablename__ = "conversations"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    messages = Column(JSON, nullable=False, default=list)
    context = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(BigInteger, nullable=False, index=True)
    updated_at = Column(BigInteger, nullable=False, index=True)
