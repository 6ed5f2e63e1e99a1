"""Database models for the bot."""
from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dictbot.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """User model."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(Integer, unique=True, nullable=False)
    username = Column(String, nullable=True)
    current_unit_id = Column(String, nullable=True)

    # Relationships
    storage_entries = relationship("StorageEntry", back_populates="user", cascade="all, delete-orphan")
    uploaded_units = relationship("UploadedUnit", back_populates="user", cascade="all, delete-orphan")
    logs = relationship("UserLog", back_populates="user", cascade="all, delete-orphan")


class StorageEntry(Base, TimestampMixin):
    """One key/value blob of a user's local storage."""

    __tablename__ = "storage_entries"
    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_storage_user_key"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    key = Column(String, nullable=False)  # e.g., "starData", "learningStats"
    value = Column(Text, nullable=False)  # JSON document

    # Relationships
    user = relationship("User", back_populates="storage_entries")


class UploadedUnit(Base, TimestampMixin):
    """Lesson unit uploaded by a user."""

    __tablename__ = "uploaded_units"
    __table_args__ = (UniqueConstraint("user_id", "unit_id", name="uq_upload_user_unit"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    unit_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    payload = Column(Text, nullable=False)  # lesson JSON as uploaded

    # Relationships
    user = relationship("User", back_populates="uploaded_units")


class UserLog(Base, TimestampMixin):
    """User activity log model."""

    __tablename__ = "user_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    message = Column(String, nullable=False)
    level = Column(String, nullable=False)  # INFO, WARNING, ERROR
    category = Column(String, nullable=False)  # e.g., "upload", "reset"

    # Relationships
    user = relationship("User", back_populates="logs")
