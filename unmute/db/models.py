"""Database models."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class User(Base):
    """Registered user."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    email = Column(Text, unique=True, nullable=False)
    password = Column(Text, nullable=False)  # salted PBKDF2 hash
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    calls = relationship("CallHistory", back_populates="user", cascade="all, delete-orphan")


class CallHistory(Base):
    """Finalized (or in-flight) record of an outbound call."""

    __tablename__ = "call_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    call_sid = Column(String(255), unique=True, nullable=False)
    phone_number = Column(String(50), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=True)  # seconds
    voice_model = Column(String(50), nullable=True)
    speech_speed = Column(String(10), nullable=True)
    status = Column(String(20), nullable=False)  # ringing, connected, ended
    transcript = Column(JSON, nullable=True)  # list of {text, isUser, timestamp}
    summary = Column(Text, nullable=True)
    recording_url = Column(Text, nullable=True)
    recording_data = Column(Text, nullable=True)  # base64 WAV of the full call

    # Relationships
    user = relationship("User", back_populates="calls")
