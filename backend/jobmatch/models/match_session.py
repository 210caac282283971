# jobmatch/models/match_session.py
from __future__ import annotations

import uuid
from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from jobmatch.db.base import Base


class MatchSession(Base):
    """
    One tracked matching run across many jobs.
    Status: in_progress -> completed | failed (terminal, never rewritten).
    """
    __tablename__ = "match_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    trigger_source = Column(String(32), nullable=False)  # manual | auto_scrape | company_refresh
    company_id = Column(Integer, nullable=True, index=True)
    status = Column(String(32), nullable=False, default="in_progress", index=True)

    jobs_total = Column(Integer, nullable=False, default=0)
    jobs_completed = Column(Integer, nullable=False, default=0)
    jobs_succeeded = Column(Integer, nullable=False, default=0)
    jobs_failed = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)

    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    logs = relationship(
        "MatchLog",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class MatchLog(Base):
    """
    Append-only per-job outcome inside a session.
    job_id carries no foreign key: jobs that were not found are logged too.
    """
    __tablename__ = "match_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("match_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    job_id = Column(Integer, nullable=False, index=True)

    status = Column(String(16), nullable=False)  # success | failed | cancelled
    score = Column(Float, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=1)
    error_type = Column(String(32), nullable=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    model_used = Column(String(128), nullable=True)

    completed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    session = relationship("MatchSession", back_populates="logs")
