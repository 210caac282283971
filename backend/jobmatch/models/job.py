# jobmatch/models/job.py
# Purpose: Job rows scored by the matcher.
# Notes:
# - match_score stays NULL until the matcher has produced a result ("unmatched").
# - List-valued match details are stored as JSON arrays.

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from jobmatch.db.base import Base  # IMPORTANT: Base must be imported


class Job(Base):
    """
    A job posting discovered elsewhere (scraper, company refresh).
    The matcher only reads title/description and writes the match_* columns.
    """
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, nullable=True, index=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)

    # Match results
    match_score = Column(Integer, nullable=True)
    match_reasons = Column(JSON, nullable=True)
    matched_skills = Column(JSON, nullable=True)
    missing_skills = Column(JSON, nullable=True)
    recommendations = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
