# jobmatch/models/profile.py
from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Integer, String, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from jobmatch.db.base import Base


class Profile(Base):
    """
    The single candidate profile used as the scoring basis.
    Skills and experience are child rows.
    """
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    summary = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    skills = relationship(
        "Skill",
        back_populates="profile",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    experience = relationship(
        "Experience",
        back_populates="profile",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Skill(Base):
    __tablename__ = "skills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    proficiency = Column(Integer, nullable=False, default=3)  # 1 (beginner) .. 5 (expert)
    category = Column(String(100), nullable=True)

    profile = relationship("Profile", back_populates="skills")


class Experience(Base):
    __tablename__ = "experience"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(300), nullable=False)
    company = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)

    profile = relationship("Profile", back_populates="experience")
