# backend/jobmatch/models/__init__.py
from jobmatch.models.job import Job
from jobmatch.models.profile import Profile, Skill, Experience
from jobmatch.models.match_session import MatchSession, MatchLog

__all__ = [
    "Job",
    "Profile",
    "Skill",
    "Experience",
    "MatchSession",
    "MatchLog",
]
