# jobmatch/services/match/prompts.py
"""Prompt builders for single and batch matching. System prompts live in prompts/match/."""
from functools import lru_cache
from typing import List, Sequence

from jobmatch.schemas.match import CandidateProfile
from jobmatch.services.common.llm_client import load_prompt
from jobmatch.services.match.types import MatchJob

PROFICIENCY_LABELS = ["Beginner", "Elementary", "Intermediate", "Advanced", "Expert"]


@lru_cache(maxsize=None)
def single_match_system_prompt() -> str:
    return load_prompt("match/single_match.prompt.txt")


@lru_cache(maxsize=None)
def bulk_match_system_prompt() -> str:
    return load_prompt("match/bulk_match.prompt.txt")


def proficiency_label(level: int) -> str:
    index = min(max(level, 1), len(PROFICIENCY_LABELS)) - 1
    return PROFICIENCY_LABELS[index]


def format_candidate_profile(profile: CandidateProfile) -> str:
    if profile.skills:
        skills = "\n".join(
            f"- {s.name} ({proficiency_label(s.proficiency)}{', ' + s.category if s.category else ''})"
            for s in profile.skills
        )
    else:
        skills = "No skills listed"

    if profile.experience:
        experience = "\n".join(
            f"- {e.title} at {e.company}{': ' + e.description if e.description else ''}"
            for e in profile.experience
        )
    else:
        experience = "No experience listed"

    return (
        "## Candidate Profile\n\n"
        f"**Summary:**\n{profile.summary or 'No summary provided'}\n\n"
        f"**Skills:**\n{skills}\n\n"
        f"**Experience:**\n{experience}\n"
    )


def _format_requirements(requirements: List[str]) -> str:
    return ", ".join(requirements) if requirements else "None specified"


def build_single_match_prompt(job: MatchJob, profile: CandidateProfile) -> str:
    return (
        f"{format_candidate_profile(profile)}\n"
        "---\n\n"
        "## Job to Analyze\n\n"
        f"**Job ID:** {job.id}\n"
        f"**Title:** {job.title}\n"
        f"**Description:** {job.description or 'No description provided'}\n"
        f"**Requirements:** {_format_requirements(job.requirements)}\n\n"
        "---\n\n"
        "Analyze the job and respond with ONLY valid JSON."
    )


def build_bulk_match_prompt(jobs: Sequence[MatchJob], profile: CandidateProfile) -> str:
    sections = "\n".join(
        f"### Job ID: {job.id}\n"
        f"**Title:** {job.title}\n"
        f"**Description:** {job.description or 'No description provided'}\n"
        f"**Requirements:** {_format_requirements(job.requirements)}\n"
        for job in jobs
    )
    return (
        f"{format_candidate_profile(profile)}\n"
        "---\n\n"
        "## Jobs to Analyze\n\n"
        f"{sections}\n"
        "---\n\n"
        'Analyze each job and respond with ONLY valid JSON: {"results": [...]} with one entry per job ID.'
    )
