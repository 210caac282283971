"""
Tests for job text helpers and prompt building.
"""

import pytest

from jobmatch.services.match.prompts import (
    build_bulk_match_prompt,
    build_single_match_prompt,
    bulk_match_system_prompt,
    proficiency_label,
    single_match_system_prompt,
)
from jobmatch.services.match.types import MatchJob
from jobmatch.services.match.utils import chunk_list, extract_requirements, html_to_text


class TestExtractRequirements:
    def test_bullets_and_numbers(self):
        description = "About us\n- Python\n* SQL\n• Docker\n1. Five years\n2) English"
        assert extract_requirements(description) == ["Python", "SQL", "Docker", "Five years", "English"]

    def test_case_insensitive_dedup_keeps_first(self):
        assert extract_requirements("- Python\n- python\n- PYTHON ") == ["Python"]

    def test_empty(self):
        assert extract_requirements(None) == []
        assert extract_requirements("No bullets here") == []


class TestHtmlToText:
    def test_list_items_become_bullets(self):
        text = html_to_text("<p>We need:</p><ul><li>Python</li><li>SQL &amp; NoSQL</li></ul>")
        assert "• Python" in text
        assert "• SQL & NoSQL" in text
        assert extract_requirements(text) == ["Python", "SQL & NoSQL"]

    def test_entities_and_whitespace(self):
        assert html_to_text("a&nbsp;&nbsp;b<br>c") == "a b\nc"

    def test_none(self):
        assert html_to_text(None) == ""


class TestChunkList:
    def test_chunks(self):
        assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunk_list([1], 0)


class TestPrompts:
    def test_system_prompts_load(self):
        assert "results" in bulk_match_system_prompt()
        assert "score" in single_match_system_prompt()

    def test_proficiency_labels(self):
        assert proficiency_label(1) == "Beginner"
        assert proficiency_label(5) == "Expert"

    def test_single_prompt(self, candidate_profile):
        job = MatchJob(id=7, title="Data Engineer", description="Build pipelines", requirements=["Python"])
        prompt = build_single_match_prompt(job, candidate_profile)
        assert "**Job ID:** 7" in prompt
        assert "Python (Expert, Languages)" in prompt
        assert "Backend Engineer at Acme: APIs and data pipelines" in prompt

    def test_bulk_prompt_lists_every_job(self, candidate_profile):
        jobs = [MatchJob(id=i, title=f"Role {i}", description="", requirements=[]) for i in (3, 9)]
        prompt = build_bulk_match_prompt(jobs, candidate_profile)
        assert "### Job ID: 3" in prompt
        assert "### Job ID: 9" in prompt
        assert "None specified" in prompt
        assert "No description provided" in prompt
