# Purpose: Pydantic models for match results (model output contract) and the match API DTOs.

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


TriggerSource = Literal["manual", "auto_scrape", "company_refresh"]


class SkillItem(BaseModel):
    name: str
    proficiency: int = Field(ge=1, le=5, default=3)
    category: Optional[str] = None


class ExperienceItem(BaseModel):
    title: str
    company: str
    description: Optional[str] = None


class CandidateProfile(BaseModel):
    """The scoring basis sent to the model with every job."""
    summary: Optional[str] = None
    skills: List[SkillItem] = Field(default_factory=list)
    experience: List[ExperienceItem] = Field(default_factory=list)


class MatchResult(BaseModel):
    """Validated match of one job against the candidate profile."""
    model_config = ConfigDict(populate_by_name=True)

    score: int = Field(ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)
    matched_skills: List[str] = Field(default_factory=list, alias="matchedSkills")
    missing_skills: List[str] = Field(default_factory=list, alias="missingSkills")
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def round_fractional_score(cls, value: Any) -> Any:
        # Models occasionally answer 72.5; the range check still applies afterwards
        if isinstance(value, float):
            return round(value)
        return value


class BulkMatchItem(MatchResult):
    """One entry of a batch response, keyed by the job id the model was given."""
    job_id: int = Field(alias="jobId")


class BulkMatchEnvelope(BaseModel):
    """
    Top-level batch response. Entries stay raw here and are validated one by one,
    so a single malformed entry cannot sink the whole batch.
    """
    results: List[Any]

    @model_validator(mode="before")
    @classmethod
    def accept_bare_array(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"results": data}
        return data


# ----- API DTOs -----

class MatchRunRequest(BaseModel):
    """Request to run tracked matching over a set of jobs."""
    job_ids: List[int] = Field(min_length=1, max_length=1000)
    trigger_source: TriggerSource = "manual"
    company_id: Optional[int] = None


class MatchRefreshRequest(BaseModel):
    job_ids: List[int] = Field(min_length=1, max_length=1000)


class MatchResultOut(BaseModel):
    job_id: int
    score: int
    reasons: List[str]
    matched_skills: List[str]
    missing_skills: List[str]
    recommendations: List[str]


class MatchSessionResultOut(BaseModel):
    session_id: str
    total: int
    succeeded: int
    failed: int
    cancelled: int = 0


class MatchSessionStartedOut(BaseModel):
    session_id: str
    total: int
    queue_position: int


class MatchSessionOut(BaseModel):
    id: str
    trigger_source: str
    company_id: Optional[int] = None
    status: str
    jobs_total: int
    jobs_completed: int
    jobs_succeeded: int
    jobs_failed: int
    error_count: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QueueStatusOut(BaseModel):
    is_enabled: bool
    pending: int
    size: int
    position: int


class MatchRefreshAcceptedOut(BaseModel):
    accepted: int
    queue_position: int


class MatchStopOut(BaseModel):
    session_id: str
    stopped: bool


class MatchScrapedRequest(BaseModel):
    """Jobs a scrape just inserted; matched only when auto-match after scrape is on."""
    job_ids: List[int] = Field(default_factory=list, max_length=1000)
    company_id: Optional[int] = None


class MatchScrapedAcceptedOut(BaseModel):
    accepted: int
    scheduled: bool


class MatchLogOut(BaseModel):
    job_id: int
    status: str
    score: Optional[float] = None
    attempt_count: int
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    model_used: Optional[str] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MatchSessionDetailOut(BaseModel):
    """A session together with every log entry written for it."""
    session: MatchSessionOut
    logs: List[MatchLogOut]


class MatchSessionListOut(BaseModel):
    sessions: List[MatchSessionOut]
    total: int
    limit: int
    offset: int
    has_more: bool


class MatcherConfigUpdate(BaseModel):
    """Partial matcher settings change; omitted fields keep their current value."""
    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    model: Optional[str] = Field(default=None, min_length=1)
    reasoning_effort: Optional[Literal["low", "medium", "high"]] = None
    bulk_enabled: Optional[bool] = None
    batch_size: Optional[int] = None
    max_retries: Optional[int] = None
    concurrency_limit: Optional[int] = None
    serialize_operations: Optional[bool] = None
    inter_request_delay_ms: Optional[int] = None
    timeout_ms: Optional[int] = None
    backoff_base_delay_ms: Optional[int] = None
    backoff_max_delay_ms: Optional[int] = None
    backoff_jitter_ms: Optional[int] = None
    circuit_breaker_threshold: Optional[int] = None
    circuit_breaker_reset_timeout_ms: Optional[int] = None
    half_open_max_calls: Optional[int] = None
    auto_match_after_scrape: Optional[bool] = None
