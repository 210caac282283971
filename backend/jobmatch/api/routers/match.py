# jobmatch/api/routers/match.py
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import ValidationError

from jobmatch.api.deps import get_match_engine
from jobmatch.schemas.match import (
    MatchRefreshAcceptedOut,
    MatchRefreshRequest,
    MatchResultOut,
    MatchLogOut,
    MatchRunRequest,
    MatchScrapedAcceptedOut,
    MatchScrapedRequest,
    MatchSessionDetailOut,
    MatchSessionListOut,
    MatchSessionOut,
    MatchSessionResultOut,
    MatchSessionStartedOut,
    MatchStopOut,
    MatcherConfigUpdate,
    QueueStatusOut,
)
from jobmatch.services.match.config import MatcherConfig, validate_matcher_config
from jobmatch.services.match.engine import MatchEngine, MatchOptions
from jobmatch.services.match.errors import (
    CircuitOpenError,
    JobNotFoundError,
    MatcherError,
    NoProfileError,
)

logger = logging.getLogger("match.api")

router = APIRouter(prefix="/match", tags=["match"])


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, NoProfileError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, CircuitOpenError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, MatcherError):
        return HTTPException(status_code=502, detail=f"{e.error_type.value}: {e}")
    return HTTPException(status_code=500, detail=str(e))


@router.post("/jobs/{job_id}", response_model=MatchResultOut)
async def match_job(job_id: int, engine: MatchEngine = Depends(get_match_engine)):
    try:
        result = await engine.match_single(job_id)
    except Exception as e:
        raise _http_error(e)
    return MatchResultOut(job_id=job_id, **result.model_dump())


@router.post("/run", response_model=MatchSessionResultOut)
async def run_match(payload: MatchRunRequest, engine: MatchEngine = Depends(get_match_engine)):
    try:
        res = await engine.match_with_tracking(
            payload.job_ids,
            MatchOptions(trigger_source=payload.trigger_source, company_id=payload.company_id),
        )
    except Exception as e:
        raise _http_error(e)
    return MatchSessionResultOut(**res.__dict__)


async def _run_session_in_background(engine: MatchEngine, job_ids, options: MatchOptions) -> None:
    try:
        await engine.match_with_tracking(job_ids, options)
    except Exception as e:
        # The session is already finalized as failed; nothing to return to a caller
        logger.error("Background match session %s failed: %s", options.session_id, e)


@router.post("/sessions", response_model=MatchSessionStartedOut, status_code=202)
async def start_session(
    payload: MatchRunRequest,
    background_tasks: BackgroundTasks,
    engine: MatchEngine = Depends(get_match_engine),
):
    session_id = await engine.open_session(payload.job_ids, payload.trigger_source, payload.company_id)
    queue_position = engine.get_queue_status().position
    background_tasks.add_task(
        _run_session_in_background,
        engine,
        payload.job_ids,
        MatchOptions(trigger_source=payload.trigger_source, company_id=payload.company_id, session_id=session_id),
    )
    return MatchSessionStartedOut(session_id=session_id, total=len(set(payload.job_ids)), queue_position=queue_position)


async def _refresh_in_background(engine: MatchEngine, job_ids) -> None:
    try:
        outcomes = await engine.match_bulk(job_ids)
    except Exception as e:
        logger.error("Background refresh failed: %s", e)
        return
    failed = sum(1 for outcome in outcomes.values() if isinstance(outcome, Exception))
    logger.info("Background refresh finished: %d ok, %d failed", len(outcomes) - failed, failed)


@router.post("/refresh", response_model=MatchRefreshAcceptedOut, status_code=202)
async def refresh_matches(
    payload: MatchRefreshRequest,
    background_tasks: BackgroundTasks,
    engine: MatchEngine = Depends(get_match_engine),
):
    queue_position = engine.get_queue_status().position
    background_tasks.add_task(_refresh_in_background, engine, payload.job_ids)
    return MatchRefreshAcceptedOut(accepted=len(set(payload.job_ids)), queue_position=queue_position)


@router.post("/unmatched", response_model=MatchSessionResultOut)
async def match_unmatched(engine: MatchEngine = Depends(get_match_engine)):
    try:
        res = await engine.match_unmatched_jobs()
    except Exception as e:
        raise _http_error(e)
    return MatchSessionResultOut(**res.__dict__)


@router.post("/companies/{company_id}", response_model=MatchSessionResultOut)
async def match_company(company_id: int, engine: MatchEngine = Depends(get_match_engine)):
    try:
        res = await engine.match_company_jobs(company_id)
    except Exception as e:
        raise _http_error(e)
    return MatchSessionResultOut(**res.__dict__)


async def _match_scraped_in_background(engine: MatchEngine, job_ids, company_id) -> None:
    try:
        await engine.match_scraped_jobs(job_ids, company_id)
    except Exception as e:
        logger.error("Auto-match after scrape failed: %s", e)


@router.post("/scraped", response_model=MatchScrapedAcceptedOut, status_code=202)
async def match_scraped(
    payload: MatchScrapedRequest,
    background_tasks: BackgroundTasks,
    engine: MatchEngine = Depends(get_match_engine),
):
    scheduled = engine.config.auto_match_after_scrape and bool(payload.job_ids)
    if scheduled:
        background_tasks.add_task(_match_scraped_in_background, engine, payload.job_ids, payload.company_id)
    return MatchScrapedAcceptedOut(accepted=len(set(payload.job_ids)), scheduled=scheduled)


@router.get("/sessions", response_model=MatchSessionListOut)
async def list_sessions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    engine: MatchEngine = Depends(get_match_engine),
):
    page = await engine.list_sessions(limit=limit, offset=offset)
    return MatchSessionListOut(
        sessions=[MatchSessionOut.model_validate(record) for record in page.sessions],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
    )


@router.get("/sessions/{session_id}", response_model=MatchSessionOut)
async def get_session(session_id: str, engine: MatchEngine = Depends(get_match_engine)):
    record = await engine.get_session(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Match session not found")
    return MatchSessionOut.model_validate(record)


@router.get("/sessions/{session_id}/logs", response_model=MatchSessionDetailOut)
async def get_session_logs(session_id: str, engine: MatchEngine = Depends(get_match_engine)):
    record = await engine.get_session(session_id)
    logs = await engine.get_session_logs(session_id)
    if record is None or logs is None:
        raise HTTPException(status_code=404, detail="Match session not found")
    return MatchSessionDetailOut(
        session=MatchSessionOut.model_validate(record),
        logs=[MatchLogOut.model_validate(entry) for entry in logs],
    )


@router.post("/sessions/{session_id}/stop", response_model=MatchStopOut)
async def stop_session(session_id: str, engine: MatchEngine = Depends(get_match_engine)):
    if not engine.stop_session(session_id):
        raise HTTPException(status_code=404, detail="Match session is not running")
    return MatchStopOut(session_id=session_id, stopped=True)


@router.get("/queue", response_model=QueueStatusOut)
async def queue_status(engine: MatchEngine = Depends(get_match_engine)):
    return QueueStatusOut(**engine.get_queue_status().__dict__)


@router.get("/config", response_model=MatcherConfig)
async def get_config(engine: MatchEngine = Depends(get_match_engine)):
    return engine.config


@router.patch("/config", response_model=MatcherConfig)
async def update_config(payload: MatcherConfigUpdate, engine: MatchEngine = Depends(get_match_engine)):
    """
    Apply a partial settings change. The breaker is reset and waiting queued runs are
    dropped; the change lives for this process only.
    """
    updates = payload.model_dump(exclude_none=True)
    errors = validate_matcher_config(updates)
    if errors:
        raise HTTPException(status_code=422, detail=errors)
    try:
        config = MatcherConfig(**{**engine.config.model_dump(), **updates})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=[err["msg"] for err in e.errors()])
    engine.apply_config(config)
    logger.info("Matcher settings updated: %s", ", ".join(sorted(updates)) or "no changes")
    return engine.config
