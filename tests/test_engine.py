"""
Tests for the match engine: tracked sessions, per-job logs, stop requests and failure paths.
"""

import asyncio
import logging

import pytest

from jobmatch.services.match.engine import MatchEngine, MatchOptions
from jobmatch.services.match.errors import JobNotFoundError, NoProfileError
from jobmatch.services.match.resilience.circuit_breaker import CircuitBreaker

from conftest import InMemoryMatchStore, ScriptedModel, job_ids_in, score_handler, scores_by_job

FAILED = RuntimeError("no answer for this job")


def _engine(config, store, model) -> MatchEngine:
    return MatchEngine(config=config, store=store, model_call=model)


def _statuses(store, session_id):
    return sorted((entry.job_id, entry.status) for entry in store.logs_for(session_id))


class TestMatchWithTracking:
    """Sessions, counters and one log entry per job."""

    def test_mixed_outcomes_complete(self, fast_config, store):
        model = scores_by_job({1: 80, 2: 70, 3: FAILED, 4: FAILED, 5: FAILED})
        engine = _engine(fast_config, store, model)

        result = asyncio.run(engine.match_with_tracking([1, 2, 3, 4, 5]))

        assert (result.total, result.succeeded, result.failed, result.cancelled) == (5, 2, 3, 0)
        session = store.sessions[result.session_id]
        assert session.status == "completed"
        assert (session.jobs_completed, session.jobs_succeeded, session.jobs_failed) == (5, 2, 3)
        assert session.error_count == 3
        assert _statuses(store, result.session_id) == [
            (1, "success"), (2, "success"), (3, "failed"), (4, "failed"), (5, "failed"),
        ]
        assert sorted(store.results) == [1, 2]

    def test_log_entries_carry_details(self, fast_config, store):
        model = scores_by_job({1: 80, 2: FAILED})
        engine = _engine(fast_config, store, model)
        result = asyncio.run(engine.match_with_tracking([1, 2]))

        logs = {entry.job_id: entry for entry in store.logs_for(result.session_id)}
        assert logs[1].score == 80
        assert logs[1].model_used == "test-model"
        assert logs[1].error_type is None
        assert logs[2].error_type == "validation"
        assert logs[2].error_message == "AI did not return match result for this job"
        assert logs[2].completed_at is not None

    def test_all_failed(self, fast_config, store):
        model = scores_by_job({i: FAILED for i in range(1, 6)})
        engine = _engine(fast_config, store, model)
        result = asyncio.run(engine.match_with_tracking([1, 2, 3, 4, 5]))

        assert result.failed == 5
        assert store.sessions[result.session_id].status == "failed"

    def test_counters_are_monotonic(self, fast_config, store):
        model = scores_by_job({1: 80, 2: 70, 3: FAILED, 4: 60, 5: 50})
        engine = _engine(fast_config, store, model)
        asyncio.run(engine.match_with_tracking([1, 2, 3, 4, 5]))

        completed = [update["completed"] for update in store.session_updates]
        assert completed == [1, 2, 3, 4, 5]

    def test_no_profile_fails_every_job_without_calls(self, fast_config, make_jobs):
        store = InMemoryMatchStore(jobs=make_jobs(3), profile=None)
        model = scores_by_job({1: 80, 2: 80, 3: 80})
        engine = _engine(fast_config, store, model)

        result = asyncio.run(engine.match_with_tracking([1, 2, 3]))

        assert model.call_count == 0
        assert result.failed == 3
        assert store.sessions[result.session_id].status == "failed"
        logs = store.logs_for(result.session_id)
        assert len(logs) == 3
        assert all(entry.error_type == "validation" for entry in logs)
        assert all(entry.attempt_count == 0 for entry in logs)

    def test_missing_job_is_logged(self, fast_config, store):
        model = scores_by_job({1: 90})
        engine = _engine(fast_config, store, model)
        result = asyncio.run(engine.match_with_tracking([1, 99]))

        assert (result.total, result.succeeded, result.failed) == (2, 1, 1)
        logs = {entry.job_id: entry for entry in store.logs_for(result.session_id)}
        assert logs[99].status == "failed"
        assert "99" in logs[99].error_message

    def test_duplicate_ids_counted_once(self, fast_config, store):
        model = scores_by_job({1: 90, 2: 80})
        engine = _engine(fast_config, store, model)
        result = asyncio.run(engine.match_with_tracking([1, 2, 1, 2]))
        assert result.total == 2
        assert len(store.logs_for(result.session_id)) == 2

    def test_empty_run_completes(self, fast_config, store):
        model = scores_by_job({})
        engine = _engine(fast_config, store, model)
        result = asyncio.run(engine.match_with_tracking([]))

        assert result.total == 0
        assert store.sessions[result.session_id].status == "completed"
        assert model.call_count == 0

    def test_trigger_source_and_company(self, fast_config, store):
        model = scores_by_job({1: 90})
        engine = _engine(fast_config, store, model)
        options = MatchOptions(trigger_source="company_refresh", company_id=12)
        result = asyncio.run(engine.match_with_tracking([1], options))

        session = store.sessions[result.session_id]
        assert session.trigger_source == "company_refresh"
        assert session.company_id == 12

    def test_progress_listener(self, fast_config, store):
        events = []
        model = scores_by_job({i: 50 for i in range(1, 6)})
        engine = _engine(fast_config, store, model)
        asyncio.run(engine.match_with_tracking([1, 2, 3, 4, 5], MatchOptions(on_progress=events.append)))

        assert events[0].phase == "queued"
        assert events[-1].phase == "completed"
        assert (events[-1].completed, events[-1].succeeded, events[-1].failed) == (5, 5, 0)


class TestStopSession:
    def test_stop_cancels_unstarted_jobs(self, fast_config, store):
        session_ref = []
        answer = score_handler({i: 70 for i in range(1, 6)})

        def handler(system, prompt, n):
            # First batch is already in flight; it finishes, later batches never start
            engine.stop_session(session_ref[0])
            return answer(system, prompt, n)

        engine = _engine(fast_config, store, ScriptedModel(handler))

        async def scenario():
            session_id = await engine.open_session([1, 2, 3, 4, 5])
            session_ref.append(session_id)
            return await engine.match_with_tracking([1, 2, 3, 4, 5], MatchOptions(session_id=session_id))

        result = asyncio.run(scenario())

        assert (result.succeeded, result.failed, result.cancelled) == (2, 0, 3)
        assert store.sessions[result.session_id].status == "completed"
        assert _statuses(store, result.session_id) == [
            (1, "success"), (2, "success"), (3, "cancelled"), (4, "cancelled"), (5, "cancelled"),
        ]
        assert not engine.stop_session(result.session_id)

    def test_stop_unknown_session(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({}))
        assert engine.stop_session("nope") is False


class TestFailurePaths:
    def test_persistence_retried_once(self, fast_config, store):
        store.fail_result_writes = 1
        model = scores_by_job({1: 80, 2: 70})
        engine = _engine(fast_config, store, model)
        result = asyncio.run(engine.match_with_tracking([1, 2]))

        assert result.succeeded == 2
        assert sorted(store.results) == [1, 2]

    def test_unexpected_error_fails_session_and_reraises(self, fast_config, store):
        store.fail_result_writes = 100
        model = scores_by_job({1: 80, 2: 70, 3: 60})
        engine = _engine(fast_config, store, model)

        with pytest.raises(RuntimeError, match="database unavailable"):
            asyncio.run(engine.match_with_tracking([1, 2, 3]))

        (session,) = store.sessions.values()
        assert session.status == "failed"
        assert (session.jobs_completed, session.jobs_succeeded, session.jobs_failed) == (3, 0, 3)
        assert engine._tokens == {}

    def test_log_write_retried_once(self, fast_config, store):
        store.fail_log_writes = 1
        engine = _engine(fast_config, store, scores_by_job({1: 80, 2: 70}))
        result = asyncio.run(engine.match_with_tracking([1, 2]))

        assert _statuses(store, result.session_id) == [(1, "success"), (2, "success")]
        assert store.sessions[result.session_id].status == "completed"

    def test_lost_log_write_is_reported(self, fast_config, store, caplog):
        """A log row that fails twice is reported with its session and job; the run still completes."""
        caplog.set_level(logging.ERROR, logger="match.engine")
        store.fail_log_writes = 2
        engine = _engine(fast_config, store, scores_by_job({1: 80, 2: 70}))
        result = asyncio.run(engine.match_with_tracking([1, 2]))

        assert len(store.logs_for(result.session_id)) == 1
        session = store.sessions[result.session_id]
        assert (session.status, session.jobs_completed, session.jobs_succeeded) == ("completed", 2, 2)
        errors = [record.getMessage() for record in caplog.records if record.levelno == logging.ERROR]
        assert any("match log" in message and result.session_id in message for message in errors)


class TestUntrackedMatching:
    def test_match_single(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({3: 77}))
        result = asyncio.run(engine.match_single(3))
        assert result.score == 77
        assert store.results[3].score == 77
        assert store.sessions == {}

    def test_match_single_missing_job(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({}))
        with pytest.raises(JobNotFoundError):
            asyncio.run(engine.match_single(42))

    def test_match_single_without_profile(self, fast_config, make_jobs):
        store = InMemoryMatchStore(jobs=make_jobs(1))
        engine = _engine(fast_config, store, scores_by_job({1: 50}))
        with pytest.raises(NoProfileError):
            asyncio.run(engine.match_single(1))

    def test_match_bulk(self, fast_config, store):
        model = scores_by_job({1: 10, 2: 20, 3: FAILED})
        engine = _engine(fast_config, store, model)
        outcomes = asyncio.run(engine.match_bulk([1, 2, 3]))

        assert outcomes[1].score == 10
        assert outcomes[2].score == 20
        assert isinstance(outcomes[3], Exception)
        assert store.sessions == {}


class TestMatchUnmatched:
    def test_nothing_unmatched(self, fast_config, store):
        for job_id in store.jobs:
            store.results[job_id] = object()
        model = scores_by_job({})
        engine = _engine(fast_config, store, model)

        result = asyncio.run(engine.match_unmatched_jobs())

        assert (result.session_id, result.total) == ("", 0)
        assert store.sessions == {}
        assert model.call_count == 0

    def test_only_unmatched_jobs_run(self, fast_config, store):
        store.results[1] = object()
        store.results[2] = object()
        model = scores_by_job({3: 30, 4: 40, 5: 50})
        engine = _engine(fast_config, store, model)

        result = asyncio.run(engine.match_unmatched_jobs())

        assert result.total == 3
        assert sorted(i for call in model.calls for i in job_ids_in(call["prompt"])) == [3, 4, 5]


class TestCompanyAndScrapeHooks:
    def test_match_company_jobs(self, fast_config, store):
        model = scores_by_job({1: 10, 2: 20, 3: 30})
        engine = _engine(fast_config, store, model)
        result = asyncio.run(engine.match_company_jobs(10))

        assert (result.total, result.succeeded) == (3, 3)
        session = store.sessions[result.session_id]
        assert (session.trigger_source, session.company_id) == ("company_refresh", 10)

    def test_company_without_jobs(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({}))
        result = asyncio.run(engine.match_company_jobs(999))
        assert (result.session_id, result.total) == ("", 0)
        assert store.sessions == {}

    def test_scraped_jobs_matched_when_enabled(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({4: 40, 5: 50}))
        result = asyncio.run(engine.match_scraped_jobs([4, 5], company_id=20))

        session = store.sessions[result.session_id]
        assert session.trigger_source == "auto_scrape"
        assert result.succeeded == 2

    def test_scraped_jobs_skipped_when_disabled(self, fast_config, store):
        config = fast_config.model_copy(update={"auto_match_after_scrape": False})
        model = scores_by_job({4: 40})
        engine = _engine(config, store, model)

        assert asyncio.run(engine.match_scraped_jobs([4])) is None
        assert asyncio.run(_engine(fast_config, store, model).match_scraped_jobs([])) is None
        assert model.call_count == 0
        assert store.sessions == {}


class TestQueueAndConfig:
    def test_serialized_runs_share_one_slot(self, fast_config, store):
        config = fast_config.model_copy(update={"serialize_operations": True})
        in_flight = [0]
        peak = [0]

        async def model(system, prompt, provider_options=None):
            in_flight[0] += 1
            peak[0] = max(peak[0], in_flight[0])
            await asyncio.sleep(0.01)
            in_flight[0] -= 1
            return score_handler({i: 50 for i in job_ids_in(prompt)})(system, prompt)

        engine = _engine(config, store, model)

        async def scenario():
            return await asyncio.gather(
                engine.match_with_tracking([1, 2]),
                engine.match_with_tracking([3, 4]),
            )

        first, second = asyncio.run(scenario())
        assert first.succeeded == 2 and second.succeeded == 2
        assert peak[0] == 1

    def test_queue_status(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({}))
        status = engine.get_queue_status()
        assert (status.is_enabled, status.pending, status.size, status.position) == (False, 0, 0, 0)

    def test_apply_config(self, fast_config, store):
        breaker = CircuitBreaker(failure_threshold=3)
        engine = MatchEngine(config=fast_config, store=store, model_call=scores_by_job({}), circuit_breaker=breaker)
        for _ in range(3):
            breaker.record_failure(RuntimeError("down"))
        assert breaker.state == CircuitBreaker.OPEN

        new_config = fast_config.model_copy(update={"serialize_operations": True, "circuit_breaker_threshold": 20})
        engine.apply_config(new_config)

        assert engine.config is new_config
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_threshold == 20
        assert engine.queue.is_enabled

    def test_session_lookup(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({1: 50}))
        result = asyncio.run(engine.match_with_tracking([1]))
        record = asyncio.run(engine.get_session(result.session_id))
        assert record.status == "completed"
        assert asyncio.run(engine.get_session("missing")) is None


class TestSessionHistory:
    def test_list_sessions_newest_first(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({1: 50, 2: 60, 3: 70}))
        ids = [asyncio.run(engine.match_with_tracking([job_id])).session_id for job_id in (1, 2, 3)]

        page = asyncio.run(engine.list_sessions(limit=2, offset=0))
        assert [record.id for record in page.sessions] == [ids[2], ids[1]]
        assert (page.total, page.has_more) == (3, True)

        rest = asyncio.run(engine.list_sessions(limit=2, offset=2))
        assert [record.id for record in rest.sessions] == [ids[0]]
        assert rest.has_more is False

    def test_session_logs(self, fast_config, store):
        engine = _engine(fast_config, store, scores_by_job({1: 50, 2: FAILED}))
        result = asyncio.run(engine.match_with_tracking([1, 2]))

        logs = asyncio.run(engine.get_session_logs(result.session_id))
        assert sorted((entry.job_id, entry.status) for entry in logs) == [(1, "success"), (2, "failed")]
        assert asyncio.run(engine.get_session_logs("missing")) is None
