# jobmatch/api/routers/health.py
from fastapi import APIRouter, Depends

from jobmatch.api.deps import get_match_engine
from jobmatch.services.match.engine import MatchEngine

router = APIRouter(tags=["health"])


@router.get("/health")
def health(engine: MatchEngine = Depends(get_match_engine)):
    stats = engine.circuit_breaker.get_stats()
    queue = engine.get_queue_status()
    return {
        "status": "ok" if stats.state == "CLOSED" else "degraded",
        "circuit_breaker": {
            "state": stats.state,
            "failure_count": stats.failure_count,
            "success_count": stats.success_count,
        },
        "queue": {"is_enabled": queue.is_enabled, "pending": queue.pending, "size": queue.size},
    }
