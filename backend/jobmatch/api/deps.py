# jobmatch/api/deps.py
from functools import lru_cache

from jobmatch.core.config import settings
from jobmatch.db.session import get_session_factory
from jobmatch.services.common.llm_client import get_default_llm_client
from jobmatch.services.match.config import load_matcher_config
from jobmatch.services.match.engine import MatchEngine
from jobmatch.services.match.store import SqlMatchStore


@lru_cache(maxsize=1)
def get_match_engine() -> MatchEngine:
    """One engine per process, so every request shares its breaker and queue."""
    return MatchEngine(
        config=load_matcher_config(settings),
        store=SqlMatchStore(get_session_factory()),
        model_call=get_default_llm_client(),
    )
