# backend/coderunner/api/deps.py
from functools import lru_cache
from coderunner.core.config import Settings, get_settings
from coderunner.execution.engine import ExecutionEngine
from coderunner.services.history import RecentRuns


def get_app_settings() -> Settings:
    return get_settings()


@lru_cache
def get_engine() -> ExecutionEngine:
    return ExecutionEngine(get_settings())


@lru_cache
def get_history() -> RecentRuns:
    return RecentRuns(limit=get_settings().RECENT_RUNS_LIMIT)
