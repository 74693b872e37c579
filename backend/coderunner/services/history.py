from collections import deque
from datetime import datetime, timezone
from threading import Lock
from coderunner.schemas.run import RecentRun, RunRequest, RunResult


class RecentRuns:
    """Most recent runs, newest first, bounded to ``limit`` entries."""

    def __init__(self, limit: int = 10):
        self._runs: deque[RecentRun] = deque(maxlen=limit)
        self._lock = Lock()

    def record(self, request: RunRequest, result: RunResult) -> RecentRun:
        entry = RecentRun(
            language=request.language,
            code=request.code,
            input=request.input,
            result=result,
            timestamp=datetime.now(timezone.utc),
        )
        with self._lock:
            self._runs.appendleft(entry)
        return entry

    def list(self) -> list[RecentRun]:
        with self._lock:
            return list(self._runs)

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()
