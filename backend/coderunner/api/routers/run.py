import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from coderunner.api.deps import get_engine, get_history
from coderunner.execution.engine import ExecutionEngine
from coderunner.execution.errors import ExecutionError, InvalidRequest
from coderunner.schemas.run import RecentRun, RunRequest, RunResult
from coderunner.services.history import RecentRuns

router = APIRouter(tags=["runs"])
logger = logging.getLogger(__name__)


@router.post("/run", response_model=RunResult)
async def run_code(
    payload: RunRequest,
    engine: ExecutionEngine = Depends(get_engine),
    history: RecentRuns = Depends(get_history),
):
    try:
        result = await engine.execute(payload)
    except ExecutionError as e:
        status = 400 if isinstance(e, InvalidRequest) else 500
        logger.info(f"Run rejected ({status}): {e}", extra={"language": payload.language})
        failed = RunResult(stdout="", stderr=str(e), code=-1)
        history.record(payload, failed)
        return JSONResponse(status_code=status, content=failed.model_dump())
    history.record(payload, result)
    return result


@router.get("/recent-runs", response_model=list[RecentRun])
async def recent_runs(history: RecentRuns = Depends(get_history)):
    return history.list()
