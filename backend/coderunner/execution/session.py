"""
Per-client execution session

A session owns at most one run at a time. ``submit`` validates and starts a
run in a background task and returns immediately, so the caller can keep
feeding ``send_input`` and ``kill`` while the program is alive. Every run ends
with exactly one terminal event, emitted after its artifacts are purged.
"""

import json
import uuid
import asyncio
import enum
import logging
from typing import Awaitable, Callable
from pydantic import ValidationError
from coderunner.schemas.run import (
    MANUAL_KILL,
    ErrorEvent,
    ExitEvent,
    InputMessage,
    OutputEvent,
    RunEvent,
    RunMessage,
    RunRequest,
)
from .engine import ExecutionEngine
from .errors import BuildFailure, BusyError, InvalidTransition, SpawnFailure, TimeoutFailure, UnsupportedLanguage
from .pipelines import LanguagePipeline
from .supervisor import OutputChunk, ProcessOutcome, ProcessStatus, SupervisedProcess
from .workspace import ArtifactSet

logger = logging.getLogger(__name__)

Emit = Callable[[RunEvent], Awaitable[None]]


class SessionState(str, enum.Enum):
    idle = "idle"
    building = "building"
    running = "running"
    completed = "completed"
    timed_out = "timed_out"
    killed = "killed"
    build_failed = "build_failed"
    errored = "errored"


S = SessionState
TERMINAL_STATES = frozenset({S.completed, S.timed_out, S.killed, S.build_failed, S.errored})
TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    S.idle: frozenset({S.building, S.running}),
    S.building: frozenset({S.running, S.build_failed, S.timed_out, S.killed, S.errored}),
    S.running: frozenset({S.completed, S.timed_out, S.killed, S.errored}),
    **{t: frozenset({S.idle}) for t in TERMINAL_STATES},
}


class ExecutionSession:
    def __init__(self, engine: ExecutionEngine, emit: Emit, session_id: str | None = None):
        self.engine = engine
        self.id = session_id or uuid.uuid4().hex[:8]
        self.state = SessionState.idle
        self._send = emit
        self._process: SupervisedProcess | None = None
        self._artifacts = ArtifactSet()
        self._task: asyncio.Task | None = None
        self._kill_requested = False
        # input that arrived before the run step was created
        self._pending_input: list[str] = []
        self._closed = False
        # client stopped accepting events; the current run is torn down
        self._detached = False

    @property
    def busy(self) -> bool:
        return self.state in (S.building, S.running)

    @property
    def artifacts(self) -> list[str]:
        return list(self._artifacts.paths)

    async def handle_message(self, raw) -> None:
        """Dispatch one transport message (JSON text or an already-decoded dict)."""
        msg = raw
        if isinstance(raw, (str, bytes, bytearray)):
            try:
                msg = json.loads(raw)
            except ValueError:
                msg = None
        if not isinstance(msg, dict):
            await self._emit(ErrorEvent(error="Invalid JSON"))
            return

        kind = msg.get("type")
        if kind == "run":
            try:
                request = RunMessage.model_validate(msg)
            except ValidationError as e:
                await self._emit(ErrorEvent(error=f"Invalid request: {_first_error(e)}"))
                return
            await self.submit(request)
        elif kind == "input":
            try:
                data = InputMessage.model_validate(msg).data
            except ValidationError as e:
                await self._emit(ErrorEvent(error=f"Invalid request: {_first_error(e)}"))
                return
            await self.send_input(data)
        elif kind == "kill":
            await self.kill()
        else:
            logger.debug(f"Ignoring message type {kind!r}", extra={"session_id": self.id})

    async def submit(self, request: RunRequest) -> bool:
        if self._closed:
            return False
        if self.state in TERMINAL_STATES and self._task is not None:
            # previous run is delivering its terminal event
            await asyncio.gather(self._task, return_exceptions=True)
        if self.busy:
            await self._emit(ErrorEvent(error=str(BusyError())))
            return False

        self._reset_leftovers()
        try:
            pipeline = self.engine.resolve(request.language)
        except UnsupportedLanguage as e:
            await self._emit(ErrorEvent(error=str(e)))
            return False

        self._kill_requested = False
        self._detached = False
        self._pending_input.clear()
        self._transition(S.building if pipeline.compiled else S.running)
        logger.info(
            "Run accepted",
            extra={"session_id": self.id, "language": pipeline.language, "phase": self.state.value},
        )
        self._task = asyncio.create_task(self._drive(pipeline, request))
        return True

    async def send_input(self, data: str) -> bool:
        if self.state is not S.running:
            return False
        if self._process is None:
            self._pending_input.append(data + "\n")
            return True
        return await self._process.write(data + "\n")

    async def kill(self) -> bool:
        if not self.busy or self._kill_requested:
            return False
        self._kill_requested = True
        if self._process is not None:
            self._process.kill()
        logger.info("Kill requested", extra={"session_id": self.id, "phase": self.state.value})
        return True

    async def wait(self) -> None:
        """Wait for the current run, if any, to deliver its terminal event."""
        if self._task is not None:
            await self._task

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._kill_requested = True
        if self._process is not None:
            self._process.kill()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        self._reset_leftovers()

    async def _drive(self, pipeline: LanguagePipeline, request: RunRequest) -> None:
        try:
            final, event = await self._execute(pipeline, request)
        except BuildFailure as e:
            final, event = S.build_failed, ErrorEvent(error=e.detail)
        except TimeoutFailure as e:
            final, event = S.timed_out, ErrorEvent(error=str(e))
        except SpawnFailure as e:
            final, event = S.errored, ErrorEvent(error=str(e))
        except OSError as e:
            final, event = S.errored, ErrorEvent(error=f"Could not prepare workspace: {e}")
        except asyncio.CancelledError:
            if self._process is not None:
                self._process.kill()
            self.engine.release(self._artifacts)
            self.state = S.idle
            raise
        except Exception as e:
            logger.exception("Run failed unexpectedly", extra={"session_id": self.id})
            final, event = S.errored, ErrorEvent(error=str(e))
        finally:
            self._process = None

        self.engine.release(self._artifacts)
        self._transition(final)
        logger.info(
            f"Run finished: {final.value}",
            extra={"session_id": self.id, "language": pipeline.language},
        )
        try:
            await self._emit(event)
        finally:
            self._transition(S.idle)

    async def _execute(self, pipeline: LanguagePipeline, request: RunRequest) -> tuple[SessionState, RunEvent]:
        paths = self.engine.prepare(pipeline, request, self._artifacts)

        if pipeline.compiled:
            outcome = await self._supervise(self.engine.build_process(pipeline, paths), forward=False)
            if outcome.status is ProcessStatus.killed or self._kill_requested:
                return S.killed, ExitEvent(code=MANUAL_KILL)
            self.engine.raise_for_outcome(outcome, phase="build")
            if not outcome.ok:
                detail = outcome.stderr or outcome.stdout or f"Build failed with exit code {outcome.exit_code}"
                raise BuildFailure(detail, outcome.exit_code)
            self._transition(S.running)

        process = self.engine.run_process(pipeline, paths, request.input, interactive=True)
        for line in self._pending_input:
            await process.write(line)
        self._pending_input.clear()
        outcome = await self._supervise(process, forward=True)
        if outcome.status is ProcessStatus.killed:
            return S.killed, ExitEvent(code=MANUAL_KILL)
        self.engine.raise_for_outcome(outcome, phase="run")
        return S.completed, ExitEvent(code=outcome.exit_code)

    async def _supervise(self, process: SupervisedProcess, forward: bool) -> ProcessOutcome:
        self._process = process
        if self._kill_requested:
            process.kill()
        try:
            async for event in process.stream():
                if forward and isinstance(event, OutputChunk):
                    await self._emit(OutputEvent(type=event.stream, data=event.data))
        finally:
            self._process = None
        return process.outcome

    def _transition(self, target: SessionState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        self.state = target

    def _reset_leftovers(self) -> None:
        if self._process is not None:
            self._process.kill()
            self._process = None
        self.engine.release(self._artifacts)

    async def _emit(self, event: RunEvent) -> None:
        if self._closed or self._detached:
            return
        try:
            await self._send(event)
        except Exception as e:
            logger.info(f"Client unreachable, tearing down run: {e}", extra={"session_id": self.id})
            self._detached = True
            self._kill_requested = True
            if self._process is not None:
                self._process.kill()


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]
