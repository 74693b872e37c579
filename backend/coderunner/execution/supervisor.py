"""
Supervised child processes with streamed output and a hard timeout
"""

import os
import signal
import asyncio
import codecs
import enum
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Command:
    program: str
    args: tuple[str, ...] = ()
    cwd: str | None = None

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


class ProcessStatus(str, enum.Enum):
    exited = "exited"
    timed_out = "timed_out"
    killed = "killed"
    spawn_failed = "spawn_failed"


@dataclass(frozen=True)
class OutputChunk:
    stream: str  # "stdout" | "stderr"
    data: str


@dataclass
class ProcessOutcome:
    status: ProcessStatus
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ProcessStatus.exited and self.exit_code == 0


ProcessEvent = Union[OutputChunk, ProcessOutcome]


class SupervisedProcess:
    """
    One external command, spawned at most once.

    ``stream()`` yields ``OutputChunk`` items as the process produces them and
    finishes with exactly one ``ProcessOutcome``. ``kill()`` and the timeout
    share a single terminal status, so whichever fires first wins and the
    other becomes a no-op.
    """

    def __init__(
        self,
        command: Command,
        stdin_text: str | None = None,
        timeout: float = 8.0,
        interactive: bool = False,
        chunk_size: int = 4096,
    ):
        self.command = command
        self.stdin_text = stdin_text
        self.timeout = timeout
        self.interactive = interactive
        self.chunk_size = chunk_size
        self.outcome: ProcessOutcome | None = None
        self._proc: asyncio.subprocess.Process | None = None
        # group id of the spawned session; outlives the leader while children run
        self._pgid: int | None = None
        self._terminal: ProcessStatus | None = None
        self._started = False
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        # input written before the process exists
        self._pending: list[str] = []

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def stream(self) -> AsyncIterator[ProcessEvent]:
        if self._started:
            raise RuntimeError("process already started")
        self._started = True

        if self._terminal is not None:
            # killed before it ever ran
            yield self._finish(ProcessOutcome(status=self._terminal))
            return

        try:
            self._proc = await self._spawn()
        except OSError as e:
            logger.info(f"Spawn failed for {self.command.program}: {e}")
            yield self._finish(ProcessOutcome(status=ProcessStatus.spawn_failed, error=str(e)))
            return

        if os.name == "posix":
            self._pgid = self._proc.pid
        logger.debug(f"Spawned {self.command.argv}", extra={"pid": self._proc.pid})
        if self._terminal is not None:
            self._signal_kill()

        loop = asyncio.get_running_loop()
        timer = loop.call_later(self.timeout, self._on_timeout)
        queue: asyncio.Queue = asyncio.Queue()
        pumps = [
            asyncio.create_task(self._pump(self._proc.stdout, "stdout", queue)),
            asyncio.create_task(self._pump(self._proc.stderr, "stderr", queue)),
        ]
        finished = False
        try:
            await self._feed_initial_input()
            open_streams = len(pumps)
            while open_streams:
                item = await queue.get()
                if item is None:
                    open_streams -= 1
                    continue
                (self._stdout if item.stream == "stdout" else self._stderr).append(item.data)
                yield item

            returncode = await self._proc.wait()
            timer.cancel()
            if self._pgid is not None:
                # nothing the program forked may outlive the run
                self._signal_kill()
            if self._proc.stdin is not None and not self._proc.stdin.is_closing():
                self._proc.stdin.close()
            finished = True
            status = self._terminal or ProcessStatus.exited
            logger.debug(
                f"Process finished status={status.value} code={returncode}",
                extra={"pid": self._proc.pid},
            )
            yield self._finish(ProcessOutcome(status=status, exit_code=returncode))
        finally:
            timer.cancel()
            if not finished:
                # consumer went away mid-stream
                self._terminate(ProcessStatus.killed)
                self._signal_kill()
                for task in pumps:
                    task.cancel()

    async def collect(self) -> ProcessOutcome:
        """Drain the stream, buffering output, and return the outcome."""
        async for _ in self.stream():
            pass
        return self.outcome

    async def write(self, text: str) -> bool:
        proc = self._proc
        if proc is None:
            if self.outcome is not None or self._terminal is not None:
                return False
            self._pending.append(text)
            return True
        if proc.returncode is not None or proc.stdin is None:
            return False
        if proc.stdin.is_closing():
            return False
        try:
            proc.stdin.write(text.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"stdin closed under write: {e}", extra={"pid": proc.pid})
            return False
        return True

    def kill(self) -> bool:
        return self._terminate(ProcessStatus.killed)

    async def _spawn(self) -> asyncio.subprocess.Process:
        kwargs = {}
        if os.name == "posix":
            # own process group, so the kill reaches anything the program forks
            kwargs["start_new_session"] = True
        return await asyncio.create_subprocess_exec(
            *self.command.argv,
            cwd=self.command.cwd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )

    async def _feed_initial_input(self) -> None:
        stdin = self._proc.stdin
        # one synchronous write, so later write() calls cannot interleave
        text = (self.stdin_text or "") + "".join(self._pending)
        self._pending.clear()
        try:
            if text:
                stdin.write(text.encode("utf-8"))
                await stdin.drain()
            if not self.interactive:
                stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            # program exited without reading its input
            pass

    async def _pump(self, reader: asyncio.StreamReader, name: str, queue: asyncio.Queue) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await reader.read(self.chunk_size)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    queue.put_nowait(OutputChunk(name, text))
            tail = decoder.decode(b"", final=True)
            if tail:
                queue.put_nowait(OutputChunk(name, tail))
        finally:
            queue.put_nowait(None)

    def _on_timeout(self) -> None:
        if self._terminate(ProcessStatus.timed_out):
            logger.info(f"Process exceeded {self.timeout:g}s budget, killed", extra={"pid": self.pid})

    def _terminate(self, status: ProcessStatus) -> bool:
        if self._terminal is not None or self.outcome is not None:
            return False
        self._terminal = status
        if self._proc is not None:
            self._signal_kill()
        return True

    def _signal_kill(self) -> None:
        proc = self._proc
        try:
            if self._pgid is not None:
                os.killpg(self._pgid, signal.SIGKILL)
            elif proc.returncode is None:
                proc.kill()
        except (ProcessLookupError, PermissionError):
            # group already gone
            pass

    def _finish(self, outcome: ProcessOutcome) -> ProcessOutcome:
        outcome.stdout = "".join(self._stdout)
        outcome.stderr = "".join(self._stderr)
        self.outcome = outcome
        return outcome
