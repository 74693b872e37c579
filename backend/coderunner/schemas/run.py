from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Literal, Union


class RunRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    language: str
    code: str
    input: str | None = None


class RunResult(BaseModel):
    stdout: str = ""
    stderr: str = ""
    code: int = -1


class RecentRun(BaseModel):
    language: str
    code: str
    input: str | None = None
    result: RunResult
    timestamp: datetime


# Client -> server messages on the interactive socket


class RunMessage(RunRequest):
    type: Literal["run"] = "run"


class InputMessage(BaseModel):
    type: Literal["input"] = "input"
    data: str = ""


# Server -> client events


class OutputEvent(BaseModel):
    type: Literal["stdout", "stderr"]
    data: str


class ExitEvent(BaseModel):
    type: Literal["exit"] = "exit"
    code: int | Literal["manual_kill"]


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


RunEvent = Union[OutputEvent, ExitEvent, ErrorEvent]

MANUAL_KILL = "manual_kill"
