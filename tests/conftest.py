"""Shared fixtures: an engine whose scratch directory is a per-test tmp dir."""

import os
import shutil

import pytest

from coderunner.core.config import Settings
from coderunner.execution.engine import ExecutionEngine


def has_tool(name: str) -> bool:
    return shutil.which(name) is not None


requires_node = pytest.mark.skipif(not has_tool("node"), reason="node not installed")
requires_javac = pytest.mark.skipif(
    not (has_tool("javac") and has_tool("java")), reason="JDK not installed"
)
requires_gxx = pytest.mark.skipif(not has_tool("g++"), reason="g++ not installed")


@pytest.fixture
def scratch(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def settings(scratch):
    return Settings(
        SCRATCH_DIR=str(scratch),
        RUN_TIME_LIMIT_S=5.0,
        BUILD_TIME_LIMIT_S=60.0,
        OPENAI_API_KEY=None,
    )


@pytest.fixture
def engine(settings):
    return ExecutionEngine(settings)


class EventRecorder:
    """Collects events emitted by a session."""

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def of_type(self, kind):
        return [e for e in self.events if e.type == kind]

    def text(self, stream="stdout"):
        return "".join(e.data for e in self.events if e.type == stream)


@pytest.fixture
def recorder():
    return EventRecorder()


def scratch_files(path) -> list[str]:
    return sorted(os.listdir(path))
