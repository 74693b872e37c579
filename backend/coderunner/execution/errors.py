class ExecutionError(Exception):
    """Base class for failures that end a single run."""


class InvalidRequest(ExecutionError):
    pass


class UnsupportedLanguage(InvalidRequest):
    def __init__(self, language: str):
        super().__init__(f"Unsupported language: {language}")
        self.language = language


class BusyError(ExecutionError):
    def __init__(self, message: str = "A program is still running."):
        super().__init__(message)


class BuildFailure(ExecutionError):
    """Compiler exited non-zero; ``detail`` holds its diagnostics verbatim."""

    def __init__(self, detail: str, exit_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.exit_code = exit_code


class SpawnFailure(ExecutionError):
    pass


class TimeoutFailure(ExecutionError):
    def __init__(self, seconds: float, phase: str = "run"):
        label = "Build" if phase == "build" else "Program"
        super().__init__(f"{label} timed out after {seconds:g} seconds")
        self.seconds = seconds
        self.phase = phase


class InvalidTransition(RuntimeError):
    def __init__(self, current, target):
        super().__init__(f"illegal session transition {current.value} -> {target.value}")
        self.current = current
        self.target = target
