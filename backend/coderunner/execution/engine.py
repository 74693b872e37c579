"""
Execution engine: resolves a pipeline and drives build-then-run
"""

import os
import logging
from typing import Mapping
from coderunner.schemas.run import RunRequest, RunResult
from .errors import SpawnFailure, TimeoutFailure
from .pipelines import LanguagePipeline, build_registry, resolve
from .supervisor import ProcessOutcome, ProcessStatus, SupervisedProcess
from .workspace import ArtifactSet, Workspace

logger = logging.getLogger(__name__)


class ExecutionEngine:
    def __init__(
        self,
        settings,
        registry: Mapping[str, LanguagePipeline] | None = None,
        workspace: Workspace | None = None,
    ):
        self.settings = settings
        self.registry = registry if registry is not None else build_registry(settings)
        self.workspace = workspace or Workspace(settings.scratch_dir)

    @property
    def run_timeout(self) -> float:
        return self.settings.RUN_TIME_LIMIT_S

    @property
    def build_timeout(self) -> float:
        return self.settings.BUILD_TIME_LIMIT_S

    def resolve(self, language: str) -> LanguagePipeline:
        return resolve(self.registry, language)

    def prepare(self, pipeline: LanguagePipeline, request: RunRequest, artifacts: ArtifactSet) -> dict[str, str]:
        """
        Materialize the source and reserve the build output path

        Paths are added to ``artifacts`` as soon as they exist (or are
        reserved), so a failure part-way through still gets purged.
        """
        source = artifacts.add(
            self.workspace.allocate(pipeline.extension, pipeline.prepare_source(request.code))
        )
        paths = {"source": source, "scratch": self.workspace.root, "output": ""}
        if pipeline.output_suffix is not None:
            output = artifacts.add(self.workspace.derived_path(source, pipeline.output_suffix))
            if pipeline.output_is_dir:
                os.makedirs(output, exist_ok=True)
            paths["output"] = output
        return paths

    def build_process(self, pipeline: LanguagePipeline, paths: dict[str, str]) -> SupervisedProcess:
        return SupervisedProcess(
            pipeline.build.render(self.workspace.root, **paths),
            timeout=self.build_timeout,
            chunk_size=self.settings.READ_CHUNK_BYTES,
        )

    def run_process(
        self,
        pipeline: LanguagePipeline,
        paths: dict[str, str],
        stdin_text: str | None = None,
        interactive: bool = False,
    ) -> SupervisedProcess:
        return SupervisedProcess(
            pipeline.run.render(self.workspace.root, **paths),
            stdin_text=stdin_text,
            timeout=self.run_timeout,
            interactive=interactive,
            chunk_size=self.settings.READ_CHUNK_BYTES,
        )

    def release(self, artifacts: ArtifactSet) -> None:
        self.workspace.purge(artifacts)

    async def execute(self, request: RunRequest) -> RunResult:
        """
        Batch execution: stdin is supplied up front and output is buffered

        A failed build is returned as the compiler's own result. Timeouts and
        spawn failures raise.
        """
        pipeline = self.resolve(request.language)
        logger.info("Batch run", extra={"language": pipeline.language})
        artifacts = ArtifactSet()
        try:
            paths = self.prepare(pipeline, request, artifacts)
            if pipeline.compiled:
                outcome = await self.build_process(pipeline, paths).collect()
                self.raise_for_outcome(outcome, phase="build")
                if not outcome.ok:
                    return to_result(outcome)
            outcome = await self.run_process(pipeline, paths, request.input).collect()
            self.raise_for_outcome(outcome, phase="run")
            return to_result(outcome)
        finally:
            self.release(artifacts)

    def raise_for_outcome(self, outcome: ProcessOutcome, phase: str) -> None:
        if outcome.status is ProcessStatus.timed_out:
            limit = self.build_timeout if phase == "build" else self.run_timeout
            raise TimeoutFailure(limit, phase=phase)
        if outcome.status is ProcessStatus.spawn_failed:
            raise SpawnFailure(outcome.error or "failed to start process")


def to_result(outcome: ProcessOutcome) -> RunResult:
    code = outcome.exit_code if outcome.exit_code is not None else -1
    return RunResult(stdout=outcome.stdout, stderr=outcome.stderr, code=code)
