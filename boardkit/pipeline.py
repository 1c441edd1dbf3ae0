from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

RAN = "ran"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class Stage:
    """A single resumable unit of a sub-pipeline.

    A stage with a marker is satisfied once that path exists. Existence is
    the whole check: a truncated or corrupt artifact at the marker path still
    counts as done, and the stage is skipped. Delete the path to force a
    re-run. Stages without a marker always run.
    """

    stage_id: str
    action: Callable[[Any], None]
    marker: Optional[Callable[[Any], Path]] = None

    def is_satisfied(self, ctx: Any) -> bool:
        if self.marker is None:
            return False
        return self.marker(ctx).exists()


@dataclass(frozen=True)
class StageResult:
    target: str
    stage_id: str
    status: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED

    def as_dict(self) -> dict:
        d = {"stage": self.stage_id, "status": self.status}
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass(frozen=True)
class PipelineResult:
    target: str
    results: List[StageResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def ran_stages(self) -> List[str]:
        return [r.stage_id for r in self.results if r.status == RAN]

    @property
    def skipped_stages(self) -> List[str]:
        return [r.stage_id for r in self.results if r.status == SKIPPED]

    @property
    def failure(self) -> Optional[StageResult]:
        return next((r for r in self.results if r.status == FAILED), None)


def run_stage(*, ctx: Any, target: str, stage: Stage) -> StageResult:
    if stage.is_satisfied(ctx):
        logger.info("[%s] skip %s (already satisfied)", target, stage.stage_id)
        return StageResult(target=target, stage_id=stage.stage_id, status=SKIPPED)

    logger.info("[%s] run %s", target, stage.stage_id)
    try:
        stage.action(ctx)
    except Exception as e:
        logger.exception("[%s] stage %s failed", target, stage.stage_id)
        return StageResult(target=target, stage_id=stage.stage_id, status=FAILED, error=str(e))
    return StageResult(target=target, stage_id=stage.stage_id, status=RAN)


def run_pipeline(*, ctx: Any, target: str, stages: Sequence[Stage]) -> PipelineResult:
    """Run stages in order, skipping satisfied ones.

    Stops at the first failed stage. Nothing is rolled back: whatever the
    failed stage left in the working directory stays there for the next run.
    """

    results: List[StageResult] = []
    for stage in stages:
        result = run_stage(ctx=ctx, target=target, stage=stage)
        results.append(result)
        if not result.ok:
            logger.error("[%s] aborting after failed stage %s", target, stage.stage_id)
            break
    return PipelineResult(target=target, results=results)
