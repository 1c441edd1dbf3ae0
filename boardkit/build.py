from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from .build_config import Toolchain, load_build_config
from .build_state import ensure_build_defaults, load_build_state, record_target, save_build_state, state_path
from .build_steps import ALL_TARGETS, STAGES_BY_TARGET, BuildCtx
from .pipeline import PipelineResult, StageResult, run_pipeline

logger = logging.getLogger(__name__)


def default_jobs() -> str:
    return str(os.cpu_count() or 1)


@dataclass(frozen=True)
class BuildOptions:
    config_path: Optional[str] = None
    source: Optional[str] = None
    branch: Optional[str] = None
    jobs: str = field(default_factory=default_jobs)
    targets: Sequence[str] = tuple(ALL_TARGETS)
    dry_run: bool = False
    environ: Optional[Mapping[str, str]] = None


@dataclass(frozen=True)
class BuildResult:
    pipelines: List[PipelineResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(p.ok for p in self.pipelines)

    @property
    def failure(self) -> Optional[StageResult]:
        return next((p.failure for p in self.pipelines if p.failure is not None), None)


def make_ctx(work_dir: Path, options: BuildOptions) -> BuildCtx:
    cfg = load_build_config(options.config_path).with_overrides(source=options.source, branch=options.branch)
    return BuildCtx(
        cfg=cfg,
        work_dir=work_dir,
        toolchain=Toolchain.from_env(options.environ),
        jobs=options.jobs,
        dry_run=options.dry_run,
    )


def run_build(work_dir: str | Path, options: BuildOptions) -> BuildResult:
    """Run the selected sub-pipelines against work_dir, stopping at the first failure.

    The working directory is created on first use and never removed, so a
    failed run can be resumed by running again with the same directory.
    """

    work = Path(work_dir)
    unknown = [t for t in options.targets if t not in STAGES_BY_TARGET]
    if unknown:
        raise ValueError(f"Unknown build target(s): {', '.join(unknown)}")

    work.mkdir(parents=True, exist_ok=True)
    ctx = make_ctx(work, options)
    logger.info(
        "Build: work_dir=%s chost=%s staging_root=%s jobs=%s dry_run=%s",
        str(work),
        ctx.toolchain.chost,
        str(ctx.staging_root),
        ctx.jobs,
        ctx.dry_run,
    )

    sp = state_path(work)
    state = ensure_build_defaults(load_build_state(sp))
    state["runs"] += 1

    pipelines: List[PipelineResult] = []
    try:
        for target in options.targets:
            logger.info("=== Build target: %s ===", target)
            result = run_pipeline(ctx=ctx, target=target, stages=STAGES_BY_TARGET[target])
            pipelines.append(result)
            record_target(state, target=target, results=[r.as_dict() for r in result.results], ok=result.ok)
            if not result.ok:
                break
    finally:
        save_build_state(sp, state)

    return BuildResult(pipelines=pipelines)
