from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from .build import BuildOptions, default_jobs, run_build
from .build_steps import ALL_TARGETS
from .init_program import preview_boot
from .logging_utils import configure_logging, default_log_path

logger = logging.getLogger(__name__)


DEFAULT_WORK_DIR = "build/work"


def check_jobs(value: str) -> str:
    """Warn about a job count that is not a positive integer, then use it anyway."""

    if not value.isdigit() or int(value) < 1:
        logger.warning("--jobs %r is not a positive integer; passing it to make unchanged", value)
    return value


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="boardkit",
        description="Cross-build kernel, modules, DTB and initramfs for an ARM board.",
    )
    p.add_argument("--source", default=None, help="Kernel git repository URL")
    p.add_argument("--branch", default=None, help="Kernel branch or tag")
    p.add_argument("--workdir", default=DEFAULT_WORK_DIR, help="Working directory (reused across runs)")
    p.add_argument("--jobs", default=default_jobs(), help="Parallel jobs passed to make")
    p.add_argument("--config", default=None, help="Optional build config (YAML)")
    p.add_argument("--log", default=None, help="Build log path (default: <workdir>/logs/boardkit-build.log)")
    p.add_argument("--target", choices=ALL_TARGETS, default=None, help="Build a single sub-pipeline")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("-v", "--verbose", action="store_true", help="Show command output on the console")
    p.add_argument(
        "--preview-cmdline",
        default=None,
        metavar="CMDLINE",
        help="Show what the initramfs init would do for a kernel command line, then exit",
    )

    args = p.parse_args(argv)

    configure_logging(default_log_path(args.workdir, args.log), verbose=args.verbose)

    if args.preview_cmdline is not None:
        result = preview_boot(args.preview_cmdline)
        logger.info("init would end in state %s (device=%s)", result.state.value, result.device)
        return 0

    options = BuildOptions(
        config_path=args.config,
        source=args.source,
        branch=args.branch,
        jobs=check_jobs(args.jobs),
        targets=[args.target] if args.target else list(ALL_TARGETS),
        dry_run=bool(args.dry_run),
    )

    try:
        result = run_build(Path(args.workdir), options)
    except Exception:
        logger.exception("Build failed")
        return 1

    if not result.ok:
        failure = result.failure
        if failure is not None:
            logger.error("Build failed in %s/%s: %s", failure.target, failure.stage_id, failure.error)
        return 1

    logger.info("Build complete")
    return 0

