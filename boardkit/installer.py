from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from .lib.command import run_cmd

if TYPE_CHECKING:  # pragma: no cover
    from .build_steps import BuildCtx

logger = logging.getLogger(__name__)


def boot_dir(ctx: "BuildCtx") -> Path:
    return ctx.staging_root / "boot"


def install_file(src: Path, dst_dir: Path, *, dry_run: bool = False) -> Path:
    """Copy one artifact into dst_dir. Each copy stands alone; nothing is undone on a later failure."""

    dst = dst_dir / src.name
    if dry_run:
        logger.info("Would install %s -> %s", str(src), str(dst))
        return dst
    if not src.is_file():
        raise FileNotFoundError(f"Build artifact missing: {src}")
    dst_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)
    logger.info("Installed %s -> %s", str(src), str(dst))
    return dst


def install_modules(ctx: "BuildCtx") -> None:
    # modules_install lays out <staging>/lib/modules/<kernelrelease>/.
    run_cmd(
        ctx.make_argv("modules_install", f"INSTALL_MOD_PATH={ctx.staging_root}", parallel=False),
        cwd=ctx.kernel_src,
        dry_run=ctx.dry_run,
    )


def install_kernel(ctx: "BuildCtx") -> None:
    dst = boot_dir(ctx)
    install_file(ctx.kernel_image, dst, dry_run=ctx.dry_run)
    install_file(ctx.kernel_dtb, dst, dry_run=ctx.dry_run)
    install_modules(ctx)


def install_ramdisk(ctx: "BuildCtx") -> None:
    install_file(ctx.ramdisk_image, boot_dir(ctx), dry_run=ctx.dry_run)
