from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

from .build_config import BuildConfig, Toolchain
from .config_patcher import apply_options, plan_options
from .installer import install_kernel, install_ramdisk
from .lib.command import run_cmd
from .lib.git import clone_source
from .pipeline import Stage
from .ramdisk import assemble_ramdisk

logger = logging.getLogger(__name__)

KERNEL = "kernel"
USERLAND = "userland"
ALL_TARGETS = [USERLAND, KERNEL]


@dataclass(frozen=True)
class BuildCtx:
    """Everything a stage needs; stages never look at the process cwd."""

    cfg: BuildConfig
    work_dir: Path
    toolchain: Toolchain
    jobs: str
    dry_run: bool = False

    @property
    def staging_root(self) -> Path:
        return self.toolchain.staging_root

    @property
    def kernel_src(self) -> Path:
        return self.work_dir / "linux"

    @property
    def busybox_src(self) -> Path:
        return self.work_dir / "busybox"

    @property
    def kernel_config(self) -> Path:
        return self.kernel_src / ".config"

    @property
    def busybox_config(self) -> Path:
        return self.busybox_src / ".config"

    @property
    def kernel_image(self) -> Path:
        return self.kernel_src / "arch/arm/boot" / self.cfg.kernel_image

    @property
    def kernel_dtb(self) -> Path:
        return self.kernel_src / "arch/arm/boot/dts" / self.cfg.kernel_dtb

    @property
    def initramfs_dir(self) -> Path:
        return self.work_dir / "initramfs"

    @property
    def initramfs_cpio(self) -> Path:
        return self.work_dir / "initramfs.cpio"

    @property
    def initramfs_gz(self) -> Path:
        return self.work_dir / "initramfs.cpio.gz"

    @property
    def ramdisk_image(self) -> Path:
        return self.work_dir / self.cfg.ramdisk_image

    def make_argv(self, *targets: str, parallel: bool = True) -> List[str]:
        argv = ["make", "ARCH=arm", f"CROSS_COMPILE={self.toolchain.cross_compile}"]
        if parallel:
            # Passed through as given; --jobs only warns on odd values.
            argv.append(f"-j{self.jobs}")
        return argv + list(targets)


def make(ctx: BuildCtx, src: Path, *targets: str, parallel: bool = True) -> None:
    run_cmd(ctx.make_argv(*targets, parallel=parallel), cwd=src, dry_run=ctx.dry_run)


def patch_config(ctx: BuildCtx, path: Path, *, set_opts: Dict[str, object], clear_opts: List[str]) -> None:
    if ctx.dry_run:
        # Values are still validated so a bad config fails the dry run too.
        for key, value in plan_options(set_opts, clear_opts):
            if value is None:
                logger.info("Would mark %s not set in %s", key, str(path))
            else:
                logger.info("Would set %s=%s in %s", key, value, str(path))
        return
    apply_options(path, set_opts=set_opts, clear_opts=clear_opts)


# -- kernel -----------------------------------------------------------------


def kernel_download(ctx: BuildCtx) -> None:
    clone_source(repo=ctx.cfg.kernel_repo, branch=ctx.cfg.kernel_branch, dest=ctx.kernel_src, dry_run=ctx.dry_run)


def kernel_configure(ctx: BuildCtx) -> None:
    make(ctx, ctx.kernel_src, ctx.cfg.kernel_defconfig, parallel=False)


def kernel_compile(ctx: BuildCtx) -> None:
    patch_config(
        ctx,
        ctx.kernel_config,
        set_opts=ctx.cfg.kernel_set_options,
        clear_opts=ctx.cfg.kernel_clear_options,
    )
    make(ctx, ctx.kernel_src, "olddefconfig", parallel=False)
    make(ctx, ctx.kernel_src, ctx.cfg.kernel_image, ctx.cfg.kernel_dtb)


def kernel_compile_modules(ctx: BuildCtx) -> None:
    make(ctx, ctx.kernel_src, "modules")


def kernel_install(ctx: BuildCtx) -> None:
    install_kernel(ctx)


# -- userland (busybox) -----------------------------------------------------


def userland_download(ctx: BuildCtx) -> None:
    clone_source(repo=ctx.cfg.busybox_repo, branch=ctx.cfg.busybox_branch, dest=ctx.busybox_src, dry_run=ctx.dry_run)


def userland_configure(ctx: BuildCtx) -> None:
    make(ctx, ctx.busybox_src, ctx.cfg.busybox_defconfig, parallel=False)


def userland_compile(ctx: BuildCtx) -> None:
    patch_config(
        ctx,
        ctx.busybox_config,
        set_opts=ctx.cfg.userland_set_options,
        clear_opts=ctx.cfg.userland_clear_options,
    )
    make(ctx, ctx.busybox_src)


def userland_install(ctx: BuildCtx) -> None:
    assemble_ramdisk(ctx)
    install_ramdisk(ctx)


KERNEL_STAGES = [
    Stage("download", kernel_download, marker=lambda ctx: ctx.kernel_src),
    Stage("configure", kernel_configure, marker=lambda ctx: ctx.kernel_config),
    Stage("compile", kernel_compile),
    Stage("compile_modules", kernel_compile_modules),
    Stage("install", kernel_install),
]

USERLAND_STAGES = [
    Stage("download", userland_download, marker=lambda ctx: ctx.busybox_src),
    Stage("configure", userland_configure, marker=lambda ctx: ctx.busybox_config),
    Stage("compile", userland_compile),
    Stage("install", userland_install),
]

STAGES_BY_TARGET = {
    KERNEL: KERNEL_STAGES,
    USERLAND: USERLAND_STAGES,
}
