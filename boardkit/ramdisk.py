from __future__ import annotations

import gzip
import logging
import shutil
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Tuple

from .init_program import NEW_ROOT, render_init_script
from .lib.command import run_cmd

if TYPE_CHECKING:  # pragma: no cover
    from .build_steps import BuildCtx

logger = logging.getLogger(__name__)

TREE_DIRS: Tuple[str, ...] = (
    "bin",
    "dev",
    "etc",
    "lib",
    "mnt",
    NEW_ROOT.lstrip("/"),
    "proc",
    "root",
    "sbin",
    "sys",
    "tmp",
    "usr/bin",
    "usr/sbin",
)

# Legacy U-Boot image header fields for the ramdisk.
UIMAGE_ARCH = "arm"
UIMAGE_OS = "linux"
UIMAGE_TYPE = "ramdisk"
UIMAGE_COMPRESSION = "gzip"
UIMAGE_LOAD_ADDR = "0"
UIMAGE_ENTRY_ADDR = "0"


def create_tree(root: Path, *, dry_run: bool = False) -> None:
    if dry_run:
        logger.info("Would create initramfs tree under %s", str(root))
        return
    for rel in TREE_DIRS:
        (root / rel).mkdir(parents=True, exist_ok=True)
    (root / "root").chmod(0o700)
    (root / "tmp").chmod(0o1777)


def install_utilities(ctx: "BuildCtx") -> None:
    """Install the (static) busybox build into the ramdisk tree."""

    run_cmd(
        ctx.make_argv("install", f"CONFIG_PREFIX={ctx.initramfs_dir}", parallel=False),
        cwd=ctx.busybox_src,
        dry_run=ctx.dry_run,
    )


def write_init(root: Path, *, dry_run: bool = False) -> Path:
    init = root / "init"
    if dry_run:
        logger.info("Would write init program: %s", str(init))
        return init
    init.write_text(render_init_script(), encoding="utf-8")
    init.chmod(0o755)
    logger.info("Wrote init program: %s", str(init))
    return init


def archive_tree(root: Path, out: Path, *, dry_run: bool = False) -> None:
    """Pack root into a newc cpio archive (find -print0 | cpio --null)."""

    if dry_run:
        logger.info("Would archive %s -> %s", str(root), str(out))
        return

    for tool in ("find", "cpio"):
        if shutil.which(tool) is None:
            raise RuntimeError(f"{tool} is required to build the initramfs")

    out.parent.mkdir(parents=True, exist_ok=True)
    logger.info("CMD (in %s) find . -print0 | cpio --null -o -H newc --quiet > %s", str(root), str(out))
    with out.open("wb") as fp:
        find_proc = subprocess.Popen(["find", ".", "-print0"], cwd=str(root), stdout=subprocess.PIPE)
        cpio_proc = subprocess.Popen(
            ["cpio", "--null", "-o", "-H", "newc", "--quiet"],
            cwd=str(root),
            stdin=find_proc.stdout,
            stdout=fp,
            stderr=subprocess.PIPE,
        )
        find_proc.stdout.close()  # type: ignore[union-attr]
        _, cpio_err = cpio_proc.communicate()
        find_proc.wait()

    if find_proc.returncode != 0:
        raise RuntimeError(f"find exited with code {find_proc.returncode}")
    if cpio_proc.returncode != 0:
        raise RuntimeError(f"cpio exited with code {cpio_proc.returncode}\n{cpio_err.decode(errors='replace')}")


def compress_archive(src: Path, dst: Path, *, dry_run: bool = False) -> None:
    if dry_run:
        logger.info("Would gzip %s -> %s", str(src), str(dst))
        return
    with src.open("rb") as fin, gzip.open(dst, "wb", compresslevel=9) as fout:
        shutil.copyfileobj(fin, fout)
    logger.info("Compressed %s (%d -> %d bytes)", str(dst), src.stat().st_size, dst.stat().st_size)


def uimage_argv(*, name: str, src: Path, dst: Path) -> list[str]:
    return [
        "mkimage",
        "-A",
        UIMAGE_ARCH,
        "-O",
        UIMAGE_OS,
        "-T",
        UIMAGE_TYPE,
        "-C",
        UIMAGE_COMPRESSION,
        "-a",
        UIMAGE_LOAD_ADDR,
        "-e",
        UIMAGE_ENTRY_ADDR,
        "-n",
        name,
        "-d",
        str(src),
        str(dst),
    ]


def wrap_uimage(ctx: "BuildCtx", src: Path, dst: Path) -> None:
    run_cmd(uimage_argv(name=ctx.cfg.ramdisk_name, src=src, dst=dst), dry_run=ctx.dry_run)


def assemble_ramdisk(ctx: "BuildCtx") -> Path:
    """Build the initramfs tree and turn it into a bootloader-loadable image."""

    root = ctx.initramfs_dir
    create_tree(root, dry_run=ctx.dry_run)
    install_utilities(ctx)
    write_init(root, dry_run=ctx.dry_run)
    archive_tree(root, ctx.initramfs_cpio, dry_run=ctx.dry_run)
    compress_archive(ctx.initramfs_cpio, ctx.initramfs_gz, dry_run=ctx.dry_run)
    wrap_uimage(ctx, ctx.initramfs_gz, ctx.ramdisk_image)
    logger.info("Ramdisk image ready: %s", str(ctx.ramdisk_image))
    return ctx.ramdisk_image
