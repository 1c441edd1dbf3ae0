from __future__ import annotations

import gzip
import os
import shutil
import stat
from pathlib import Path

import pytest

from boardkit.build import BuildOptions, make_ctx
from boardkit.ramdisk import (
    TREE_DIRS,
    archive_tree,
    assemble_ramdisk,
    compress_archive,
    create_tree,
    uimage_argv,
    write_init,
)


def test_create_tree_lays_out_standard_dirs(tmp_path):
    root = tmp_path / "initramfs"
    create_tree(root)
    create_tree(root)  # idempotent

    for rel in ("bin", "sbin", "dev", "etc", "lib", "mnt", "newroot", "proc", "sys", "root", "usr/bin"):
        assert (root / rel).is_dir(), rel
    assert set(TREE_DIRS) >= {"proc", "sys", "dev", "newroot"}
    assert stat.S_IMODE((root / "root").stat().st_mode) == 0o700


def test_write_init_is_executable_shell_script(tmp_path):
    init = write_init(tmp_path)

    assert init == tmp_path / "init"
    assert os.access(init, os.X_OK)
    assert init.read_text(encoding="utf-8").startswith("#!/bin/sh\n")


def test_compress_archive_gzips(tmp_path):
    src = tmp_path / "initramfs.cpio"
    src.write_bytes(b"070701" + b"\0" * 64)
    dst = tmp_path / "initramfs.cpio.gz"

    compress_archive(src, dst)

    assert dst.read_bytes()[:2] == b"\x1f\x8b"
    assert gzip.decompress(dst.read_bytes()) == src.read_bytes()


def test_uimage_header_fields():
    argv = uimage_argv(name="boardkit initramfs", src=Path("in.gz"), dst=Path("uInitrd"))
    assert argv == [
        "mkimage",
        "-A", "arm",
        "-O", "linux",
        "-T", "ramdisk",
        "-C", "gzip",
        "-a", "0",
        "-e", "0",
        "-n", "boardkit initramfs",
        "-d", "in.gz",
        "uInitrd",
    ]


def test_assemble_ramdisk_runs_every_step(tmp_path, fake_run, staging_env):
    work = tmp_path / "work"
    (work / "busybox").mkdir(parents=True)
    ctx = make_ctx(work, BuildOptions(environ=staging_env, jobs="3"))

    image = assemble_ramdisk(ctx)

    assert image == work / "uInitrd"
    assert image.exists()
    assert (work / "initramfs/init").exists()
    assert gzip.decompress((work / "initramfs.cpio.gz").read_bytes()) == b"070701fake-cpio"
    tools = fake_run.tools()
    assert tools == ["make", "mkimage"]
    install_argv, install_cwd = fake_run.calls[0]
    assert install_cwd == str(work / "busybox")
    assert install_argv[-1] == f"CONFIG_PREFIX={work / 'initramfs'}"


def test_assemble_ramdisk_dry_run_writes_nothing(tmp_path, fake_run, staging_env):
    work = tmp_path / "work"
    (work / "busybox").mkdir(parents=True)
    ctx = make_ctx(work, BuildOptions(environ=staging_env, dry_run=True))

    image = assemble_ramdisk(ctx)

    assert image == work / "uInitrd"
    assert sorted(p.name for p in work.iterdir()) == ["busybox"]
    assert fake_run.tools() == ["make", "mkimage"]


@pytest.mark.skipif(shutil.which("cpio") is None or shutil.which("find") is None, reason="needs find and cpio")
def test_archive_tree_writes_newc_archive(tmp_path):
    root = tmp_path / "initramfs"
    create_tree(root)
    write_init(root)
    out = tmp_path / "out" / "initramfs.cpio"

    archive_tree(root, out)

    data = out.read_bytes()
    assert data.startswith(b"070701")
    assert b"TRAILER!!!\0" in data
    # newc stores NUL-terminated names relative to the tree root
    for name in (b"./init", b"./newroot", b"./usr/sbin", b"./tmp"):
        assert name + b"\0" in data
    assert b"#!/bin/sh\n" in data


def test_archive_tree_dry_run_writes_nothing(tmp_path):
    out = tmp_path / "initramfs.cpio"
    archive_tree(tmp_path / "missing", out, dry_run=True)
    assert not out.exists()
