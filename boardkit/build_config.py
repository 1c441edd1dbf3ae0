from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_CHOST = "arm-linux-gnueabihf"

DEFAULT_KERNEL_REPO = "https://github.com/beagleboard/linux.git"
DEFAULT_KERNEL_DEFCONFIG = "omap2plus_defconfig"
DEFAULT_KERNEL_DTB = "ti/omap/am335x-boneblack.dtb"

DEFAULT_BUSYBOX_REPO = "https://git.busybox.net/busybox"
DEFAULT_BUSYBOX_BRANCH = "1_36_stable"

# Options the generated initramfs depends on.
DEFAULT_KERNEL_SET = {"BLK_DEV_INITRD": "y", "DEVTMPFS": "y", "RD_GZIP": "y"}
DEFAULT_USERLAND_SET = {"STATIC": "y"}
# tc does not build against recent kernel headers.
DEFAULT_USERLAND_CLEAR = ["TC"]


@dataclass(frozen=True)
class BuildConfig:
    raw: Dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> Dict[str, Any]:
        return dict(self.raw.get(name) or {})

    @property
    def kernel_repo(self) -> str:
        return str(self._section("kernel").get("repo") or DEFAULT_KERNEL_REPO)

    @property
    def kernel_branch(self) -> Optional[str]:
        branch = self._section("kernel").get("branch")
        return str(branch) if branch else None

    @property
    def kernel_defconfig(self) -> str:
        return str(self._section("kernel").get("defconfig") or DEFAULT_KERNEL_DEFCONFIG)

    @property
    def kernel_image(self) -> str:
        return str(self._section("kernel").get("image") or "zImage")

    @property
    def kernel_dtb(self) -> str:
        """DTB path relative to arch/arm/boot/dts."""
        return str(self._section("kernel").get("dtb") or DEFAULT_KERNEL_DTB)

    @property
    def kernel_set_options(self) -> Dict[str, Any]:
        opts = dict(DEFAULT_KERNEL_SET)
        opts.update(_options(self._section("kernel")).get("set") or {})
        return opts

    @property
    def kernel_clear_options(self) -> List[str]:
        return list(_options(self._section("kernel")).get("clear") or [])

    @property
    def busybox_repo(self) -> str:
        return str(self._section("userland").get("repo") or DEFAULT_BUSYBOX_REPO)

    @property
    def busybox_branch(self) -> Optional[str]:
        section = self._section("userland")
        if "branch" in section:
            return str(section["branch"]) if section["branch"] else None
        return DEFAULT_BUSYBOX_BRANCH

    @property
    def busybox_defconfig(self) -> str:
        return str(self._section("userland").get("defconfig") or "defconfig")

    @property
    def userland_set_options(self) -> Dict[str, Any]:
        opts = dict(DEFAULT_USERLAND_SET)
        opts.update(_options(self._section("userland")).get("set") or {})
        return opts

    @property
    def userland_clear_options(self) -> List[str]:
        opts = _options(self._section("userland"))
        if "clear" in opts:
            return list(opts.get("clear") or [])
        return list(DEFAULT_USERLAND_CLEAR)

    @property
    def ramdisk_name(self) -> str:
        return str(self._section("ramdisk").get("name") or "boardkit initramfs")

    @property
    def ramdisk_image(self) -> str:
        return str(self._section("ramdisk").get("image") or "uInitrd")

    def with_overrides(self, *, source: Optional[str] = None, branch: Optional[str] = None) -> "BuildConfig":
        """Return a copy with CLI overrides applied to the kernel section."""

        if source is None and branch is None:
            return self
        raw = dict(self.raw)
        kernel = dict(raw.get("kernel") or {})
        if source is not None:
            kernel["repo"] = source
        if branch is not None:
            kernel["branch"] = branch
        raw["kernel"] = kernel
        return BuildConfig(raw=raw)


def _options(section: Mapping[str, Any]) -> Dict[str, Any]:
    opts = section.get("options") or {}
    if not isinstance(opts, dict):
        raise ValueError("options must be a mapping with 'set' and/or 'clear'")
    return opts


def load_build_config(path: Optional[str]) -> BuildConfig:
    if path is None:
        return BuildConfig()

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("build config must be YAML")

    try:
        import yaml  # type: ignore
    except Exception as e:
        raise RuntimeError("PyYAML is required to read the build config") from e

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping/object")

    return BuildConfig(raw=raw)


@dataclass(frozen=True)
class Toolchain:
    """Target selection taken from the environment.

    CHOST names the target triple; ROOT overrides the staging root, which
    otherwise defaults to /usr/<CHOST>.
    """

    chost: str
    staging_root: Path

    @property
    def cross_compile(self) -> str:
        return f"{self.chost}-"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Toolchain":
        env = os.environ if environ is None else environ
        chost = (env.get("CHOST") or "").strip() or DEFAULT_CHOST
        root = (env.get("ROOT") or "").strip()
        staging = Path(root) if root else Path("/usr") / chost
        return cls(chost=chost, staging_root=staging)
