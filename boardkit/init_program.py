"""PID 1 of the generated initramfs.

The initramfs carries a busybox ``sh`` script (``render_init_script``). The
same boot sequence is modelled here as a state machine (``run_init``) driven
through a ``BootOps`` object, which lets the sequence be previewed and tested
off-target. Both are built from the constants below.

Sequence, strictly in order, no retries:

    MOUNT_VIRTUAL -> DISCOVER_DEVICES -> PARSE_CMDLINE -> MOUNT_ROOT
        -> CHECK_INIT -> HANDOFF

RESCUE_SHELL is the single failure exit. It is entered when the target init
is missing, and also when switch_root returns. In the shell script the
latter only covers an exec that cannot start switch_root at all: once
switch_root is running it has replaced PID 1, so a later failure inside it
kills PID 1 and the kernel panics.

Mount results are not checked anywhere before CHECK_INIT: a failed virtual
or root mount shows up as a missing init and ends in the rescue shell.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

CMDLINE_PATH = "/proc/cmdline"
NEW_ROOT = "/newroot"
TARGET_INIT = "/sbin/init"
RESCUE_SHELL_PATH = "/bin/sh"
INIT_SEARCH_PATH = "/bin:/sbin:/usr/bin:/usr/sbin"

# (fstype, mountpoint)
VIRTUAL_MOUNTS: Tuple[Tuple[str, str], ...] = (("proc", "/proc"), ("sysfs", "/sys"))
DEVICE_MOUNT: Tuple[str, str] = ("devtmpfs", "/dev")
MOVED_MOUNTS: Tuple[str, ...] = ("/proc", "/sys", "/dev")

# Matched case-sensitively against the start of the root= value.
ROOT_TAGS: Tuple[str, ...] = ("LABEL", "UUID", "PARTLABEL", "PARTUUID")


class InitState(str, enum.Enum):
    MOUNT_VIRTUAL = "mount_virtual"
    DISCOVER_DEVICES = "discover_devices"
    PARSE_CMDLINE = "parse_cmdline"
    MOUNT_ROOT = "mount_root"
    CHECK_INIT = "check_init"
    HANDOFF = "handoff"
    RESCUE_SHELL = "rescue_shell"


@dataclass(frozen=True)
class BootArgs:
    root: Optional[str] = None
    read_only: bool = False


def parse_cmdline(text: str) -> BootArgs:
    """Pick root= and ro out of a kernel command line.

    Tokens are split on whitespace. A later root= replaces an earlier one;
    every other token is ignored.
    """

    root: Optional[str] = None
    read_only = False
    for token in text.split():
        if token.startswith("root="):
            root = token[len("root="):]
        elif token == "ro":
            read_only = True
    return BootArgs(root=root, read_only=read_only)


def split_root_spec(spec: str) -> Tuple[Optional[str], str]:
    """Return (tag, value) for LABEL=/UUID=/PARTLABEL=/PARTUUID=, else (None, spec)."""

    for tag in ROOT_TAGS:
        prefix = tag + "="
        if spec.startswith(prefix):
            return tag, spec[len(prefix):]
    return None, spec


def resolve_root(spec: Optional[str], lookup: Callable[[str, str], Optional[str]]) -> Optional[str]:
    if not spec:
        return None
    tag, value = split_root_spec(spec)
    if tag is None:
        return value
    return lookup(tag, value)


class Handoff(Exception):
    """Raised by BootOps that cannot exec, in place of a successful switch_root."""

    def __init__(self, new_root: str, init: str) -> None:
        super().__init__(f"switch_root {new_root} {init}")
        self.new_root = new_root
        self.init = init


class BootOps(Protocol):
    def mount(self, source: str, target: str, *, fstype: Optional[str] = None, read_only: bool = False) -> bool:
        ...

    def move_mount(self, source: str, target: str) -> bool:
        ...

    def scan_devices(self) -> None:
        ...

    def read_cmdline(self) -> str:
        ...

    def findfs(self, tag: str, value: str) -> Optional[str]:
        ...

    def is_executable(self, path: str) -> bool:
        ...

    def switch_root(self, new_root: str, init: str) -> None:
        """Replace the process image. Returning at all means it failed."""
        ...

    def rescue_shell(self, message: str) -> None:
        ...


@dataclass
class InitResult:
    state: InitState
    trace: List[InitState] = field(default_factory=list)
    boot_args: BootArgs = field(default_factory=BootArgs)
    device: Optional[str] = None
    message: Optional[str] = None


def no_init_message(new_root: str = NEW_ROOT) -> str:
    return f"No init found at {new_root}{TARGET_INIT}."


def run_init(ops: BootOps) -> InitResult:
    result = InitResult(state=InitState.MOUNT_VIRTUAL)

    def enter(state: InitState) -> None:
        result.state = state
        result.trace.append(state)

    enter(InitState.MOUNT_VIRTUAL)
    for fstype, mountpoint in VIRTUAL_MOUNTS:
        ops.mount(fstype, mountpoint, fstype=fstype)

    enter(InitState.DISCOVER_DEVICES)
    ops.mount(DEVICE_MOUNT[0], DEVICE_MOUNT[1], fstype=DEVICE_MOUNT[0])
    ops.scan_devices()

    enter(InitState.PARSE_CMDLINE)
    result.boot_args = parse_cmdline(ops.read_cmdline())

    enter(InitState.MOUNT_ROOT)
    result.device = resolve_root(result.boot_args.root, ops.findfs)
    if result.device:
        ops.mount(result.device, NEW_ROOT, read_only=result.boot_args.read_only)

    enter(InitState.CHECK_INIT)
    if ops.is_executable(NEW_ROOT + TARGET_INIT):
        enter(InitState.HANDOFF)
        for mountpoint in MOVED_MOUNTS:
            ops.move_mount(mountpoint, NEW_ROOT + mountpoint)
        try:
            ops.switch_root(NEW_ROOT, TARGET_INIT)
        except Handoff:
            return result

    enter(InitState.RESCUE_SHELL)
    result.message = no_init_message()
    ops.rescue_shell(result.message)
    return result


class PreviewBootOps:
    """Log what the init program would do for a given command line."""

    def __init__(self, cmdline: str, *, init_present: bool = True) -> None:
        self.cmdline = cmdline
        self.init_present = init_present
        self.actions: List[str] = []

    def _record(self, action: str) -> None:
        self.actions.append(action)
        logger.info("init: %s", action)

    def mount(self, source: str, target: str, *, fstype: Optional[str] = None, read_only: bool = False) -> bool:
        opts = ""
        if fstype:
            opts += f" -t {fstype}"
        if read_only:
            opts += " -o ro"
        self._record(f"mount{opts} {source} {target}")
        return True

    def move_mount(self, source: str, target: str) -> bool:
        self._record(f"mount --move {source} {target}")
        return True

    def scan_devices(self) -> None:
        self._record("mdev -s")

    def read_cmdline(self) -> str:
        return self.cmdline

    def findfs(self, tag: str, value: str) -> Optional[str]:
        self._record(f"findfs {tag}={value}")
        return f"/dev/disk/by-{tag.lower()}/{value}"

    def is_executable(self, path: str) -> bool:
        self._record(f"test -x {path} -> {'yes' if self.init_present else 'no'}")
        return self.init_present

    def switch_root(self, new_root: str, init: str) -> None:
        self._record(f"exec switch_root {new_root} {init}")
        raise Handoff(new_root, init)

    def rescue_shell(self, message: str) -> None:
        self._record(f"echo {message!r}; exec {RESCUE_SHELL_PATH}")


def preview_boot(cmdline: str, *, init_present: bool = True) -> InitResult:
    return run_init(PreviewBootOps(cmdline, init_present=init_present))


def render_init_script(
    *,
    cmdline_path: str = CMDLINE_PATH,
    new_root: str = NEW_ROOT,
    search_path: str = INIT_SEARCH_PATH,
) -> str:
    """Render the /init shell script run by the kernel from the initramfs.

    The keyword arguments exist so the script can be exercised on a build
    host; the initramfs always gets the defaults.
    """

    tags = "|".join(f"{tag}=*" for tag in ROOT_TAGS)
    lines = [
        "#!/bin/sh",
        "# Generated by boardkit. Runs as PID 1 from the initramfs.",
        f"export PATH={search_path}",
        "",
        "rescue_shell() {",
        '    echo "$1"',
        '    echo "Dropping to a rescue shell."',
        f"    exec {RESCUE_SHELL_PATH}",
        "}",
        "",
        "# Mount results are not checked; a failure surfaces as a missing init.",
    ]
    for fstype, mountpoint in VIRTUAL_MOUNTS:
        lines.append(f"mount -t {fstype} none {mountpoint}")
    lines += [
        "",
        f"mount -t {DEVICE_MOUNT[0]} none {DEVICE_MOUNT[1]}",
        "mdev -s",
        "",
        "# Command line tokens are split but never globbed.",
        "set -f",
        "root=",
        "ro=",
        f"for arg in $(cat {cmdline_path}); do",
        '    case "$arg" in',
        '        root=*) root="${arg#root=}" ;;',
        "        ro) ro=1 ;;",
        "    esac",
        "done",
        "",
        'case "$root" in',
        f"    {tags})",
        '        tag="${root%%=*}"',
        '        value="${root#*=}"',
        '        root="$(findfs "$tag=$value")"',
        "        ;;",
        "esac",
        "",
        'if [ -n "$root" ]; then',
        '    if [ -n "$ro" ]; then',
        f'        mount -o ro "$root" {new_root}',
        "    else",
        f'        mount "$root" {new_root}',
        "    fi",
        "fi",
        "",
        f"if [ -x {new_root}{TARGET_INIT} ]; then",
    ]
    for mountpoint in MOVED_MOUNTS:
        lines.append(f"    mount --move {mountpoint} {new_root}{mountpoint}")
    lines += [
        "    # From here switch_root is PID 1; if it fails after starting, the",
        "    # kernel panics. Only a failed exec falls through to the rescue shell.",
        f"    exec switch_root {new_root} {TARGET_INIT}",
        "fi",
        "",
        f'rescue_shell "{no_init_message(new_root)}"',
        "",
    ]
    return "\n".join(lines)
