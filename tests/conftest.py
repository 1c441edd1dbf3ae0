from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

from boardkit.lib.command import CmdResult


@dataclass
class FakeRunner:
    """Stands in for run_cmd: records argv/cwd and fakes a few tool outputs."""

    calls: List[tuple] = field(default_factory=list)
    fail_on: Optional[Callable[[List[str]], bool]] = None

    def __call__(self, argv: Sequence[str], *, cwd=None, dry_run=False) -> CmdResult:
        argv_list = [str(a) for a in argv]
        self.calls.append((argv_list, str(cwd) if cwd is not None else None))
        if self.fail_on is not None and self.fail_on(argv_list):
            raise RuntimeError(f"Command failed (2): {' '.join(argv_list)}")
        if argv_list[0] == "mkimage" and not dry_run:
            Path(argv_list[-1]).write_bytes(b"\x27\x05\x19\x56fake-uimage")
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    def argvs(self) -> List[List[str]]:
        return [argv for argv, _ in self.calls]

    def tools(self) -> List[str]:
        return [argv[0] for argv, _ in self.calls]


@pytest.fixture
def fake_run(monkeypatch) -> FakeRunner:
    runner = FakeRunner()
    for mod in ("boardkit.build_steps", "boardkit.installer", "boardkit.ramdisk", "boardkit.lib.git"):
        monkeypatch.setattr(f"{mod}.run_cmd", runner)

    def _fake_archive(root: Path, out: Path, *, dry_run: bool = False) -> None:
        if not dry_run:
            out.write_bytes(b"070701fake-cpio")

    monkeypatch.setattr("boardkit.ramdisk.archive_tree", _fake_archive)
    return runner


@pytest.fixture
def staging_env(tmp_path) -> dict:
    return {"CHOST": "arm-linux-gnueabihf", "ROOT": str(tmp_path / "staging")}
