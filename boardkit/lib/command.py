from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)

# Lines of stderr carried into the exception message. make and git can print
# thousands of lines; the full output is in the build log at DEBUG level.
ERROR_TAIL_LINES = 20


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def _tail(text: str, n: int = ERROR_TAIL_LINES) -> str:
    lines = text.rstrip().splitlines()
    if len(lines) <= n:
        return "\n".join(lines)
    return "\n".join([f"... ({len(lines) - n} earlier lines in the build log)"] + lines[-n:])


def run_cmd(
    argv: Sequence[str],
    *,
    cwd: str | Path | None = None,
    dry_run: bool = False,
) -> CmdResult:
    """Run one build tool (git, make, mkimage) and fail loudly.

    The command and its directory are logged at INFO; its output goes to the
    log line by line at DEBUG. A nonzero exit raises RuntimeError with the
    tail of stderr, which the pipeline records as the stage error.
    """

    argv_list = [str(a) for a in argv]
    where = f" (in {cwd})" if cwd is not None else ""
    logger.info("CMD%s %s", where, _fmt_argv(argv_list))

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    p = subprocess.run(
        argv_list,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=str(cwd) if cwd is not None else None,
    )

    for stream, text in (("out", p.stdout), ("err", p.stderr)):
        for line in text.splitlines():
            logger.debug("%s| %s", stream, line)

    if p.returncode != 0:
        raise RuntimeError(f"{argv_list[0]} exited with code {p.returncode}: {_fmt_argv(argv_list)}\n{_tail(p.stderr)}")

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)
