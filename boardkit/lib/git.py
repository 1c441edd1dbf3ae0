from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .command import run_cmd

logger = logging.getLogger(__name__)


def clone_source(
    *,
    repo: str,
    dest: Path,
    branch: Optional[str] = None,
    depth: int = 1,
    dry_run: bool = False,
) -> None:
    """Shallow-clone repo into dest.

    dest must not exist yet; the caller decides whether a clone is needed.
    """

    argv = ["git", "clone", "--depth", str(depth)]
    if branch:
        argv += ["--branch", branch]
    argv += [repo, str(dest)]
    dest.parent.mkdir(parents=True, exist_ok=True)
    run_cmd(argv, dry_run=dry_run)
    logger.info("Cloned %s (branch=%s) -> %s", repo, branch or "default", str(dest))
