from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_LOG_NAME = "boardkit-build.log"

FILE_HANDLER_NAME = "boardkit.file"
CONSOLE_HANDLER_NAME = "boardkit.console"

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(message)s"


def default_log_path(work_dir: str | Path, requested: Optional[str | Path] = None) -> Path:
    """The build log path: the requested one, else <work_dir>/logs/boardkit-build.log.

    Keeping the log in the working directory means it stays next to the
    artifacts of the run that can be resumed from there.
    """

    if requested:
        return Path(requested)
    return Path(work_dir) / "logs" / DEFAULT_LOG_NAME


def _open_log_file(path: Path) -> Tuple[logging.FileHandler, Path]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path, encoding="utf-8"), path
    except OSError:
        fallback = Path.cwd() / DEFAULT_LOG_NAME
        return logging.FileHandler(fallback, encoding="utf-8"), fallback


def configure_logging(log_path: str | Path, *, verbose: bool = False) -> Path:
    """Send everything to the build log and INFO (or DEBUG) to the console.

    The file always receives DEBUG, so the output of every make/git call ends
    up in it. Calling this again is a no-op that returns the path already in
    use.
    """

    root = logging.getLogger()
    for handler in root.handlers:
        if handler.get_name() == FILE_HANDLER_NAME:
            return Path(handler.baseFilename)  # type: ignore[attr-defined]

    root.setLevel(logging.DEBUG)

    file_handler, chosen = _open_log_file(Path(log_path))
    file_handler.set_name(FILE_HANDLER_NAME)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    root.addHandler(file_handler)

    console = logging.StreamHandler()
    console.set_name(CONSOLE_HANDLER_NAME)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT))
    root.addHandler(console)

    log = logging.getLogger(__name__)
    if chosen != Path(log_path):
        log.warning("Cannot write %s; logging to %s instead", str(log_path), str(chosen))
    log.info("Build log: %s", str(chosen))
    return chosen
