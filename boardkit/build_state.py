from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

STATE_NAME = "build_state.json"


def state_path(work_dir: Path) -> Path:
    return work_dir / STATE_NAME


def load_build_state(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain an object")
    return data


def save_build_state(path: Path, state: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def ensure_build_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    state.setdefault("runs", 0)
    state.setdefault("targets", {})
    return state


def record_target(state: Dict[str, Any], *, target: str, results: list[dict], ok: bool) -> None:
    """Remember what the last run did for target. Never consulted for skipping."""

    t = state.setdefault("targets", {}).setdefault(target, {})
    t["last_run"] = results
    t["ok"] = ok
