"""Atomic JSON files shared by the scrobble queue and the app decision store."""

from __future__ import annotations
import json
import os
from typing import Any


def write_json_atomic(path: str, data: Any) -> None:
    # Write atomically to avoid corruption
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def read_json(path: str) -> Any | None:
    """Returns None when the file does not exist. Parse errors propagate."""
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
