"""
Atomic file writes.

Story sets and loop state are the only shared mutable files. Readers may see
a slightly stale snapshot but never a partial one.
"""

import json
import os
from pathlib import Path


def atomic_write_text(path: Path, content: str) -> None:
    """Write content to a temp file next to path, fsync, then rename over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp.{os.getpid()}")
    try:
        with open(tmp_path, "w") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def atomic_write_json(path: Path, data: dict) -> None:
    """Serialize data as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2) + "\n")
