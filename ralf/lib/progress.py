"""
progress.txt: the human-readable log of what each iteration did.

The agent reads it at the start of every iteration, so learnings from one
story carry over to the next.
"""

from datetime import datetime
from pathlib import Path

PROGRESS_HEADER = """# Ralf Progress Log

## Codebase Patterns
<!-- Add reusable patterns discovered during development -->

---

"""


def ensure_progress_file(path: Path) -> bool:
    """Create progress.txt with its header if missing. Returns True if created."""
    if path.exists():
        return False
    path.write_text(PROGRESS_HEADER)
    return True


def append_progress(path: Path, iteration: int, story_id: str, title: str, status: str,
                    files_changed: list[str] | None = None, learnings: list[str] | None = None,
                    errors: list[str] | None = None) -> None:
    """Append one iteration entry for a story."""
    ensure_progress_file(path)
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M")
    lines = [f"## [{timestamp}] Iteration {iteration} - {story_id}: {title} [{status}]"]
    if files_changed:
        lines.append("Files changed: " + ", ".join(files_changed))
    if learnings:
        lines.append("Learnings:")
        lines.extend(f"- {item}" for item in learnings)
    if errors:
        lines.append("Errors:")
        lines.extend(f"- {item}" for item in errors)
    lines.append("---")

    with open(path, "a") as f:
        f.write("\n".join(lines) + "\n\n")
