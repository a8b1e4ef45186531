"""Reading Claude session transcripts.

The stop hook is handed the path of the session transcript (JSONL, one
event per line). Only the last assistant message matters: it is where the
agent would have echoed the completion promise.
"""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _message_text(message: dict) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = [
        block.get("text", "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(parts)


def last_assistant_text(transcript_path: Path) -> str:
    """Text blocks of the last assistant message, joined by newlines.

    Returns "" if the transcript has no assistant message. Lines that are
    not valid JSON are skipped.
    """
    last = None
    with open(transcript_path) as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed transcript line {line_no}")
                continue
            message = event.get("message") if isinstance(event, dict) else None
            if isinstance(message, dict) and message.get("role") == "assistant":
                last = message

    return _message_text(last) if last else ""
