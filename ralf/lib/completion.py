"""
Completion promise detection.

The executor may end a loop early by echoing the configured completion
promise, optionally wrapped in <promise>...</promise> tags. This is a
deliberate override of the all-stories-pass rule.
"""

import re

_PROMISE_TAG = re.compile(r"<promise>(.*?)</promise>", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Trim and collapse runs of whitespace to a single space."""
    return _WHITESPACE.sub(" ", text).strip()


def extract_promise(output: str | None) -> str:
    """Return the normalized promise text from executor output.

    Uses the first <promise> tag if present, otherwise the whole output.
    """
    if not output:
        return ""
    match = _PROMISE_TAG.search(output)
    text = match.group(1) if match else output
    return normalize_whitespace(text)


def is_promise_fulfilled(output: str | None, completion_promise: str | None) -> bool:
    """True if output matches the completion promise exactly after normalization."""
    if not completion_promise:
        return False
    expected = normalize_whitespace(completion_promise)
    if not expected:
        return False
    return extract_promise(output) == expected
