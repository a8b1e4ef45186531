"""
Prompt templates for executor and evaluator requests.

Templates are markdown files in ralf/prompts/ rendered with str.format();
JSON examples inside them escape braces as {{ and }}. Anything inside
<!-- ... --> is template documentation and is dropped on load.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = ["PromptError", "load_prompt", "render_prompt", "build_section", "clear_cache", "PROMPTS_DIR"]

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

_COMMENT_RE = re.compile(r'<!--.*?-->\s*', re.DOTALL)


class PromptError(Exception):
    """A template is missing or could not be rendered."""


@lru_cache(maxsize=16)
def load_prompt(name: str) -> str:
    """Return the template text for name with comments removed."""
    path = PROMPTS_DIR / f"{name}.md"
    try:
        raw = path.read_text()
    except FileNotFoundError:
        raise PromptError(f"Prompt template '{name}' not found (looked for {path})") from None

    logger.debug(f"Loaded prompt template {name} from {path}")
    return _COMMENT_RE.sub('', raw).lstrip()


def clear_cache() -> None:
    load_prompt.cache_clear()


def render_prompt(name: str, **variables) -> str:
    """
    Render template name with the given variables.

    Raises:
        PromptError: If the template is missing or references a variable
            that was not supplied
    """
    template = load_prompt(name)
    try:
        return template.format(**variables)
    except KeyError as e:
        supplied = ", ".join(sorted(variables)) or "none"
        raise PromptError(f"Prompt '{name}' needs variable {e} (supplied: {supplied})") from e


def build_section(content: str | None, header: str, empty_msg: str | None = None) -> str:
    """
    Format an optional markdown section.

    Empty content falls back to empty_msg under the same header; with no
    fallback the whole section is omitted.
    """
    body = content or empty_msg
    if body is None or body == "":
        return ""
    return f"{header}\n\n{body}\n"
