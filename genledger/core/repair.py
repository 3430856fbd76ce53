"""
Response repair.

Pure text-to-structure utilities for model output. The ladder runs the
cheapest safe transformation first so valid output is never rewritten:

1. Direct JSON parse
2. Substring from the first "{" to the last "}" (then the first balanced
   object starting at that "{")
3. Textual repairs on that substring: strip code fences, normalize smart
   quotes, drop trailing commas
4. Escape stray backslashes (LaTeX inside strings) and parse once more
"""

import json
import re
from typing import Any, Optional

from .errors import UpstreamMalformedOutput

_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
# A backslash that does not start a valid JSON escape sequence.
_STRAY_BACKSLASH = re.compile(r'\\(?!["\\/bfnrt]|u[0-9a-fA-F]{4})')

_QUOTE_MAP = str.maketrans({
    "“": '"',
    "”": '"',
    "„": '"',
    "‘": "'",
    "’": "'",
})

_decoder = json.JSONDecoder()


def safe_json_parse(text: Optional[str]) -> Optional[Any]:
    """Parse JSON, returning None instead of raising.

    Empty input, a literal ``null`` and nesting too deep for the decoder all
    yield None.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (ValueError, RecursionError):
        return None


def extract_first_json(text: Optional[str]) -> str:
    """Return the substring from the first "{" to the last "}".

    Raises:
        UpstreamMalformedOutput: If no such span exists
    """
    raw = text or ""
    start = raw.find("{")
    end = raw.rfind("}")
    if start < 0 or end <= start:
        raise UpstreamMalformedOutput("no JSON object found in model output", raw_text=raw)
    return raw[start:end + 1]


def first_balanced_object(text: str) -> Optional[Any]:
    """Decode the first complete JSON value starting at the first "{".

    Trailing prose or a second object after it is ignored.
    """
    start = text.find("{")
    if start < 0:
        return None
    try:
        value, _ = _decoder.raw_decode(text, start)
    except (ValueError, RecursionError):
        return None
    return value


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence such as ```json ... ```."""
    out = _FENCE_OPEN.sub("", text.strip(), count=1)
    return _FENCE_CLOSE.sub("", out, count=1).strip()


def normalize_quotes(text: str) -> str:
    """Replace typographic quotes with plain ASCII quotes."""
    return text.translate(_QUOTE_MAP)


def drop_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing brace or bracket."""
    return _TRAILING_COMMA.sub(r"\1", text)


def escape_stray_backslashes(text: str) -> str:
    r"""Double every backslash that is not a valid JSON escape (e.g. ``\sqrt``).

    Commands that start with a JSON escape letter (``\frac``, ``\times``,
    ``\beta``, ``\nu``, ``\right``) already parse as control characters and
    never reach this rung.
    """
    return _STRAY_BACKSLASH.sub(r"\\\\", text)


def repair_common_issues(text: str) -> str:
    """Apply the textual repairs that never change valid JSON's meaning."""
    return drop_trailing_commas(normalize_quotes(strip_code_fences(text)))


def parse(text: Optional[str]) -> Any:
    """Turn raw model output into a parsed JSON value.

    Args:
        text: Raw text returned by the model

    Returns:
        The parsed value

    Raises:
        UpstreamMalformedOutput: If every rung of the ladder fails
    """
    direct = safe_json_parse(text)
    if direct is not None:
        return direct

    extracted = extract_first_json(text)
    for candidate in (safe_json_parse(extracted), first_balanced_object(text or "")):
        if candidate is not None:
            return candidate

    repaired = repair_common_issues(extracted)
    value = safe_json_parse(repaired)
    if value is not None:
        return value

    value = safe_json_parse(escape_stray_backslashes(repaired))
    if value is not None:
        return value

    raise UpstreamMalformedOutput("model output is not valid JSON after repair", raw_text=text)
