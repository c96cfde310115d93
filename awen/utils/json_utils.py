"""
JSON utilities for cleaning and salvaging LLM responses.

Model output is parsed in layers, each usable on its own:

1. ``find_json_block`` locates the outermost ``[...]`` or ``{...}`` span.
2. ``strict_parse`` runs ``json.loads`` on it.
3. ``repair_json`` fixes trailing commas and quote styles before a reparse.
4. ``extract_positional_fields`` pulls ``"key": value`` pairs with regexes and
   zips them together by position.

Callers supply the last, static fallback themselves.
"""

import json
import re
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .logging_config import get_logger

logger = get_logger(__name__)

_BLOCK_PATTERNS = {
    '[': re.compile(r'\[[\s\S]*\]'),
    '{': re.compile(r'\{[\s\S]*\}'),
}
# First flat object only, used for small score maps
_FLAT_OBJECT_PATTERN = re.compile(r'\{[^{}]*\}')
_TRAILING_COMMA_PATTERN = re.compile(r',(\s*[\]}])')
_SINGLE_QUOTED_PATTERN = re.compile(r"'([^'\"\n]*)'")
_SMART_QUOTES = {'“': '"', '”': '"', '‘': "'", '’': "'"}


class JSONSalvageError(ValueError):
    """Raised when no layer could recover the expected JSON shape."""
    pass


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def find_json_block(text: str, opener: str = '[', flat: bool = False) -> Optional[str]:
    """Locate the first JSON array or object span in free text.

    Args:
        text: Raw model output
        opener: '[' for arrays, '{' for objects
        flat: Only match an object without nested braces

    Returns:
        The matched substring, or None
    """
    if not text:
        return None
    pattern = _FLAT_OBJECT_PATTERN if flat and opener == '{' else _BLOCK_PATTERNS[opener]
    match = pattern.search(clean_json_response(text))
    return match.group(0) if match else None


def strict_parse(block: str) -> Any:
    """Parse a JSON string without modification. Raises json.JSONDecodeError."""
    return json.loads(block)


def repair_json(block: str) -> str:
    """Apply string-repair heuristics to near-JSON model output.

    Removes trailing commas before closing brackets, converts smart quotes to
    plain ones and single-quoted tokens to double-quoted ones.
    """
    repaired = block
    for smart, plain in _SMART_QUOTES.items():
        repaired = repaired.replace(smart, plain)
    repaired = _TRAILING_COMMA_PATTERN.sub(r'\1', repaired)
    repaired = _SINGLE_QUOTED_PATTERN.sub(r'"\1"', repaired)
    return repaired


def extract_positional_fields(text: str, string_fields: Sequence[str], number_fields: Sequence[str] = ()) -> List[Dict[str, Any]]:
    """Salvage records from malformed JSON by matching fields independently.

    Every ``"field": "value"`` (or ``"field": 0.7`` for number fields) match is
    collected per field, and the i-th matches are combined into the i-th
    record. Records stop at the shortest match list.

    Args:
        text: Raw model output
        string_fields: Field names with string values
        number_fields: Field names with numeric values

    Returns:
        List of partially-typed records (possibly empty)
    """
    columns: Dict[str, List[Any]] = {}
    for field in string_fields:
        columns[field] = re.findall(rf'"{re.escape(field)}"\s*:\s*"([^"]+)"', text)
    for field in number_fields:
        columns[field] = [float(value) for value in re.findall(rf'"{re.escape(field)}"\s*:\s*(\d+(?:\.\d+)?)', text)]

    if not columns:
        return []

    count = min(len(values) for values in columns.values())
    return [{field: values[i] for field, values in columns.items()} for i in range(count)]


def parse_llm_json(text: str, opener: str = '[', flat: bool = False) -> Any:
    """Run the strict and repair layers over the first JSON block in text.

    Args:
        text: Raw model output
        opener: '[' for arrays, '{' for objects
        flat: Only match an object without nested braces

    Returns:
        The decoded JSON value

    Raises:
        JSONSalvageError: If no block is found or neither layer can decode it
    """
    block = find_json_block(text, opener, flat=flat)
    if block is None:
        raise JSONSalvageError(f'No JSON {"array" if opener == "[" else "object"} found in model output')

    try:
        return strict_parse(block)
    except json.JSONDecodeError as e:
        logger.debug(f'Strict JSON parse failed, attempting repair: {e}')

    try:
        return strict_parse(repair_json(block))
    except json.JSONDecodeError as e:
        raise JSONSalvageError(f'JSON repair failed: {e}')


def clamp(value: Any, low: float = 0.0, high: float = 1.0, default: float = 0.0) -> float:
    """Coerce a value to float and clamp it into [low, high]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes into JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
