"""
Response Parsing

Tolerant coercion of model text into the shapes the pipeline expects.
Models wrap JSON in markdown fences, add chatter around it, or drop keys;
these helpers recover what they can and fall back predictably.
"""
import json
import re
from typing import Any, List, Optional

from models import Description

FENCE_PATTERN = re.compile(r'```(?:json|JSON)?')

NO_DESCRIPTION = Description(en='No description available.', cn='无可用描述。')
DESCRIPTION_FALLBACK_CN = '请查看图片。'
MISSING_VALUE = '...'


def strip_code_fences(text: str) -> str:
    return FENCE_PATTERN.sub('', text or '').strip()


def extract_json(text: Optional[str]) -> Any:
    """
    Parse JSON out of a model reply.

    Tries the whole (fence-stripped) text first, then the outermost
    {...} object, then the outermost [...] array.

    Raises:
        ValueError: if no JSON can be recovered
    """
    cleaned = strip_code_fences(text or '')
    if not cleaned:
        raise ValueError('Empty response')

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for open_char, close_char in (('{', '}'), ('[', ']')):
        start = cleaned.find(open_char)
        end = cleaned.rfind(close_char) + 1
        if start >= 0 and end > start:
            try:
                return json.loads(cleaned[start:end])
            except json.JSONDecodeError:
                continue

    raise ValueError(f'No valid JSON in response: {cleaned[:80]}')


def extract_json_object(text: Optional[str]) -> dict:
    """Like extract_json but the result must be an object."""
    parsed = extract_json(text)
    if not isinstance(parsed, dict):
        raise ValueError(f'Expected a JSON object, got {type(parsed).__name__}')
    return parsed


def parse_description(text: Optional[str]) -> Description:
    """
    Parse the bilingual caption that image renders append as {"en", "cn"}.

    Missing text gives the "no description" pair; unparseable text keeps the
    first 150 characters as the English caption.
    """
    if not text:
        return NO_DESCRIPTION
    try:
        parsed = extract_json_object(text)
    except ValueError:
        return Description(en=text[:150] + '...', cn=DESCRIPTION_FALLBACK_CN)
    return Description(
        en=parsed.get('en') or MISSING_VALUE,
        cn=parsed.get('cn') or MISSING_VALUE,
    )


def coerce_string_list(value: Any) -> List[str]:
    """Normalize a model-provided list of strings."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def coerce_string(value: Any, default: str = '') -> str:
    if isinstance(value, str):
        return value.strip() or default
    if value is None:
        return default
    return str(value)
