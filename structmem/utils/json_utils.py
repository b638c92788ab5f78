"""
JSON utilities for cleaning LLM responses.
"""

import json
from typing import Any


class JSONResponseError(ValueError):
    """Raised when an LLM response holds no parseable JSON payload."""
    pass


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Handles ```json / ``` fences, and prose before the opening fence.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Drop any chatter before the first fence
    fence = response.find('```')
    if fence > 0:
        response = response[fence:]

    if response.startswith('```'):
        newline = response.find('\n')
        # Language tag (```json) runs up to the first newline
        response = response[newline + 1:] if newline != -1 else response[3:]
        end = response.rfind('```')
        if end != -1:
            response = response[:end]

    return response.strip()


def parse_json_response(response: str) -> Any:
    """Clean an LLM response and decode it as JSON.

    Falls back to the outermost {...} or [...] span when the model wrapped the
    payload in prose without fences.

    Raises:
        JSONResponseError: If no JSON payload can be decoded
    """
    cleaned = clean_json_response(response)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        for opener, closer in (('{', '}'), ('[', ']')):
            start, end = cleaned.find(opener), cleaned.rfind(closer)
            if start != -1 and end > start:
                try:
                    return json.loads(cleaned[start:end + 1])
                except json.JSONDecodeError:
                    continue
        raise JSONResponseError(f'Invalid JSON in LLM response: {e}')
