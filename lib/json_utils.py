"""
JSON utilities for reading structured answers out of free-form LLM text.
"""

import json
from typing import Any, Dict, Optional


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


def extract_json_object(response: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the first JSON object embedded in the text, or None.

    Chatter before or after the object ("Sure! {...} Hope this helps")
    is ignored. Arrays and scalars do not count as objects.

    Args:
        response: Raw LLM response

    Returns:
        Parsed object, or None if no parseable object is present
    """
    if not response:
        return None

    text = clean_json_response(response)
    decoder = json.JSONDecoder()
    start = text.find('{')
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find('{', start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find('{', start + 1)
    return None
