"""
JSON Utilities
Lenient parsing of JSON objects returned by language models
"""
import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_object(text: Optional[str]) -> Dict[str, Any]:
    """
    Parse the first JSON object in ``text``.

    Handles markdown code fences and leading/trailing prose.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    if not text or not text.strip():
        raise ValueError("Empty model response")

    cleaned = _FENCE.sub("", text.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object in model response")
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in model response: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("Model response is not a JSON object")
    return parsed
