"""LLM output parsing utilities.

Vision models wrap their JSON verdicts in markdown fences, prose or
reasoning tags; these helpers dig the object back out.
"""

import json
import re

_THINK_PAIR_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_THINK_OPEN_RE = re.compile(r"<think>.*", re.DOTALL)


def strip_think_tags(text: str) -> str:
    """Remove <think>...</think> blocks (and an unterminated trailing one)."""
    text = _THINK_PAIR_RE.sub("", text)
    return _THINK_OPEN_RE.sub("", text)


def extract_json_object(text: str) -> str:
    """Return the outermost ``{...}`` span of an LLM reply, fences removed."""
    text = strip_think_tags(text)
    text = text.replace("```json", "").replace("```", "").strip()
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start : end + 1]
    return text


def parse_json_object(text: str) -> dict:
    """Parse the JSON object embedded in *text*.

    Raises:
        ValueError: no JSON object could be decoded.
    """
    try:
        data = json.loads(extract_json_object(text))
    except json.JSONDecodeError as e:
        raise ValueError(f"LLM reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("LLM reply is not a JSON object")
    return data
