# medintake/llm/parsing.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from medintake.errors import OracleMalformed
from medintake.text import is_blank


def _strip_code_fence(text: str) -> str:
    """
    Handles cases where the model wraps the JSON in ```json ... ``` fences.
    """
    if not text.startswith("```"):
        return text
    text = text.lstrip("`")
    if text.lower().startswith("json"):
        text = text[4:]
    return text.rstrip("`").strip()


def first_balanced_object(text: str) -> Optional[str]:
    """
    Return the first ``{...}`` substring whose braces balance, ignoring
    braces inside JSON string literals. None if there is no such substring.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            ch = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:pos + 1]
        # Unbalanced from this brace; try the next opening brace.
        start = text.find("{", start + 1)
    return None


def extract_json_object(raw: str) -> Dict[str, Any]:
    """
    Try to robustly parse a JSON object from an LLM response.

    Order: the whole text, the text without Markdown fences, then the first
    balanced brace-delimited substring. Raises OracleMalformed otherwise.
    """
    if is_blank(raw):
        raise OracleMalformed("Model returned blank content")

    text = _strip_code_fence(raw.strip())
    candidates = [text]
    embedded = first_balanced_object(text)
    if embedded is not None and embedded != text:
        candidates.append(embedded)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise OracleMalformed(f"Model output was not a JSON object: {raw[:120]!r}")
