# medintake/text.py
"""
Text helpers shared by the oracle and the dialogue engine.

Blank detection has to be stricter than ``str.strip()``: speech recognisers and
truncated model outputs emit zero-width characters and BOMs that ``isspace()``
does not consider whitespace.
"""
from __future__ import annotations

import re

# Characters that render as nothing but are not Unicode whitespace.
_INVISIBLE = {
    0x200B: None,  # zero width space
    0x200C: None,  # zero width non-joiner
    0x200D: None,  # zero width joiner
    0x2060: None,  # word joiner
    0xFEFF: None,  # BOM / zero width no-break space
}

_WHITESPACE_RUN = re.compile(r"\s+")

TRUNCATION_MARKER = "..."


def is_blank(text: str | None) -> bool:
    """
    True for None, "" and strings made only of whitespace (any Unicode
    whitespace class) and invisible format characters.
    """
    if not text:
        return True
    return not text.translate(_INVISIBLE).strip()


def normalize_whitespace(text: str) -> str:
    """
    Drop invisible characters and collapse every whitespace run to one space.
    """
    return _WHITESPACE_RUN.sub(" ", text.translate(_INVISIBLE)).strip()


def truncate(text: str, max_chars: int) -> str:
    """
    Cut ``text`` to at most ``max_chars`` code points and append a marker
    so the model knows content was dropped.
    """
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER
