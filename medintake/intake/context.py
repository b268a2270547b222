# medintake/intake/context.py
from __future__ import annotations

from typing import List, Sequence

from medintake.intake.schema import Turn
from medintake.text import is_blank, truncate


def build_recent_context(
    transcript: Sequence[Turn],
    max_turns: int,
    max_chars: int,
) -> List[Turn]:
    """
    The slice of the conversation the sufficiency judge gets to see:
    the last ``max_turns`` turns, blank turns removed, each text cut to
    ``max_chars`` code points.
    """
    if max_turns <= 0:
        return []

    recent = transcript[-max_turns:]
    return [
        turn.model_copy(update={"text": truncate(turn.text, max_chars)})
        for turn in recent
        if not is_blank(turn.text)
    ]
