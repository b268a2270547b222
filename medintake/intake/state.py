# medintake/intake/state.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from medintake.intake.schema import (
    Answer,
    FormattedAnswer,
    Role,
    Turn,
    utcnow,
)


class DialogueState(BaseModel):
    """
    Mutable progress of one interview.

    ``current_question_index == question_count`` is the only terminal
    representation; ``is_complete`` is derived from it.
    """

    question_count: int = Field(..., ge=0)
    current_question_index: int = Field(0, ge=0)
    # Kept in the order ids were resolved; never shrinks.
    answered_question_ids: List[str] = Field(default_factory=list)
    transcript: List[Turn] = Field(default_factory=list)
    answers: List[Answer] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.current_question_index >= self.question_count

    def is_answered(self, question_id: str) -> bool:
        return question_id in self.answered_question_ids

    def mark_answered(self, question_id: str) -> bool:
        """Returns True if the id was not answered before."""
        if question_id in self.answered_question_ids:
            return False
        self.answered_question_ids.append(question_id)
        return True

    def add_turn(self, role: Role, text: str, **kwargs) -> Turn:
        turn = Turn(role=role, text=text, **kwargs)
        self.transcript.append(turn)
        return turn

    def patient_turns(self) -> List[Turn]:
        return [t for t in self.transcript if t.role == Role.PATIENT]


class Session(BaseModel):
    """
    Persisted record of one interview. Read-only once ``completed_at`` is set,
    apart from manual answer corrections.
    """

    session_id: str
    questionnaire_id: str
    created_at: datetime = Field(default_factory=utcnow)
    state: DialogueState
    formatted_answers: Optional[List[FormattedAnswer]] = None
    summary: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.state.is_complete

    @property
    def is_summarized(self) -> bool:
        return self.formatted_answers is not None and self.summary is not None
