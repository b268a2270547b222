# medintake/api/schemas.py
from __future__ import annotations

from typing import Optional, List

from pydantic import BaseModel, Field

from medintake.intake.engine import NextAction
from medintake.intake.schema import Emotion, FormattedAnswer, Question


class StartSessionRequest(BaseModel):
    questionnaire_id: str


class StartSessionResponse(BaseModel):
    session_id: str
    questionnaire_id: str
    opening_message: str
    current_question: Optional[Question]
    total_questions: int


class MessageRequest(BaseModel):
    message: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    reply: str
    emotion: Emotion
    action: NextAction
    prompt: Optional[str]
    current_question_index: int
    current_question: Optional[Question]
    answered_question_ids: List[str]
    is_complete: bool
    formatted_answers: Optional[List[FormattedAnswer]] = None
    summary: Optional[str] = None


class UpdateAnswerRequest(BaseModel):
    answer: str = Field(..., min_length=1)


class CleanupResponse(BaseModel):
    deleted: int
