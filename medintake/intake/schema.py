# medintake/intake/schema.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


NO_ANSWER_FOUND = "no answer found"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestionType(str, Enum):
    FREE_TEXT = "free_text"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    SCALE = "scale"

    @property
    def needs_options(self) -> bool:
        return self in (QuestionType.SINGLE_CHOICE, QuestionType.MULTI_CHOICE)


class Role(str, Enum):
    PATIENT = "patient"
    ASSISTANT = "assistant"


class Emotion(str, Enum):
    NEUTRAL = "neutral"
    GENTLE = "gentle"
    THINKING = "thinking"
    SERIOUS = "serious"
    HAPPY = "happy"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class QuestionnaireStatus(str, Enum):
    PUBLISHED = "published"
    DRAFT = "draft"


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    type: QuestionType = QuestionType.FREE_TEXT
    required: bool = True
    options: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _options_match_type(self) -> "Question":
        if self.type.needs_options and not self.options:
            raise ValueError(f"question {self.id} is {self.type.value} but has no options")
        if not self.type.needs_options and self.options:
            raise ValueError(f"question {self.id} is {self.type.value} and cannot have options")
        return self


class Questionnaire(BaseModel):
    """
    An ordered question bank plus catalogue metadata.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    category: str = ""
    status: QuestionnaireStatus = QuestionnaireStatus.PUBLISHED
    questions: List[Question]
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("questions")
    @classmethod
    def _unique_ids(cls, questions: List[Question]) -> List[Question]:
        seen = set()
        for q in questions:
            if q.id in seen:
                raise ValueError(f"duplicate question id {q.id}")
            seen.add(q.id)
        return questions

    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def get_question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


class Turn(BaseModel):
    role: Role
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    emotion: Optional[Emotion] = None


class Answer(BaseModel):
    """
    Raw attribution of a patient utterance to a question.
    """

    question_id: str
    question_text: str
    answer: str
    timestamp: datetime = Field(default_factory=utcnow)


class FormattedAnswer(BaseModel):
    question_id: str
    question_text: str
    extracted_answer: str
    confidence: Confidence

    @classmethod
    def not_found(cls, question: Question) -> "FormattedAnswer":
        return cls(
            question_id=question.id,
            question_text=question.text,
            extracted_answer=NO_ANSWER_FOUND,
            confidence=Confidence.LOW,
        )


class SufficiencyVerdict(BaseModel):
    reply: str
    sufficient: bool
    emotion: Emotion = Emotion.GENTLE


class SummaryResult(BaseModel):
    """
    What the oracle returns for a finished interview, before the compiler
    enforces one-entry-per-question.
    """

    formatted_answers: List[FormattedAnswer] = Field(default_factory=list)
    summary: str = ""
