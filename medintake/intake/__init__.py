# medintake/intake/__init__.py
from .schema import (
    Answer,
    Confidence,
    Emotion,
    FormattedAnswer,
    Question,
    QuestionType,
    Questionnaire,
    Turn,
)
from .state import DialogueState, Session
from .oracle import AnswerOracle, LLMAnswerOracle
from .engine import DialogueEngine, NextAction, TurnResult
from .summarizer import SummaryCompiler, SummaryOutcome

__all__ = [
    "Answer",
    "Confidence",
    "Emotion",
    "FormattedAnswer",
    "Question",
    "QuestionType",
    "Questionnaire",
    "Turn",
    "DialogueState",
    "Session",
    "AnswerOracle",
    "LLMAnswerOracle",
    "DialogueEngine",
    "NextAction",
    "TurnResult",
    "SummaryCompiler",
    "SummaryOutcome",
]
