# medintake/errors.py
from __future__ import annotations


class IntakeError(Exception):
    """
    Base class for every error raised by the intake package.
    """


class OracleError(IntakeError):
    """
    The language-model oracle could not produce a usable judgment.
    Never surfaces to the patient; callers fall back to fixed replies.
    """


class OracleUnavailable(OracleError):
    """
    Transport / API failure after the retry budget was spent
    (or a non-retryable API error such as bad credentials).
    """


class OracleMalformed(OracleError):
    """
    The oracle answered, but the payload could not be parsed into the
    expected schema even after JSON extraction.
    """


class InvalidQuestionReference(IntakeError):
    def __init__(self, question_id: str, questionnaire_id: str | None = None):
        self.question_id = question_id
        self.questionnaire_id = questionnaire_id
        where = f" in questionnaire {questionnaire_id}" if questionnaire_id else ""
        super().__init__(f"Unknown question id {question_id!r}{where}")


class InvalidState(IntakeError):
    """
    The caller broke the engine contract, e.g. answering after completion.
    """


class InvalidUtterance(IntakeError):
    """
    Empty or whitespace-only utterance handed to the engine.
    """


class QuestionnaireNotFound(IntakeError):
    pass


class SessionNotFound(IntakeError):
    pass
