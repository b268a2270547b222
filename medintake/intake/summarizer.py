# medintake/intake/summarizer.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from medintake.errors import OracleError
from medintake.intake.messages import IntakeMessages, get_messages
from medintake.intake.oracle import AnswerOracle
from medintake.intake.schema import (
    NO_ANSWER_FOUND,
    Confidence,
    FormattedAnswer,
    Question,
    Role,
    SummaryResult,
    Turn,
)
from medintake.text import is_blank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SummaryOutcome:
    formatted_answers: List[FormattedAnswer]
    summary: str
    used_fallback: bool = False


class SummaryCompiler:
    """
    Turns a finished transcript into one FormattedAnswer per question
    (in question-bank order) plus a short narrative.

    Holds no state between calls. Whatever the oracle returns, the output
    has exactly one entry per question; on oracle failure every question
    gets the "no answer found" sentinel with low confidence.
    """

    def __init__(self, oracle: AnswerOracle, messages: Optional[IntakeMessages] = None):
        self.oracle = oracle
        self.messages = messages or get_messages("en")

    async def summarize(
        self,
        transcript: Sequence[Turn],
        questions: Sequence[Question],
    ) -> SummaryOutcome:
        if not questions:
            return SummaryOutcome(formatted_answers=[], summary="")

        if not any(t.role == Role.PATIENT and not is_blank(t.text) for t in transcript):
            logger.info("No patient turns to summarise, using sentinel answers")
            return self.fallback(questions)

        try:
            result = await self.oracle.summarize(questions, transcript)
        except OracleError as exc:
            logger.error("Summary generation failed, falling back: %s", exc)
            return self.fallback(questions)

        return self._reconcile(result, questions)

    def fallback(self, questions: Sequence[Question]) -> SummaryOutcome:
        return SummaryOutcome(
            formatted_answers=[FormattedAnswer.not_found(q) for q in questions],
            summary=self.messages.summary_fallback,
            used_fallback=True,
        )

    def _reconcile(
        self,
        result: SummaryResult,
        questions: Sequence[Question],
    ) -> SummaryOutcome:
        """
        Force the oracle output into bank order: unknown ids dropped, the first
        of any duplicate kept, missing or blank answers replaced by the sentinel.
        """
        bank_ids = {q.id for q in questions}
        by_id: Dict[str, FormattedAnswer] = {}
        for entry in result.formatted_answers:
            if entry.question_id not in bank_ids:
                logger.info("Summary mentions unknown question %r, ignored", entry.question_id)
                continue
            by_id.setdefault(entry.question_id, entry)

        formatted: List[FormattedAnswer] = []
        for q in questions:
            entry = by_id.get(q.id)
            if entry is None or is_blank(entry.extracted_answer):
                formatted.append(FormattedAnswer.not_found(q))
                continue

            answer = entry.extracted_answer.strip()
            confidence = entry.confidence
            if answer.lower() == NO_ANSWER_FOUND:
                answer, confidence = NO_ANSWER_FOUND, Confidence.LOW
            formatted.append(
                FormattedAnswer(
                    question_id=q.id,
                    question_text=q.text,
                    extracted_answer=answer,
                    confidence=confidence,
                )
            )

        summary = result.summary.strip()
        if is_blank(summary):
            summary = self.messages.summary_fallback

        return SummaryOutcome(formatted_answers=formatted, summary=summary)
