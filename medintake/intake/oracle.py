# medintake/intake/oracle.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import AbstractSet, Any, Dict, List, Sequence, Set

from medintake.errors import OracleMalformed
from medintake.intake.messages import get_messages
from medintake.intake.prompts import (
    build_coverage_messages,
    build_sufficiency_messages,
    build_summary_messages,
)
from medintake.intake.schema import (
    Confidence,
    Emotion,
    FormattedAnswer,
    Question,
    SufficiencyVerdict,
    SummaryResult,
    Turn,
)
from medintake.llm import RetryingLLMClient
from medintake.text import is_blank

logger = logging.getLogger(__name__)


class AnswerOracle(ABC):
    """
    Judgments the dialogue engine and the summary compiler need from a
    language model. Implementations raise OracleError subclasses once their
    own retries are spent; they never return partial guesses.
    """

    @abstractmethod
    async def classify_coverage(
        self,
        utterance: str,
        candidate_questions: Sequence[Question],
        already_answered: AbstractSet[str],
    ) -> Set[str]:
        """
        Ids of ``candidate_questions`` that ``utterance`` clearly answers.
        Empty when the evidence is ambiguous.
        """
        ...

    @abstractmethod
    async def judge_sufficiency(
        self,
        question: Question,
        utterance: str,
        recent_context: Sequence[Turn],
        *,
        is_final: bool = False,
    ) -> SufficiencyVerdict:
        ...

    @abstractmethod
    async def summarize(
        self,
        questions: Sequence[Question],
        transcript: Sequence[Turn],
    ) -> SummaryResult:
        ...


def parse_coverage(data: Dict[str, Any], candidate_ids: AbstractSet[str]) -> Set[str]:
    answered = data.get("answeredQuestions", [])
    if not isinstance(answered, list):
        raise OracleMalformed("answeredQuestions must be a list")

    covered: Set[str] = set()
    for item in answered:
        qid = str(item).strip()
        if qid in candidate_ids:
            covered.add(qid)
        else:
            logger.info("Coverage result names non-candidate question %r, dropped", qid)
    return covered


def parse_emotion(value: Any) -> Emotion:
    try:
        return Emotion(str(value).strip().lower())
    except ValueError:
        return Emotion.GENTLE


def parse_verdict(data: Dict[str, Any]) -> SufficiencyVerdict:
    reply = data.get("reply")
    if not isinstance(reply, str) or is_blank(reply):
        raise OracleMalformed("reply missing or blank")

    sufficient = data.get("sufficient")
    if sufficient is None and "needMoreInfo" in data:
        # older prompt wording
        sufficient = data["needMoreInfo"] is False

    return SufficiencyVerdict(
        reply=reply.strip(),
        sufficient=sufficient is True,
        emotion=parse_emotion(data.get("emotion")),
    )


def parse_summary(data: Dict[str, Any]) -> SummaryResult:
    entries = data.get("formattedAnswers")
    if not isinstance(entries, list):
        raise OracleMalformed("formattedAnswers must be a list")

    formatted: List[FormattedAnswer] = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("questionId"):
            logger.info("Skipping unusable summary entry: %r", entry)
            continue
        try:
            confidence = Confidence(str(entry.get("confidence", "low")).lower())
        except ValueError:
            confidence = Confidence.LOW
        formatted.append(
            FormattedAnswer(
                question_id=str(entry["questionId"]),
                question_text=str(entry.get("questionText") or ""),
                extracted_answer=str(entry.get("extractedAnswer") or ""),
                confidence=confidence,
            )
        )

    summary = data.get("summary")
    return SummaryResult(
        formatted_answers=formatted,
        summary=summary if isinstance(summary, str) else "",
    )


class LLMAnswerOracle(AnswerOracle):
    """
    AnswerOracle backed by chat completions in JSON mode.
    """

    def __init__(self, client: RetryingLLMClient, language: str = "en"):
        self.client = client
        self.reply_language = get_messages(language).reply_language

    async def classify_coverage(
        self,
        utterance: str,
        candidate_questions: Sequence[Question],
        already_answered: AbstractSet[str],
    ) -> Set[str]:
        candidates = [q for q in candidate_questions if q.id not in already_answered]
        if not candidates:
            return set()

        candidate_ids = {q.id for q in candidates}
        covered = await self.client.complete_json(
            build_coverage_messages(utterance, candidates),
            lambda data: parse_coverage(data, candidate_ids),
            operation="classify_coverage",
            temperature=0.1,
            max_tokens=200,
        )
        logger.debug("Coverage for %r: %s", utterance[:60], sorted(covered))
        return covered

    async def judge_sufficiency(
        self,
        question: Question,
        utterance: str,
        recent_context: Sequence[Turn],
        *,
        is_final: bool = False,
    ) -> SufficiencyVerdict:
        return await self.client.complete_json(
            build_sufficiency_messages(
                question,
                utterance,
                recent_context,
                reply_language=self.reply_language,
                is_final=is_final,
            ),
            parse_verdict,
            operation="judge_sufficiency",
            temperature=0.4,
            max_tokens=1024,
        )

    async def summarize(
        self,
        questions: Sequence[Question],
        transcript: Sequence[Turn],
    ) -> SummaryResult:
        return await self.client.complete_json(
            build_summary_messages(questions, transcript, self.reply_language),
            parse_summary,
            operation="summarize",
            temperature=0.2,
            max_tokens=2048,
        )
