# medintake/intake/engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AbstractSet, List, Optional, Sequence, Set, Tuple

from medintake.errors import (
    InvalidQuestionReference,
    InvalidState,
    InvalidUtterance,
    OracleError,
)
from medintake.intake.context import build_recent_context
from medintake.intake.messages import IntakeMessages, get_messages
from medintake.intake.oracle import AnswerOracle
from medintake.intake.schema import (
    Answer,
    Emotion,
    Question,
    Questionnaire,
    Role,
    SufficiencyVerdict,
    Turn,
)
from medintake.intake.state import DialogueState
from medintake.text import is_blank

logger = logging.getLogger(__name__)


class NextAction(str, Enum):
    STAY = "stay"
    ADVANCE = "advance"
    COMPLETE = "complete"
    # A newer utterance started while this turn was waiting on the oracle.
    DISCARDED = "discarded"


@dataclass
class TurnResult:
    """
    Result of processing a single patient utterance

    Attributes:
        reply: Acknowledgement / follow-up to speak (or the fixed apology)
        emotion: Avatar expression for the reply
        action: What the engine did with the question pointer
        question_index: Pointer after the turn (== question count when complete)
        prompt: Text of the next question when the engine moved to one
        newly_answered: Question ids resolved by this turn, in bank order
        oracle_failed: The sufficiency judge could not be reached
    """
    reply: str
    emotion: Emotion
    action: NextAction
    question_index: int
    prompt: Optional[str] = None
    newly_answered: List[str] = field(default_factory=list)
    oracle_failed: bool = False

    @property
    def is_complete(self) -> bool:
        return self.action == NextAction.COMPLETE

    @property
    def state_changed(self) -> bool:
        return self.action != NextAction.DISCARDED


class DialogueEngine:
    """
    State machine for one interview.

    States are AwaitingAnswer(i) for each question index and Complete
    (index == number of questions). The pointer only moves forward.

    Each turn asks the oracle two things:
      - coverage: which still-open questions the utterance answers
        (lets one utterance resolve several questions at once)
      - sufficiency: whether the current question has enough information

    Oracle calls are the only suspension points. Nothing is written to the
    state until both calls are back, so a turn overtaken by a newer one
    can be dropped without a trace.
    """

    def __init__(
        self,
        questionnaire: Questionnaire,
        oracle: AnswerOracle,
        *,
        state: Optional[DialogueState] = None,
        messages: Optional[IntakeMessages] = None,
        context_turns: int = 10,
        context_max_chars: int = 200,
        strict_references: bool = False,
    ):
        self.questionnaire = questionnaire
        self.questions: List[Question] = list(questionnaire.questions)
        self.oracle = oracle
        self.messages = messages or get_messages("en")
        self.context_turns = context_turns
        self.context_max_chars = context_max_chars
        self.strict_references = strict_references

        self._question_ids = {q.id for q in self.questions}
        self._turn_seq = 0

        if state is None:
            state = DialogueState(question_count=len(self.questions))
        elif state.question_count != len(self.questions):
            raise InvalidState(
                f"State was built for {state.question_count} questions, "
                f"questionnaire {questionnaire.id} has {len(self.questions)}"
            )
        self.state = state
        self._check_answered_ids()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_complete(self) -> bool:
        return self.state.is_complete

    @property
    def current_question(self) -> Optional[Question]:
        if self.state.is_complete:
            return None
        return self.questions[self.state.current_question_index]

    def recent_context(self) -> List[Turn]:
        return build_recent_context(
            self.state.transcript,
            max_turns=self.context_turns,
            max_chars=self.context_max_chars,
        )

    def opening_message(self) -> str:
        """
        Greeting plus the first question. Only a fresh transcript gets the
        turns appended; a resumed session just hears the current question again.
        """
        question = self.current_question
        if self.state.transcript:
            return question.text if question else ""

        self.state.add_turn(Role.ASSISTANT, self.messages.greeting, emotion=Emotion.GENTLE)
        if question is None:
            return self.messages.greeting

        self.state.add_turn(Role.ASSISTANT, question.text, emotion=Emotion.GENTLE)
        return f"{self.messages.greeting} {question.text}"

    async def submit_answer(self, utterance: str) -> TurnResult:
        if self.state.is_complete:
            raise InvalidState("Interview is already complete")
        if is_blank(utterance):
            raise InvalidUtterance("Utterance is empty")

        utterance = utterance.strip()
        self._turn_seq += 1
        seq = self._turn_seq

        index = self.state.current_question_index
        question = self.questions[index]
        context = self.recent_context()
        answered = frozenset(self.state.answered_question_ids)
        candidates = [q for q in self.questions if q.id not in answered]

        covered = await self._classify(utterance, candidates, answered)
        if seq != self._turn_seq:
            return self._discarded(seq)

        is_final = self._next_open_index(index, answered | covered) >= len(self.questions)
        verdict, oracle_failed = await self._judge(question, utterance, context, is_final)
        if seq != self._turn_seq:
            return self._discarded(seq)

        return self._commit(index, utterance, covered, verdict, oracle_failed)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _classify(
        self,
        utterance: str,
        candidates: Sequence[Question],
        answered: AbstractSet[str],
    ) -> Set[str]:
        try:
            return set(await self.oracle.classify_coverage(utterance, candidates, answered))
        except OracleError as exc:
            logger.warning("Coverage classification unavailable, treating as none: %s", exc)
            return set()

    async def _judge(
        self,
        question: Question,
        utterance: str,
        context: Sequence[Turn],
        is_final: bool,
    ) -> Tuple[SufficiencyVerdict, bool]:
        try:
            verdict = await self.oracle.judge_sufficiency(
                question, utterance, context, is_final=is_final
            )
            return verdict, False
        except OracleError as exc:
            logger.error(
                "Sufficiency judge failed on question %s, staying: %s", question.id, exc
            )
            fallback = SufficiencyVerdict(
                reply=self.messages.oracle_apology,
                sufficient=False,
                emotion=Emotion.GENTLE,
            )
            return fallback, True

    def _commit(
        self,
        index: int,
        utterance: str,
        covered: Set[str],
        verdict: SufficiencyVerdict,
        oracle_failed: bool,
    ) -> TurnResult:
        question = self.questions[index]
        covered = self._valid_ids(covered)

        self.state.add_turn(Role.PATIENT, utterance)
        self.state.answers.append(
            Answer(question_id=question.id, question_text=question.text, answer=utterance)
        )

        newly_answered: List[str] = []
        for other in self.questions:
            # The judge alone decides on the question being asked.
            if other.id == question.id or other.id not in covered:
                continue
            if self.state.mark_answered(other.id):
                newly_answered.append(other.id)
                self.state.answers.append(
                    Answer(question_id=other.id, question_text=other.text, answer=utterance)
                )

        self.state.add_turn(Role.ASSISTANT, verdict.reply, emotion=verdict.emotion)

        advance = not oracle_failed and (
            verdict.sufficient or self.state.is_answered(question.id)
        )
        if not advance:
            return TurnResult(
                reply=verdict.reply,
                emotion=verdict.emotion,
                action=NextAction.STAY,
                question_index=index,
                newly_answered=newly_answered,
                oracle_failed=oracle_failed,
            )

        if self.state.mark_answered(question.id):
            newly_answered.append(question.id)
        newly_answered.sort(key=self._bank_position)

        next_index = self._next_open_index(index, self.state.answered_question_ids)
        self.state.current_question_index = next_index

        if self.state.is_complete:
            logger.info("Questionnaire %s complete", self.questionnaire.id)
            return TurnResult(
                reply=verdict.reply,
                emotion=verdict.emotion,
                action=NextAction.COMPLETE,
                question_index=next_index,
                newly_answered=newly_answered,
            )

        prompt = self.questions[next_index].text
        self.state.add_turn(Role.ASSISTANT, prompt, emotion=verdict.emotion)
        return TurnResult(
            reply=verdict.reply,
            emotion=verdict.emotion,
            action=NextAction.ADVANCE,
            question_index=next_index,
            prompt=prompt,
            newly_answered=newly_answered,
        )

    def _discarded(self, seq: int) -> TurnResult:
        logger.info("Dropping result of turn %s, turn %s is in progress", seq, self._turn_seq)
        return TurnResult(
            reply="",
            emotion=Emotion.NEUTRAL,
            action=NextAction.DISCARDED,
            question_index=self.state.current_question_index,
        )

    def _next_open_index(self, index: int, answered) -> int:
        """
        Smallest j > index whose question is still open, or the question
        count when there is none.
        """
        for j in range(index + 1, len(self.questions)):
            if self.questions[j].id not in answered:
                return j
        return len(self.questions)

    def _bank_position(self, question_id: str) -> int:
        for i, q in enumerate(self.questions):
            if q.id == question_id:
                return i
        return len(self.questions)

    def _valid_ids(self, ids: Set[str]) -> Set[str]:
        valid = set()
        for qid in ids:
            if qid in self._question_ids:
                valid.add(qid)
                continue
            self._invalid_reference(qid)
        return valid

    def _check_answered_ids(self) -> None:
        unknown = [qid for qid in self.state.answered_question_ids if qid not in self._question_ids]
        for qid in unknown:
            self._invalid_reference(qid)
            self.state.answered_question_ids.remove(qid)

    def _invalid_reference(self, question_id: str) -> None:
        if self.strict_references:
            raise InvalidQuestionReference(question_id, self.questionnaire.id)
        logger.error(
            "Ignoring unknown question id %r for questionnaire %s",
            question_id,
            self.questionnaire.id,
        )
