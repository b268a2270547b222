# medintake/services/intake_session.py
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool

from medintake.config import Settings, get_settings
from medintake.errors import (
    InvalidQuestionReference,
    InvalidState,
    InvalidUtterance,
    QuestionnaireNotFound,
    SessionNotFound,
)
from medintake.intake.engine import DialogueEngine, TurnResult
from medintake.intake.messages import get_messages
from medintake.intake.oracle import AnswerOracle
from medintake.intake.schema import (
    Confidence,
    Emotion,
    Questionnaire,
    QuestionnaireStatus,
    utcnow,
)
from medintake.intake.state import DialogueState, Session
from medintake.intake.summarizer import SummaryCompiler
from medintake.services.stores import QuestionnaireStore, SessionStore
from medintake.speech import NullPlaybackAdapter, PlaybackAdapter, PlaybackHandle
from medintake.text import is_blank

logger = logging.getLogger(__name__)


class IntakeSessionService:
    """
    Service that coordinates:
      - creating sessions for a published questionnaire
      - driving one DialogueEngine per session
      - persisting the session after every state-changing turn
      - summarising a finished interview exactly once
    """

    def __init__(
        self,
        oracle: AnswerOracle,
        questionnaires: QuestionnaireStore,
        sessions: SessionStore,
        playback: Optional[PlaybackAdapter] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.messages = get_messages(self.settings.intake_language)
        self.oracle = oracle
        self.questionnaires = questionnaires
        self.sessions = sessions
        self.playback = playback or NullPlaybackAdapter()
        self.compiler = SummaryCompiler(oracle, self.messages)
        self._clock = clock

        self._engines: Dict[str, DialogueEngine] = {}
        self._playing: Dict[str, PlaybackHandle] = {}
        self._summary_locks: Dict[str, asyncio.Lock] = {}
        self._write_locks: Dict[str, asyncio.Lock] = {}
        # monotonic time of the last start/turn per session
        self._last_seen: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_session(self, questionnaire_id: str) -> Tuple[Session, str]:
        """
        Start a new interview.

        Returns:
          - the persisted session
          - the opening message (greeting + first question)
        """
        self._forget_idle()
        questionnaire = self._get_questionnaire(questionnaire_id)
        if questionnaire.status != QuestionnaireStatus.PUBLISHED:
            raise InvalidState(f"Questionnaire {questionnaire_id} is not published")

        session = Session(
            session_id=uuid.uuid4().hex,
            questionnaire_id=questionnaire.id,
            state=DialogueState(question_count=len(questionnaire.questions)),
        )
        engine = self._build_engine(questionnaire, session)
        opening = engine.opening_message()

        self.sessions.save(session)
        self._engines[session.session_id] = engine
        self._touch(session.session_id)
        self._play(session.session_id, opening, Emotion.GENTLE)
        logger.info(
            "Started session %s for questionnaire %s", session.session_id, questionnaire.id
        )
        return session, opening

    async def handle_turn(self, session_id: str, utterance: str) -> Tuple[Session, TurnResult]:
        """
        Handle a single patient utterance:
          - stop whatever is still being spoken for this session
          - step the engine
          - persist the session (and summarise it once it is complete)

        Database work runs in the threadpool so a slow store never holds up
        turns of other sessions.
        """
        self._forget_idle()
        session = await run_in_threadpool(self.get_session, session_id)
        engine = await self._engine_for(session)
        self._touch(session_id)
        self._stop_playback(session_id)

        result = await engine.submit_answer(utterance)
        if not result.state_changed:
            return session, result

        session = await self._save_snapshot(session, engine)

        spoken = result.reply if result.prompt is None else f"{result.reply} {result.prompt}"
        self._play(session_id, spoken, result.emotion)

        if result.is_complete:
            session = await self.complete_session(session_id)
        return session, result

    async def complete_session(self, session_id: str) -> Session:
        """
        Summarise a finished interview. Safe to call repeatedly: an existing
        summary is returned as is.
        """
        lock = self._summary_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            session = await run_in_threadpool(self.get_session, session_id)
            if session.is_summarized:
                return session
            if not session.is_complete:
                raise InvalidState(f"Session {session_id} is still in progress")

            questionnaire = await run_in_threadpool(
                self._get_questionnaire, session.questionnaire_id
            )
            outcome = await self.compiler.summarize(
                session.state.transcript, questionnaire.questions
            )
            session = session.model_copy(
                update={
                    "formatted_answers": outcome.formatted_answers,
                    "summary": outcome.summary,
                    "completed_at": utcnow(),
                }
            )
            await run_in_threadpool(self.sessions.save, session)
            self._engines.pop(session_id, None)
            logger.info(
                "Session %s summarised (fallback=%s)", session_id, outcome.used_fallback
            )
            return session

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session:
        session = self.sessions.load(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    def list_sessions(self) -> List[Session]:
        return self.sessions.list_all()

    def list_questionnaires(self) -> List[Questionnaire]:
        return self.questionnaires.get_all()

    def get_questionnaire(self, questionnaire_id: str) -> Questionnaire:
        return self._get_questionnaire(questionnaire_id)

    def update_answer(self, session_id: str, question_id: str, answer: str) -> Session:
        """
        Manual correction of one summarised answer; corrected answers are
        trusted (confidence high).
        """
        if is_blank(answer):
            raise InvalidUtterance("Corrected answer is empty")
        session = self.get_session(session_id)
        if not session.is_summarized:
            raise InvalidState(f"Session {session_id} has no summary to correct")

        formatted = list(session.formatted_answers)
        for i, entry in enumerate(formatted):
            if entry.question_id == question_id:
                formatted[i] = entry.model_copy(
                    update={"extracted_answer": answer.strip(), "confidence": Confidence.HIGH}
                )
                break
        else:
            raise InvalidQuestionReference(question_id, session.questionnaire_id)

        session = session.model_copy(update={"formatted_answers": formatted})
        self.sessions.save(session)
        return session

    def delete_session(self, session_id: str) -> None:
        if not self.sessions.delete(session_id):
            raise SessionNotFound(f"Session {session_id} not found")
        self._forget(session_id)

    def purge_expired(self) -> int:
        ttl = timedelta(seconds=self.settings.session_ttl_seconds)
        live_before = {s.session_id for s in self.sessions.list_all()}
        removed = self.sessions.delete_expired(ttl)
        if removed:
            live_after = {s.session_id for s in self.sessions.list_all()}
            for session_id in live_before - live_after:
                self._forget(session_id)
        return removed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_questionnaire(self, questionnaire_id: str) -> Questionnaire:
        questionnaire = self.questionnaires.get(questionnaire_id)
        if questionnaire is None:
            raise QuestionnaireNotFound(f"Questionnaire {questionnaire_id} not found")
        return questionnaire

    def _build_engine(self, questionnaire: Questionnaire, session: Session) -> DialogueEngine:
        return DialogueEngine(
            questionnaire,
            self.oracle,
            state=session.state,
            messages=self.messages,
            context_turns=self.settings.context_window_turns,
            context_max_chars=self.settings.context_max_chars,
            strict_references=self.settings.strict_question_references,
        )

    async def _engine_for(self, session: Session) -> DialogueEngine:
        engine = self._engines.get(session.session_id)
        if engine is not None:
            return engine
        # e.g. after a restart or eviction: rebuild from the stored snapshot
        questionnaire = await run_in_threadpool(
            self._get_questionnaire, session.questionnaire_id
        )
        # another turn may have rebuilt it while we were loading
        return self._engines.setdefault(
            session.session_id, self._build_engine(questionnaire, session)
        )

    async def _save_snapshot(self, session: Session, engine: DialogueEngine) -> Session:
        """
        Persist a deep copy of the engine state. Writes for one session are
        queued so an older snapshot never lands after a newer one.
        """
        lock = self._write_locks.setdefault(session.session_id, asyncio.Lock())
        async with lock:
            snapshot = session.model_copy(update={"state": engine.state.model_copy(deep=True)})
            await run_in_threadpool(self.sessions.save, snapshot)
        return snapshot

    def _touch(self, session_id: str) -> None:
        self._last_seen[session_id] = self._clock()

    def _forget_idle(self) -> None:
        """
        Drop in-memory engines of sessions nobody has spoken to for longer
        than the session TTL. Stored sessions are untouched; a late turn
        rebuilds its engine from the store.
        """
        cutoff = self._clock() - self.settings.session_ttl_seconds
        for session_id, seen in list(self._last_seen.items()):
            if seen < cutoff:
                logger.info("Evicting idle session %s from memory", session_id)
                self._forget(session_id)

    def _play(self, session_id: str, text: str, emotion: Emotion) -> None:
        self._playing[session_id] = self.playback.play(session_id, text, emotion)

    def _stop_playback(self, session_id: str) -> None:
        handle = self._playing.pop(session_id, None)
        if handle is not None:
            self.playback.cancel(handle)

    def _forget(self, session_id: str) -> None:
        self._engines.pop(session_id, None)
        self._summary_locks.pop(session_id, None)
        self._write_locks.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        self._stop_playback(session_id)
