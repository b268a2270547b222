# medintake/services/stores.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from medintake.db import Base, SessionLocal, engine
from medintake.intake.questionnaires import DEFAULT_QUESTIONNAIRES
from medintake.intake.schema import Question, Questionnaire
from medintake.intake.state import Session
from medintake.models import InterviewSessionRecord, QuestionnaireRecord

logger = logging.getLogger(__name__)


@contextmanager
def db_session(factory: Optional[sessionmaker] = None) -> Iterator:
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Create all tables. Call this once at startup.
    """
    Base.metadata.create_all(bind=bind or engine)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SessionStore:
    """
    Whole-record persistence of interview sessions, keyed by session id.
    Writes replace the stored record (last writer wins); the store never
    changes a session on its own.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    def save(self, session: Session) -> None:
        data = session.model_dump(mode="json")
        with db_session(self.session_factory) as db:
            record = db.get(InterviewSessionRecord, session.session_id)
            if record is None:
                record = InterviewSessionRecord(id=session.session_id)
                db.add(record)
            record.questionnaire_id = session.questionnaire_id
            record.created_at = _naive_utc(session.created_at)
            record.completed_at = (
                _naive_utc(session.completed_at) if session.completed_at else None
            )
            record.current_question_index = session.state.current_question_index
            record.data = data

    def load(self, session_id: str) -> Optional[Session]:
        with db_session(self.session_factory) as db:
            record = db.get(InterviewSessionRecord, session_id)
            if record is None:
                return None
            return Session.model_validate(record.data)

    def list_all(self) -> List[Session]:
        with db_session(self.session_factory) as db:
            stmt = select(InterviewSessionRecord).order_by(
                InterviewSessionRecord.created_at.asc(),
                InterviewSessionRecord.id.asc(),
            )
            return [Session.model_validate(r.data) for r in db.scalars(stmt)]

    def delete(self, session_id: str) -> bool:
        with db_session(self.session_factory) as db:
            result = db.execute(
                delete(InterviewSessionRecord).where(InterviewSessionRecord.id == session_id)
            )
            return result.rowcount > 0

    def delete_expired(self, ttl: timedelta, now: Optional[datetime] = None) -> int:
        """
        Remove sessions created more than ``ttl`` ago. Returns how many went.
        """
        cutoff = _naive_utc(now or datetime.now(timezone.utc)) - ttl
        with db_session(self.session_factory) as db:
            result = db.execute(
                delete(InterviewSessionRecord).where(InterviewSessionRecord.created_at < cutoff)
            )
            removed = result.rowcount
        if removed:
            logger.info("Deleted %s expired sessions", removed)
        return removed

    def clear(self) -> int:
        with db_session(self.session_factory) as db:
            return db.execute(delete(InterviewSessionRecord)).rowcount


class QuestionnaireStore:
    """
    Read side of the questionnaire catalogue: built-in templates first,
    then custom questionnaires from the database.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        defaults: Sequence[Questionnaire] = DEFAULT_QUESTIONNAIRES,
    ):
        self.session_factory = session_factory or SessionLocal
        self.defaults = list(defaults)

    def get_all(self) -> List[Questionnaire]:
        default_ids = {q.id for q in self.defaults}
        custom: List[Questionnaire] = []
        with db_session(self.session_factory) as db:
            stmt = select(QuestionnaireRecord).order_by(QuestionnaireRecord.created_at.asc())
            for record in db.scalars(stmt):
                if record.id in default_ids:
                    logger.warning("Custom questionnaire %s shadows a built-in one, skipped", record.id)
                    continue
                custom.append(self._to_model(record))
        return self.defaults + custom

    def get(self, questionnaire_id: str) -> Optional[Questionnaire]:
        for q in self.get_all():
            if q.id == questionnaire_id:
                return q
        return None

    def save(self, questionnaire: Questionnaire) -> None:
        with db_session(self.session_factory) as db:
            record = db.get(QuestionnaireRecord, questionnaire.id)
            if record is None:
                record = QuestionnaireRecord(id=questionnaire.id)
                db.add(record)
            record.title = questionnaire.title
            record.description = questionnaire.description
            record.category = questionnaire.category
            record.status = questionnaire.status.value
            record.questions = [q.model_dump(mode="json") for q in questionnaire.questions]
            record.created_at = _naive_utc(questionnaire.created_at)
            record.updated_at = _naive_utc(questionnaire.updated_at)

    @staticmethod
    def _to_model(record: QuestionnaireRecord) -> Questionnaire:
        return Questionnaire(
            id=record.id,
            title=record.title,
            description=record.description,
            category=record.category,
            status=record.status,
            questions=[Question.model_validate(q) for q in record.questions],
            created_at=record.created_at.replace(tzinfo=timezone.utc),
            updated_at=record.updated_at.replace(tzinfo=timezone.utc),
        )
