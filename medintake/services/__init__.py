# medintake/services/__init__.py
from .stores import QuestionnaireStore, SessionStore, db_session, init_db
from .intake_session import IntakeSessionService

__all__ = [
    "QuestionnaireStore",
    "SessionStore",
    "db_session",
    "init_db",
    "IntakeSessionService",
]
