import os

# Must happen before medintake.config is imported anywhere.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INTAKE_LANGUAGE", "en")

import pytest
from sqlalchemy.pool import StaticPool

from medintake.db import make_engine, make_session_factory
from medintake.intake.schema import Question, QuestionType, Questionnaire
from medintake.services.stores import QuestionnaireStore, SessionStore, init_db


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def session_store(session_factory):
    return SessionStore(session_factory)


@pytest.fixture
def questionnaire_store(session_factory):
    return QuestionnaireStore(session_factory)


@pytest.fixture
def sleep_appetite():
    """Two-question bank used by the single-utterance completion scenario."""
    return Questionnaire(
        id="sleep-appetite",
        title="Sleep and appetite",
        questions=[
            Question(id="Q1", text="How did you sleep?"),
            Question(id="Q2", text="How is your appetite?"),
        ],
    )


@pytest.fixture
def five_questions():
    return Questionnaire(
        id="five",
        title="Five questions",
        questions=[
            Question(id="Q1", text="Have you noticed any changes in your health recently?"),
            Question(
                id="Q2",
                text="Are you getting enough sleep?",
                type=QuestionType.SINGLE_CHOICE,
                options=["Enough", "Slightly too little", "Too little"],
            ),
            Question(id="Q3", text="How is your appetite?"),
            Question(id="Q4", text="Do you exercise regularly?"),
            Question(id="Q5", text="How stressed do you feel?", type=QuestionType.SCALE),
        ],
    )
