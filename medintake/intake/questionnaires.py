# medintake/intake/questionnaires.py
from __future__ import annotations

from typing import Dict, List

from medintake.intake.schema import Question, QuestionType, Questionnaire


# Built-in templates. Custom questionnaires live in the database and are
# listed after these.
DEFAULT_QUESTIONNAIRES: List[Questionnaire] = [
    Questionnaire(
        id="general-health",
        title="General health check",
        description="Checks your everyday state of health.",
        category="Health",
        questions=[
            Question(
                id="Q1",
                text="Have you noticed any changes in your health recently?",
                type=QuestionType.FREE_TEXT,
            ),
            Question(
                id="Q2",
                text="Are you getting enough sleep?",
                type=QuestionType.SINGLE_CHOICE,
                options=["Enough", "Slightly too little", "Too little"],
            ),
            Question(
                id="Q3",
                text="How is your appetite?",
                type=QuestionType.SINGLE_CHOICE,
                options=["Good", "Somewhat reduced", "No appetite"],
            ),
            Question(
                id="Q4",
                text="Do you exercise regularly?",
                type=QuestionType.FREE_TEXT,
            ),
            Question(
                id="Q5",
                text="Do you often feel stressed?",
                type=QuestionType.FREE_TEXT,
            ),
        ],
    ),
    Questionnaire(
        id="mental-check",
        title="Quick mental condition check",
        description="Checks how you are doing emotionally.",
        category="Mental health",
        questions=[
            Question(
                id="Q1",
                text="Have you been feeling down lately?",
                type=QuestionType.SCALE,
            ),
            Question(
                id="Q2",
                text="Are you still able to enjoy your hobbies?",
                type=QuestionType.FREE_TEXT,
            ),
            Question(
                id="Q3",
                text="Does talking to people feel like a burden?",
                type=QuestionType.SINGLE_CHOICE,
                options=["Yes", "No", "Neither"],
            ),
        ],
    ),
]


def default_questionnaires_by_id() -> Dict[str, Questionnaire]:
    return {q.id: q for q in DEFAULT_QUESTIONNAIRES}
