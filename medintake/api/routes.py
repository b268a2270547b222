# medintake/api/routes.py
from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from medintake.config import get_settings
from medintake.errors import (
    InvalidQuestionReference,
    InvalidState,
    InvalidUtterance,
    QuestionnaireNotFound,
    SessionNotFound,
)
from medintake.intake.oracle import LLMAnswerOracle
from medintake.intake.schema import Questionnaire
from medintake.intake.state import Session
from medintake.llm import OpenAILLMClient, RetryingLLMClient
from medintake.services import IntakeSessionService, QuestionnaireStore, SessionStore
from .schemas import (
    CleanupResponse,
    MessageRequest,
    MessageResponse,
    StartSessionRequest,
    StartSessionResponse,
    UpdateAnswerRequest,
)

router = APIRouter()


@lru_cache(maxsize=1)
def get_service() -> IntakeSessionService:
    settings = get_settings()
    client = RetryingLLMClient(
        OpenAILLMClient(),
        max_retries=settings.oracle_max_retries,
        base_delay=settings.oracle_retry_base_delay,
    )
    return IntakeSessionService(
        oracle=LLMAnswerOracle(client, language=settings.intake_language),
        questionnaires=QuestionnaireStore(),
        sessions=SessionStore(),
        settings=settings,
    )


@contextmanager
def _http_errors() -> Iterator[None]:
    try:
        yield
    except (SessionNotFound, QuestionnaireNotFound, InvalidQuestionReference) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidState as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except InvalidUtterance as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/questionnaires", response_model=List[Questionnaire])
def list_questionnaires(
    service: IntakeSessionService = Depends(get_service),
) -> List[Questionnaire]:
    return service.list_questionnaires()


@router.get("/questionnaires/{questionnaire_id}", response_model=Questionnaire)
def get_questionnaire(
    questionnaire_id: str,
    service: IntakeSessionService = Depends(get_service),
) -> Questionnaire:
    with _http_errors():
        return service.get_questionnaire(questionnaire_id)


@router.post("/sessions", response_model=StartSessionResponse)
def start_session(
    payload: StartSessionRequest,
    service: IntakeSessionService = Depends(get_service),
) -> StartSessionResponse:
    """
    Start a new interview and return the greeting plus first question.
    """
    with _http_errors():
        session, opening = service.start_session(payload.questionnaire_id)
        questionnaire = service.get_questionnaire(session.questionnaire_id)

    index = session.state.current_question_index
    return StartSessionResponse(
        session_id=session.session_id,
        questionnaire_id=session.questionnaire_id,
        opening_message=opening,
        current_question=None if session.is_complete else questionnaire.questions[index],
        total_questions=len(questionnaire.questions),
    )


@router.post("/sessions/{session_id}/messages", response_model=MessageResponse)
async def post_message(
    session_id: str,
    payload: MessageRequest,
    service: IntakeSessionService = Depends(get_service),
) -> MessageResponse:
    with _http_errors():
        session, result = await service.handle_turn(session_id, payload.message)
        questionnaire = await run_in_threadpool(
            service.get_questionnaire, session.questionnaire_id
        )

    state = session.state
    return MessageResponse(
        reply=result.reply,
        emotion=result.emotion,
        action=result.action,
        prompt=result.prompt,
        current_question_index=state.current_question_index,
        current_question=(
            None if state.is_complete else questionnaire.questions[state.current_question_index]
        ),
        answered_question_ids=state.answered_question_ids,
        is_complete=state.is_complete,
        formatted_answers=session.formatted_answers,
        summary=session.summary,
    )


@router.post("/sessions/{session_id}/complete", response_model=Session)
async def complete_session(
    session_id: str,
    service: IntakeSessionService = Depends(get_service),
) -> Session:
    with _http_errors():
        return await service.complete_session(session_id)


@router.get("/sessions", response_model=List[Session])
def list_sessions(
    service: IntakeSessionService = Depends(get_service),
) -> List[Session]:
    return service.list_sessions()


@router.get("/sessions/{session_id}", response_model=Session)
def get_session(
    session_id: str,
    service: IntakeSessionService = Depends(get_service),
) -> Session:
    with _http_errors():
        return service.get_session(session_id)


@router.delete("/sessions/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    service: IntakeSessionService = Depends(get_service),
) -> None:
    with _http_errors():
        service.delete_session(session_id)


@router.put("/sessions/{session_id}/answers/{question_id}", response_model=Session)
def update_answer(
    session_id: str,
    question_id: str,
    payload: UpdateAnswerRequest,
    service: IntakeSessionService = Depends(get_service),
) -> Session:
    with _http_errors():
        return service.update_answer(session_id, question_id, payload.answer)


@router.post("/sessions/cleanup", response_model=CleanupResponse)
def cleanup_sessions(
    service: IntakeSessionService = Depends(get_service),
) -> CleanupResponse:
    return CleanupResponse(deleted=service.purge_expired())
