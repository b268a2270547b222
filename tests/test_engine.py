"""
Unit tests for the DialogueEngine state machine

Oracle calls are scripted; every test drives the engine with asyncio.run.
"""

import asyncio
import random

import pytest

from medintake.errors import (
    InvalidQuestionReference,
    InvalidState,
    InvalidUtterance,
    OracleMalformed,
    OracleUnavailable,
)
from medintake.intake.engine import DialogueEngine, NextAction
from medintake.intake.messages import get_messages
from medintake.intake.schema import Question, Questionnaire, Role
from medintake.intake.state import DialogueState
from medintake.intake.oracle import LLMAnswerOracle
from medintake.llm.retry import RetryingLLMClient

from fakes import FakeLLMClient, ScriptedOracle, invalid_response, verdict

APOLOGY = get_messages("en").oracle_apology


def _submit(engine, *utterances):
    async def run():
        return [await engine.submit_answer(u) for u in utterances]

    return asyncio.run(run())


# ========================
# Scenarios
# ========================

def test_one_utterance_answering_everything_completes_immediately(sleep_appetite):
    oracle = ScriptedOracle(coverage=[{"Q1", "Q2"}], verdicts=[verdict(True, "I see.")])
    engine = DialogueEngine(sleep_appetite, oracle)

    [result] = _submit(engine, "I only slept 2 hours and have no appetite")

    assert result.action == NextAction.COMPLETE
    assert result.is_complete
    assert engine.is_complete
    assert engine.state.current_question_index == 2
    assert set(engine.state.answered_question_ids) == {"Q1", "Q2"}
    assert result.newly_answered == ["Q1", "Q2"]
    assert result.prompt is None


def test_insufficient_three_times_stays_on_question(five_questions):
    follow_ups = [verdict(False, f"Could you tell me more? ({i})") for i in range(3)]
    oracle = ScriptedOracle(verdicts=follow_ups)
    engine = DialogueEngine(five_questions, oracle)

    results = _submit(engine, "I have a headache", "since Monday", "on the left side")

    assert [r.action for r in results] == [NextAction.STAY] * 3
    assert [r.question_index for r in results] == [0, 0, 0]
    assert engine.state.current_question_index == 0
    assert engine.state.answered_question_ids == []
    assert results[2].reply == "Could you tell me more? (2)"


def test_judge_failure_gives_fixed_apology_and_stays(five_questions):
    oracle = ScriptedOracle(verdicts=[OracleUnavailable("network down")])
    engine = DialogueEngine(five_questions, oracle)

    [result] = _submit(engine, "I feel fine")

    assert result.action == NextAction.STAY
    assert result.oracle_failed
    assert result.reply == APOLOGY
    assert engine.state.current_question_index == 0
    assert engine.state.transcript[-1].text == APOLOGY


def test_judge_failure_never_advances_even_when_covered(five_questions):
    oracle = ScriptedOracle(
        coverage=[{"Q1", "Q2"}],
        verdicts=[OracleMalformed("garbage")],
    )
    engine = DialogueEngine(five_questions, oracle)

    [result] = _submit(engine, "fine, and I sleep enough")

    assert result.action == NextAction.STAY
    assert engine.state.current_question_index == 0
    # other questions covered by the utterance still count
    assert engine.state.answered_question_ids == ["Q2"]


def test_coverage_failure_is_treated_as_no_coverage(five_questions):
    oracle = ScriptedOracle(coverage=[OracleUnavailable("timeout")], verdicts=[verdict(True)])
    engine = DialogueEngine(five_questions, oracle)

    [result] = _submit(engine, "nothing has changed")

    assert result.action == NextAction.ADVANCE
    assert result.question_index == 1
    assert result.newly_answered == ["Q1"]
    assert len(oracle.judge_calls) == 1


def test_unreadable_api_responses_end_in_apology(five_questions):
    async def no_sleep(delay):
        pass

    # coverage and sufficiency each use all three attempts
    llm = FakeLLMClient([invalid_response() for _ in range(6)])
    oracle = LLMAnswerOracle(RetryingLLMClient(llm, sleep=no_sleep))
    engine = DialogueEngine(five_questions, oracle)

    [result] = _submit(engine, "I have a headache")

    assert result.action == NextAction.STAY
    assert result.oracle_failed
    assert result.reply == APOLOGY
    assert len(llm.calls) == 6
    assert engine.state.answered_question_ids == []


# ========================
# Transitions
# ========================

def test_sufficient_answer_advances_and_asks_next_question(five_questions):
    oracle = ScriptedOracle(verdicts=[verdict(True, "Understood.")])
    engine = DialogueEngine(five_questions, oracle)

    [result] = _submit(engine, "No changes")

    assert result.action == NextAction.ADVANCE
    assert result.prompt == five_questions.questions[1].text
    assert engine.current_question.id == "Q2"
    roles_and_texts = [(t.role, t.text) for t in engine.state.transcript]
    assert roles_and_texts == [
        (Role.PATIENT, "No changes"),
        (Role.ASSISTANT, "Understood."),
        (Role.ASSISTANT, five_questions.questions[1].text),
    ]


def test_covered_questions_are_skipped(five_questions):
    oracle = ScriptedOracle(coverage=[{"Q2", "Q3"}], verdicts=[verdict(True)])
    engine = DialogueEngine(five_questions, oracle)

    [result] = _submit(engine, "headache, I sleep 2 hours and eat little")

    assert result.question_index == 3
    assert engine.current_question.id == "Q4"
    assert result.newly_answered == ["Q1", "Q2", "Q3"]


def test_synthetic_answers_attribute_utterance_to_covered_questions(five_questions):
    utterance = "headache, I sleep 2 hours and eat little"
    oracle = ScriptedOracle(coverage=[{"Q3"}], verdicts=[verdict(False, "Since when?")])
    engine = DialogueEngine(five_questions, oracle)

    _submit(engine, utterance)

    answers = [(a.question_id, a.answer) for a in engine.state.answers]
    assert answers == [("Q1", utterance), ("Q3", utterance)]
    assert engine.state.answers[1].question_text == five_questions.questions[2].text


def test_sufficiency_judge_wins_for_current_question(five_questions):
    oracle = ScriptedOracle(coverage=[{"Q1", "Q4"}], verdicts=[verdict(False, "Where does it hurt?")])
    engine = DialogueEngine(five_questions, oracle)

    [result] = _submit(engine, "my head hurts, I jog daily")

    assert result.action == NextAction.STAY
    assert engine.state.current_question_index == 0
    assert engine.state.answered_question_ids == ["Q4"]
    assert result.newly_answered == ["Q4"]


def test_skip_lands_on_first_open_question_after_current(five_questions):
    oracle = ScriptedOracle(
        coverage=[{"Q3", "Q5"}, set()],
        verdicts=[verdict(False), verdict(True), verdict(True)],
    )
    engine = DialogueEngine(five_questions, oracle)

    results = _submit(engine, "I eat well, no stress", "headache for a week", "enough")

    assert [r.question_index for r in results] == [0, 1, 3]
    assert engine.current_question.id == "Q4"


def test_coverage_is_asked_only_about_open_questions(five_questions):
    oracle = ScriptedOracle(coverage=[{"Q3"}], verdicts=[verdict(True), verdict(True)])
    engine = DialogueEngine(five_questions, oracle)

    _submit(engine, "fine, eating well", "enough sleep")

    assert oracle.coverage_calls[0]["candidates"] == ["Q1", "Q2", "Q3", "Q4", "Q5"]
    assert oracle.coverage_calls[1]["candidates"] == ["Q2", "Q4", "Q5"]
    assert oracle.coverage_calls[1]["already_answered"] == {"Q1", "Q3"}


def test_final_question_is_flagged_to_the_judge(sleep_appetite):
    oracle = ScriptedOracle(verdicts=[verdict(True), verdict(True)])
    engine = DialogueEngine(sleep_appetite, oracle)

    _submit(engine, "badly", "good appetite")

    assert [c["is_final"] for c in oracle.judge_calls] == [False, True]


def test_final_flag_accounts_for_coverage(sleep_appetite):
    oracle = ScriptedOracle(coverage=[{"Q2"}], verdicts=[verdict(True)])
    engine = DialogueEngine(sleep_appetite, oracle)

    _submit(engine, "badly, and no appetite")

    assert oracle.judge_calls[0]["is_final"] is True


def test_context_window_is_bounded_and_truncated(five_questions):
    oracle = ScriptedOracle(verdicts=[verdict(False)] * 8)
    engine = DialogueEngine(five_questions, oracle, context_turns=6, context_max_chars=20)

    _submit(engine, *[f"answer {i} " + "x" * 40 for i in range(8)])

    last_context = oracle.judge_calls[-1]["context"]
    assert len(last_context) == 6
    assert all(len(t.text) <= 23 for t in last_context)
    assert any(t.text.endswith("...") for t in last_context)
    # full text stays in the transcript
    assert len(engine.state.transcript[-2].text) > 40


# ========================
# Contract violations
# ========================

def test_submit_after_completion_raises_invalid_state(sleep_appetite):
    oracle = ScriptedOracle(coverage=[{"Q1", "Q2"}])
    engine = DialogueEngine(sleep_appetite, oracle)
    _submit(engine, "slept badly, no appetite")

    with pytest.raises(InvalidState):
        _submit(engine, "anything else?")


@pytest.mark.parametrize("utterance", ["", "   ", "\u3000\ufeff"])
def test_blank_utterance_is_rejected_without_state_change(five_questions, utterance):
    oracle = ScriptedOracle()
    engine = DialogueEngine(five_questions, oracle)

    with pytest.raises(InvalidUtterance):
        _submit(engine, utterance)
    assert engine.state.transcript == []
    assert oracle.coverage_calls == []


def test_unknown_ids_are_ignored_outside_strict_mode(five_questions):
    oracle = ScriptedOracle(coverage=[{"Q2", "BOGUS"}], verdicts=[verdict(False)])
    engine = DialogueEngine(five_questions, oracle)

    _submit(engine, "something")

    assert engine.state.answered_question_ids == ["Q2"]


def test_unknown_ids_raise_in_strict_mode(five_questions):
    oracle = ScriptedOracle(coverage=[{"BOGUS"}], verdicts=[verdict(False)])
    engine = DialogueEngine(five_questions, oracle, strict_references=True)

    with pytest.raises(InvalidQuestionReference):
        _submit(engine, "something")
    assert engine.state.transcript == []


def test_restored_state_with_unknown_ids_is_cleaned(five_questions):
    state = DialogueState(question_count=5, answered_question_ids=["Q2", "Q99"])
    engine = DialogueEngine(five_questions, ScriptedOracle(), state=state)
    assert engine.state.answered_question_ids == ["Q2"]


def test_state_for_another_bank_is_refused(five_questions):
    with pytest.raises(InvalidState):
        DialogueEngine(five_questions, ScriptedOracle(), state=DialogueState(question_count=2))


def test_empty_questionnaire_is_complete_from_the_start():
    empty = Questionnaire(id="empty", title="Empty", questions=[])
    engine = DialogueEngine(empty, ScriptedOracle())
    assert engine.is_complete
    assert engine.current_question is None


# ========================
# Opening message
# ========================

def test_opening_message_greets_and_asks_first_question(five_questions):
    engine = DialogueEngine(five_questions, ScriptedOracle())

    opening = engine.opening_message()

    greeting = get_messages("en").greeting
    assert opening == f"{greeting} {five_questions.questions[0].text}"
    assert [t.text for t in engine.state.transcript] == [greeting, five_questions.questions[0].text]


def test_opening_message_on_resume_does_not_duplicate_turns(five_questions):
    engine = DialogueEngine(five_questions, ScriptedOracle())
    engine.opening_message()

    resumed = DialogueEngine(five_questions, ScriptedOracle(), state=engine.state)
    assert resumed.opening_message() == five_questions.questions[0].text
    assert len(resumed.state.transcript) == 2


# ========================
# Invariants
# ========================

@pytest.mark.parametrize("seed", range(20))
def test_pointer_moves_forward_and_answered_set_grows(seed):
    rng = random.Random(seed)
    questions = [Question(id=f"Q{i}", text=f"Question {i}?") for i in range(8)]
    bank = Questionnaire(id="random", title="Random", questions=questions)
    ids = [q.id for q in questions]

    coverage = [set(rng.sample(ids, rng.randint(0, 3))) for _ in range(40)]
    verdicts = [verdict(rng.random() < 0.4) for _ in range(40)]
    engine = DialogueEngine(bank, ScriptedOracle(coverage=coverage, verdicts=verdicts))

    indices = [0]
    answered_sizes = [0]
    answered_history = [set()]

    async def run():
        turn = 0
        while not engine.is_complete and turn < 40:
            await engine.submit_answer(f"utterance {turn}")
            indices.append(engine.state.current_question_index)
            answered = set(engine.state.answered_question_ids)
            answered_sizes.append(len(answered))
            answered_history.append(answered)
            turn += 1

    asyncio.run(run())

    assert all(b >= a for a, b in zip(indices, indices[1:]))
    assert all(b >= a for a, b in zip(answered_sizes, answered_sizes[1:]))
    assert all(a <= b for a, b in zip(answered_history, answered_history[1:]))
    assert set(engine.state.answered_question_ids) <= set(ids)
    # every question left behind is resolved
    left_behind = ids[: engine.state.current_question_index]
    assert set(left_behind) <= set(engine.state.answered_question_ids)


# ========================
# Stale responses
# ========================

class GatedOracle(ScriptedOracle):
    """
    Coverage for utterances listed in ``gated`` waits for ``gate``; results
    are looked up by utterance so overlapping turns do not share a queue.
    """

    def __init__(self, gate, gated, coverage_by_utterance, verdict_by_utterance):
        super().__init__()
        self.gate = gate
        self.gated = set(gated)
        self.coverage_by_utterance = coverage_by_utterance
        self.verdict_by_utterance = verdict_by_utterance

    async def classify_coverage(self, utterance, candidate_questions, already_answered):
        if utterance in self.gated:
            await self.gate.wait()
        return set(self.coverage_by_utterance.get(utterance, set()))

    async def judge_sufficiency(self, question, utterance, recent_context, *, is_final=False):
        return self.verdict_by_utterance[utterance]


def test_stale_turn_result_is_discarded(five_questions):
    async def scenario():
        gate = asyncio.Event()
        oracle = GatedOracle(
            gate,
            gated=["old"],
            coverage_by_utterance={"old": {"Q3", "Q4"}, "new": set()},
            verdict_by_utterance={"old": verdict(True, "old reply"), "new": verdict(False, "new reply")},
        )
        engine = DialogueEngine(five_questions, oracle)

        old_task = asyncio.create_task(engine.submit_answer("old"))
        await asyncio.sleep(0)  # old turn is now parked on the gate
        new_result = await engine.submit_answer("new")
        gate.set()
        old_result = await old_task
        return engine, old_result, new_result

    engine, old_result, new_result = asyncio.run(scenario())

    assert old_result.action == NextAction.DISCARDED
    assert not old_result.state_changed
    assert new_result.action == NextAction.STAY
    assert [t.text for t in engine.state.transcript] == ["new", "new reply"]
    assert engine.state.answered_question_ids == []
    assert engine.state.current_question_index == 0
