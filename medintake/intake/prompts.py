# medintake/intake/prompts.py
from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from medintake.intake.schema import Question, QuestionType, Role, Turn


def _question_line(q: Question) -> str:
    line = f"[ID: {q.id}] {q.text}"
    if q.options:
        line += f" (options: {', '.join(q.options)})"
    elif q.type == QuestionType.SCALE:
        line += " (scale 0-10)"
    return line


def build_coverage_messages(
    utterance: str,
    candidate_questions: Sequence[Question],
) -> List[Dict[str, str]]:
    unanswered = "\n".join(_question_line(q) for q in candidate_questions)

    system = (
        "You analyse patient answers in a medical intake interview.\n"
        "Decide which of the still unanswered questions below the patient's "
        "answer clearly answers.\n\n"
        "Unanswered questions:\n"
        f"{unanswered}\n\n"
        "Rules:\n"
        "- Only include a question when the answer is clearly present.\n"
        "- Do not guess or infer from vague statements; when in doubt, leave it out.\n"
        "- Example: 'I only slept 2 hours' answers a sleep question.\n"
        "- Example: 'I have a headache and a fever' answers a question about changes in health.\n\n"
        "Respond ONLY with a JSON object of the form:\n"
        '{"answeredQuestions": ["Q1", "Q2"]}\n'
        'Use {"answeredQuestions": []} when nothing is answered.'
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": f"Patient answer: {utterance}"},
    ]


def build_sufficiency_messages(
    question: Question,
    utterance: str,
    recent_context: Sequence[Turn],
    reply_language: str,
    is_final: bool = False,
) -> List[Dict[str, str]]:
    closing_rule = (
        "- This is the last question. If the answer is sufficient, thank the "
        "patient warmly and do not ask anything new.\n"
        if is_final
        else ""
    )
    system = (
        "You are a kind medical intake assistant talking to a patient.\n\n"
        f"Current question: {_question_line(question)}\n\n"
        "Your job:\n"
        "1. Acknowledge the patient's answer politely and briefly.\n"
        "2. For symptom questions, make sure you know for each symptom: when it "
        "started, where it is, how severe it is (0-10), and what triggers or "
        "relieves it. Ask for one missing detail at a time and never ask again "
        "for details the patient already gave in the conversation.\n"
        "3. For other questions, move on as soon as there is a clear answer.\n"
        "4. Decide whether the current question now has enough information.\n"
        f"{closing_rule}"
        f"- Write the reply in {reply_language}.\n\n"
        "Respond ONLY with a JSON object:\n"
        '{"reply": "text for the patient", '
        '"emotion": "neutral | gentle | thinking | serious | happy", '
        '"sufficient": true or false}'
    )

    messages: List[Dict[str, str]] = [{"role": "system", "content": system}]
    for turn in recent_context:
        role = "user" if turn.role == Role.PATIENT else "assistant"
        messages.append({"role": role, "content": turn.text})
    messages.append({"role": "user", "content": utterance})
    return messages


def build_transcript_text(turns: Iterable[Turn]) -> str:
    """
    Build a plain text transcript like:

      assistant: ...
      patient: ...
    """
    return "\n".join(f"{turn.role.value}: {turn.text}" for turn in turns)


def build_summary_messages(
    questions: Sequence[Question],
    transcript: Sequence[Turn],
    reply_language: str,
) -> List[Dict[str, str]]:
    questions_info = "\n".join(
        f"{i}. {_question_line(q)}" for i, q in enumerate(questions, start=1)
    )
    schema_description = """
{
  "formattedAnswers": [
    {
      "questionId": string,
      "questionText": string,
      "extractedAnswer": string,
      "confidence": "high" | "medium" | "low"
    },
    ...
  ],
  "summary": string
}
"""
    system = (
        "You are an expert at organising medical intake interviews.\n"
        "Read the conversation and extract, for every question below, the "
        "patient's best answer.\n\n"
        "Important:\n"
        "- The patient may answer out of order, or answer several questions in one message.\n"
        "- When a question was followed up several times, merge all the details concisely.\n"
        "- For symptoms, list each symptom with its onset, e.g. 'Headache: since 2 weeks ago'.\n"
        "- Ignore greetings and unrelated remarks.\n"
        "- Do NOT invent details. If nothing answers a question, use exactly "
        "\"no answer found\" with confidence \"low\".\n"
        "- Return one entry per question, in the order given.\n"
        f"- Write extracted answers and the summary in {reply_language}; the "
        "summary is 2-3 sentences about the whole interview.\n\n"
        f"Questions:\n{questions_info}\n\n"
        f"Return a single JSON object with this structure:\n{schema_description}"
    )
    return [
        {"role": "system", "content": system},
        {
            "role": "user",
            "content": (
                "Transcript:\n"
                f"{build_transcript_text(transcript)}\n\n"
                "Return ONLY the JSON object, with no additional commentary."
            ),
        },
    ]
