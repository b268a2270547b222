# medintake/intake/messages.py
"""
Fixed patient-facing strings. These are spoken exactly like model replies,
so they must never carry technical detail.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class IntakeMessages:
    greeting: str
    oracle_apology: str
    summary_fallback: str
    reply_language: str


MESSAGES = {
    "en": IntakeMessages(
        greeting="Hello. I will be taking your medical interview today. Thank you for your time.",
        oracle_apology="I'm sorry, I had trouble understanding that. Could you say it once more?",
        summary_fallback="The summary could not be generated. Please review the conversation directly.",
        reply_language="English",
    ),
    "ja": IntakeMessages(
        greeting="こんにちは。本日の問診を担当いたします。よろしくお願いします。",
        oracle_apology="申し訳ございません。通信エラーが発生しました。もう一度お願いできますか？",
        summary_fallback="要約の生成に失敗しました。",
        reply_language="Japanese",
    ),
}


def get_messages(language: str) -> IntakeMessages:
    try:
        return MESSAGES[language]
    except KeyError:
        raise ValueError(f"Unsupported intake language: {language}") from None
