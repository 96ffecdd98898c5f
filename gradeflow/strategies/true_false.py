"""
True/false grading strategy.

String answers are resolved through a per-language lexicon; an unknown
language uses the English table.
"""

from gradeflow.models import (
    Feedback,
    GradingContext,
    GradingResult,
    Question,
    QuestionResponseInput,
)
from gradeflow.strategies.base import GradingStrategy

_LEXICON: dict[str, dict[str, bool]] = {
    "en": {"true": True, "false": False, "t": True, "f": False, "yes": True, "no": False, "y": True, "n": False},
    "id": {"benar": True, "salah": False},
    "de": {"wahr": True, "falsch": False, "ja": True, "nein": False},
    "es": {"verdadero": True, "falso": False, "sí": True, "si": True, "no": False},
    "fr": {"vrai": True, "faux": False, "oui": True, "non": False},
    "it": {"vero": True, "falso": False, "sì": True, "si": True, "no": False},
    "hu": {"igaz": True, "hamis": False, "igen": True, "nem": False},
    "nl": {"waar": True, "onwaar": False, "ja": True, "nee": False},
    "pl": {"prawda": True, "fałsz": False, "tak": True, "nie": False},
    "pt": {"verdadeiro": True, "falso": False, "sim": True, "não": False, "nao": False},
    "sv": {"sant": True, "falskt": False, "ja": True, "nej": False},
    "tr": {"doğru": True, "yanlış": False, "evet": True, "hayır": False},
    "el": {"αληθές": True, "ψευδές": False, "ναί": True, "όχι": False},
    "kk": {"рас": True, "жалған": False},
    "ru": {"правда": True, "ложь": False, "да": True, "нет": False},
    "uk": {"правда": True, "брехня": False, "так": True, "ні": False},
    "ar": {"صحيح": True, "خطأ": False, "نعم": True, "لا": False},
    "hi": {"सही": True, "गलत": False, "हां": True, "नहीं": False},
    "th": {"จริง": True, "เท็จ": False, "ใช่": True, "ไม่": False},
    "ko": {"참": True, "거짓": False, "예": True, "아니요": False},
    "zh-CN": {"真": True, "假": False, "是": True, "否": False},
    "zh-TW": {"真": True, "假": False, "是": True, "否": False},
    "ja": {"正しい": True, "間違い": False, "はい": True, "いいえ": False},
}

BOOLEAN_LEXICON: dict[str, dict[str, bool]] = {
    language: {**words, "1": True, "0": False} for language, words in _LEXICON.items()
}


def parse_boolean_response(answer: str, language: str | None = "en") -> bool | None:
    """Resolve a localized true/false answer, or None if it is not recognised."""
    table = BOOLEAN_LEXICON.get(language or "en", BOOLEAN_LEXICON["en"])
    return table.get(answer.strip().lower())


class TrueFalseGradingStrategy(GradingStrategy[bool]):
    """Awards the question's full points when the answer matches the key."""

    async def validate(self, question: Question, response: QuestionResponseInput) -> bool:
        answer = response.learner_answer_choice
        if answer is None:
            raise self.validation_error("invalidTrueFalse", response, answer="")
        if isinstance(answer, str) and parse_boolean_response(answer, response.language) is None:
            raise self.validation_error("invalidTrueFalse", response, answer=answer)
        return True

    async def extract(self, response: QuestionResponseInput) -> bool:
        answer = response.learner_answer_choice
        if isinstance(answer, str):
            parsed = parse_boolean_response(answer, response.language)
            if parsed is not None:
                return parsed
        return bool(answer)

    async def grade(
        self, question: Question, learner_response: bool, context: GradingContext
    ) -> GradingResult:
        correct_answer = bool(question.choices) and question.choices[0].choice.strip().lower() == "true"
        is_correct = learner_response == correct_answer

        answer_text = self.localize("true" if correct_answer else "false", context.language)
        feedback = self.localize(
            "correctTF" if is_correct else "incorrectTF",
            context.language,
            answer=answer_text,
            correctAnswer=answer_text,
        )

        possible = question.total_points or (question.choices[0].points if question.choices else 0.0)
        awarded = possible if is_correct else 0.0

        return GradingResult(
            total_points=awarded,
            feedback=[Feedback(choice=str(learner_response).lower(), feedback=feedback)],
            metadata={
                "isCorrect": is_correct,
                "learnerResponse": learner_response,
                "correctAnswer": correct_answer,
                "possiblePoints": possible,
                "awardedPoints": awarded,
            },
        )
